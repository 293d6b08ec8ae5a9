"""
alertflow Time Helpers

UTC-aware datetime helpers shared by the engine, the stores and the CLI.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def get_utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: object) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (with or without ``Z`` suffix) to a UTC datetime.

    A bare date (such as PyYAML produces for an unquoted ``2024-06-01``)
    becomes midnight UTC of that day.

    Args:
        value: ISO string, datetime, date, or anything else

    Returns:
        UTC datetime, or None if the value is not a parseable timestamp

    Examples:
        >>> parse_datetime("2026-01-15T12:30:00Z")
        datetime.datetime(2026, 1, 15, 12, 30, tzinfo=datetime.timezone.utc)
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None

    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_datetime(dt: datetime) -> str:
    """Format datetime as an ISO string like ``2026-01-15T12:30:00Z``."""
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_utc_timestamp() -> str:
    """Get current UTC timestamp string."""
    return format_datetime(get_utc_now())
