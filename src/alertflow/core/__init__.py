"""
alertflow core infrastructure: settings, logging, and time helpers.
"""

from .config import AlertflowSettings, get_settings, reset_settings
from .formatters import (
    ensure_utc,
    format_datetime,
    get_utc_now,
    get_utc_timestamp,
    parse_datetime,
)
from .logging import get_logger, reset_logging

__all__ = [
    "AlertflowSettings",
    "get_settings",
    "reset_settings",
    "get_logger",
    "reset_logging",
    "ensure_utc",
    "format_datetime",
    "get_utc_now",
    "get_utc_timestamp",
    "parse_datetime",
]
