"""
Tests for alertflow time helpers.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from alertflow.core.formatters import (
    ensure_utc,
    format_datetime,
    get_utc_now,
    get_utc_timestamp,
    parse_datetime,
)


class TestEnsureUtc:
    def test_naive_assumed_utc(self):
        result = ensure_utc(datetime(2026, 1, 15, 12, 30))
        assert result == datetime(2026, 1, 15, 12, 30, tzinfo=timezone.utc)

    def test_offset_converted(self):
        plus_two = timezone(timedelta(hours=2))
        result = ensure_utc(datetime(2026, 1, 15, 14, 30, tzinfo=plus_two))
        assert result.hour == 12
        assert result.tzinfo == timezone.utc


class TestParseDatetime:
    """Test parse_datetime function."""

    @pytest.mark.parametrize(
        "value",
        [
            "2026-01-15T12:30:00Z",
            "2026-01-15T12:30:00+00:00",
            "2026-01-15T13:30:00+01:00",
            "2026-01-15T12:30:00",
        ],
    )
    def test_iso_variants(self, value):
        assert parse_datetime(value) == datetime(2026, 1, 15, 12, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12345])
    def test_unparseable(self, value):
        assert parse_datetime(value) is None

    def test_datetime_passthrough(self):
        dt = datetime(2026, 1, 15, tzinfo=timezone.utc)
        assert parse_datetime(dt) == dt

    def test_bare_date_is_midnight_utc(self):
        assert parse_datetime(date(2024, 6, 1)) == datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestFormatting:
    def test_format_datetime(self):
        dt = datetime(2026, 1, 15, 12, 30, 45, 123456, tzinfo=timezone.utc)
        assert format_datetime(dt) == "2026-01-15T12:30:45Z"

    def test_utc_now_is_aware(self):
        assert get_utc_now().tzinfo == timezone.utc

    def test_timestamp_shape(self):
        stamp = get_utc_timestamp()
        assert stamp.endswith("Z")
        assert parse_datetime(stamp) is not None
