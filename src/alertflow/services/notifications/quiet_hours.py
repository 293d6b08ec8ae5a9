"""
Quiet Hours Checker.

Timezone-aware quiet hours checking using zoneinfo for DST handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...core.logging import get_logger

if TYPE_CHECKING:
    from .preferences import QuietHoursConfig

logger = get_logger(__name__)


def parse_hhmm(value: str) -> time:
    """
    Parse an ``HH:MM`` string.

    Raises:
        ValueError: If the string is not a valid 24-hour time
    """
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(hour=int(parts[0]), minute=int(parts[1]))


@dataclass
class QuietHoursChecker:
    """
    Checks if a moment falls within a user's quiet hours.

    The window starts inclusive and ends exclusive. A start later than the
    end spans midnight (22:00 to 08:00). Equal start and end is an empty
    window.
    """

    config: QuietHoursConfig

    def __post_init__(self) -> None:
        self._start_time = parse_hhmm(self.config.start)
        self._end_time = parse_hhmm(self.config.end)

        try:
            self._timezone = ZoneInfo(self.config.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone '%s', using UTC", self.config.timezone)
            self._timezone = ZoneInfo("UTC")

    def _localize(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            # Naive datetimes are UTC throughout the engine
            now = now.replace(tzinfo=ZoneInfo("UTC"))
        return now.astimezone(self._timezone)

    def is_quiet_time(self, now: datetime) -> bool:
        """
        Check if the given moment is within quiet hours.

        Args:
            now: Moment to check (aware, or naive UTC)

        Returns:
            True if within quiet hours, False otherwise
        """
        if not self.config.enabled:
            return False

        current_time = self._localize(now).time()

        if self._start_time == self._end_time:
            return False
        if self._start_time < self._end_time:
            return self._start_time <= current_time < self._end_time
        # Spans midnight
        return current_time >= self._start_time or current_time < self._end_time

    def next_active_time(self, now: datetime) -> datetime | None:
        """
        Get the moment quiet hours end.

        Returns:
            Aware datetime in the user's timezone, or None if not currently quiet
        """
        if not self.is_quiet_time(now):
            return None

        local = self._localize(now)
        end_dt = local.replace(
            hour=self._end_time.hour,
            minute=self._end_time.minute,
            second=0,
            microsecond=0,
        )
        if end_dt <= local:
            end_dt = end_dt + timedelta(days=1)
        return end_dt
