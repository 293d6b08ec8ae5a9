"""
Notification Rate Limiter.

Per-user sliding windows over accepted notifications. A notification is
allowed only when both the trailing hour and the trailing day are below the
user's caps; allowing it records it in the same critical section.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ...core.logging import get_logger

if TYPE_CHECKING:
    from .preferences import FrequencyConfig

logger = get_logger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


@dataclass
class RateLimiter:
    """
    Sliding-window rate limiter keyed by user.

    Only accepted notifications are counted, so a suppressed notification
    never consumes quota.
    """

    _accepted: dict[str, deque[datetime]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _rejected_count: int = 0

    def allow(self, user_id: str, frequency: FrequencyConfig, now: datetime) -> bool:
        """
        Check both windows and record the notification if it fits.

        Args:
            user_id: Owning user
            frequency: The user's frequency caps
            now: Time of the notification

        Returns:
            True if accepted (and counted), False if rate limited
        """
        with self._lock:
            window = self._accepted.setdefault(user_id, deque())
            self._prune(window, now)

            last_hour = sum(1 for ts in window if now - ts < HOUR)
            if last_hour >= frequency.max_per_hour or len(window) >= frequency.max_per_day:
                self._rejected_count += 1
                logger.debug(
                    "Rate limited user %s (%d/hour, %d/day)",
                    user_id,
                    last_hour,
                    len(window),
                )
                return False

            window.append(now)
            return True

    def seed(self, user_id: str, timestamps: Iterable[datetime], now: datetime) -> None:
        """Restore a user's window from previously accepted notifications."""
        with self._lock:
            window = deque(sorted(ts for ts in timestamps if now - ts < DAY))
            if window:
                self._accepted[user_id] = window

    def usage(self, user_id: str, now: datetime) -> tuple[int, int]:
        """
        Current counts for a user.

        Returns:
            Tuple of (last hour, last day)
        """
        with self._lock:
            window = self._accepted.get(user_id)
            if not window:
                return 0, 0
            self._prune(window, now)
            return sum(1 for ts in window if now - ts < HOUR), len(window)

    @staticmethod
    def _prune(window: deque[datetime], now: datetime) -> None:
        while window and now - window[0] >= DAY:
            window.popleft()

    def cleanup_expired(self, now: datetime) -> int:
        """
        Drop users with nothing in the trailing day.

        Returns:
            Number of users removed
        """
        with self._lock:
            expired = []
            for user_id, window in self._accepted.items():
                self._prune(window, now)
                if not window:
                    expired.append(user_id)
            for user_id in expired:
                del self._accepted[user_id]
        return len(expired)

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "tracked_users": len(self._accepted),
                "rejected": self._rejected_count,
            }
