"""
Notification Statistics.

Aggregates computed by full scan over a user's notifications. Nothing here
is persisted; every call recomputes from the store's current contents.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ...core.formatters import ensure_utc
from .models import Notification
from .types import DeliveryState

TOP_SOURCES = 5


@dataclass
class SourceShare:
    """How often one source triggered notifications."""

    source: str
    count: int
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "count": self.count, "percentage": self.percentage}


@dataclass
class NotificationStats:
    """Snapshot of a user's notification activity."""

    total: int = 0
    unread: int = 0
    critical: int = 0  # critical + urgent
    today: int = 0  # since UTC midnight
    by_category: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)
    by_channel: dict[str, int] = field(default_factory=dict)
    delivery_rate: float = 0.0  # percent of attempts delivered
    avg_response_minutes: float | None = None  # created -> read
    top_sources: list[SourceShare] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "unread": self.unread,
            "critical": self.critical,
            "today": self.today,
            "by_category": dict(self.by_category),
            "by_priority": dict(self.by_priority),
            "by_channel": dict(self.by_channel),
            "delivery_rate": self.delivery_rate,
            "avg_response_minutes": self.avg_response_minutes,
            "top_sources": [s.to_dict() for s in self.top_sources],
        }


def compute_stats(notifications: list[Notification], now: datetime) -> NotificationStats:
    """
    Compute a stats snapshot.

    Args:
        notifications: Every notification of one user
        now: Reference time for the "today" count (UTC)

    Returns:
        NotificationStats
    """
    if not notifications:
        return NotificationStats()

    midnight = ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)

    by_category: Counter[str] = Counter()
    by_priority: Counter[str] = Counter()
    by_channel: Counter[str] = Counter()
    sources: Counter[str] = Counter()
    attempts = delivered = 0
    unread = critical = today = 0
    response_minutes: list[float] = []

    for notification in notifications:
        by_category[notification.category.value] += 1
        by_priority[notification.priority.value] += 1
        sources[notification.source] += 1

        if not notification.is_read:
            unread += 1
        elif notification.read_at is not None:
            elapsed = notification.read_at - notification.created_at
            response_minutes.append(elapsed.total_seconds() / 60)
        if notification.priority.is_top:
            critical += 1
        if notification.created_at >= midnight:
            today += 1

        for attempt in notification.delivery:
            by_channel[attempt.channel.value] += 1
            attempts += 1
            if attempt.status == DeliveryState.DELIVERED:
                delivered += 1

    total = len(notifications)
    top_sources = [
        SourceShare(source, count, round(count / total * 100, 2))
        for source, count in sources.most_common(TOP_SOURCES)
    ]

    return NotificationStats(
        total=total,
        unread=unread,
        critical=critical,
        today=today,
        by_category=dict(by_category),
        by_priority=dict(by_priority),
        by_channel=dict(by_channel),
        delivery_rate=round(delivered / attempts * 100, 2) if attempts else 0.0,
        avg_response_minutes=(
            round(sum(response_minutes) / len(response_minutes), 2) if response_minutes else None
        ),
        top_sources=top_sources,
    )
