"""
Shared fixtures for notification engine tests.

Provides factory functions, a controllable clock and a wired engine used
across the notification test suite.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from alertflow.core.config import AlertflowSettings
from alertflow.services.notifications import (
    CallbackChannel,
    Channel,
    ChannelRegistry,
    Condition,
    InAppChannel,
    InMemoryNotificationStore,
    Notification,
    NotificationEngine,
    Priority,
    Rule,
    RuleAction,
    SendResult,
    TriggerEvent,
)
from alertflow.services.notifications.types import Category

# Monday noon in New York, outside the default 22:00-08:00 quiet hours
BASE_TIME = datetime(2024, 1, 15, 17, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender:
    """
    Channel sender that records every notification it is asked to send.

    Results are consumed from ``results`` in order; once exhausted every
    send succeeds.
    """

    def __init__(self, channel: Channel, results: list[SendResult] | None = None):
        self.channel = channel
        self.results = list(results or [])
        self.sent: list[str] = []

    async def send(self, notification: Notification) -> SendResult:
        self.sent.append(notification.id)
        if self.results:
            return self.results.pop(0)
        return SendResult(success=True)


def make_event(
    user_id: str = "user-1",
    type: str = "churn_risk_alert",
    title: str = "Churn risk detected",
    message: str = "Acme Corp shows churn signals",
    source: str = "ai_engine",
    data: dict[str, Any] | None = None,
) -> TriggerEvent:
    """
    Create a TriggerEvent for testing.

    Defaults describe a churn event that matches the built-in churn rule.
    """
    return TriggerEvent(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        source=source,
        data={"churnProbability": 85, "accountId": "acc-1"} if data is None else data,
    )


def make_notification(
    notification_id: str = "notif-1",
    user_id: str = "user-1",
    type: str = "deal_closure_risk",
    priority: Priority = Priority.HIGH,
    category: Category = Category.SALES,
    source: str = "ai_engine",
    created_at: datetime = BASE_TIME,
    data: dict[str, Any] | None = None,
    channels: list[Channel] | None = None,
    **kwargs: Any,
) -> Notification:
    """Create a Notification for testing."""
    return Notification(
        id=notification_id,
        user_id=user_id,
        type=type,
        priority=priority,
        category=category,
        source=source,
        title="Deal at risk",
        message="Big deal slipping",
        created_at=created_at,
        data=data if data is not None else {"dealId": "deal-1", "dealValue": 250_000},
        channels=channels if channels is not None else [Channel.IN_APP],
        **kwargs,
    )


def make_rule(
    rule_id: str = "rule-test",
    name: str = "Test Rule",
    conditions: list[Condition] | None = None,
    priority: Priority = Priority.MEDIUM,
    channels: list[Channel] | None = None,
    cooldown_minutes: int = 0,
    max_per_day: int = 50,
    **kwargs: Any,
) -> Rule:
    """Create a Rule for testing."""
    return Rule(
        id=rule_id,
        name=name,
        conditions=conditions if conditions is not None else [],
        actions=[RuleAction("create_notification", {})],
        priority=priority,
        channels=channels if channels is not None else [Channel.IN_APP],
        cooldown_minutes=cooldown_minutes,
        max_per_day=max_per_day,
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> AlertflowSettings:
    """Settings isolated from the environment, with a short retry delay."""
    return AlertflowSettings(
        instance_root=tmp_path,
        delivery_retry_delay_seconds=60,
        delivery_max_retries=3,
    )


@pytest.fixture
def store() -> InMemoryNotificationStore:
    return InMemoryNotificationStore()


@pytest.fixture
def email_sender() -> RecordingSender:
    return RecordingSender(Channel.EMAIL)


@pytest.fixture
def registry(store: InMemoryNotificationStore, email_sender: RecordingSender) -> ChannelRegistry:
    """In-app delivery plus a recording email transport."""
    registry = ChannelRegistry()
    registry.register(InAppChannel(store))
    registry.register(CallbackChannel(Channel.EMAIL, email_sender.send))
    return registry


@pytest_asyncio.fixture
async def engine(
    store: InMemoryNotificationStore,
    registry: ChannelRegistry,
    settings: AlertflowSettings,
    clock: FakeClock,
) -> AsyncGenerator[NotificationEngine, None]:
    """Initialized engine over the in-memory store."""
    engine = NotificationEngine(store=store, registry=registry, settings=settings, clock=clock)
    await engine.initialize()
    yield engine
    await engine.close()
