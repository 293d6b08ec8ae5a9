"""
Tests for notification store implementations.

Each test runs against the in-memory store and the SQLite store.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, timedelta

import pytest
import pytest_asyncio

from alertflow.services.notifications import (
    Category,
    Channel,
    Condition,
    DeliveryAttempt,
    DeliveryState,
    InMemoryNotificationStore,
    NotificationNotFoundError,
    NotificationPreferences,
    NotificationQuery,
    NotificationRepository,
    Priority,
    SQLiteNotificationStore,
)

from .conftest import BASE_TIME, make_notification, make_rule


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def repo(request, tmp_path) -> AsyncGenerator[NotificationRepository, None]:
    """Initialized store of each implementation."""
    if request.param == "memory":
        store = InMemoryNotificationStore()
    else:
        store = SQLiteNotificationStore(tmp_path / "alertflow.db")
    await store.initialize()
    yield store
    await store.close()


async def _seed(repo: NotificationRepository) -> None:
    await repo.add_notification(
        make_notification("n-old", created_at=BASE_TIME - timedelta(hours=2))
    )
    await repo.add_notification(
        make_notification(
            "n-mid",
            created_at=BASE_TIME - timedelta(hours=1),
            priority=Priority.CRITICAL,
            category=Category.CUSTOMER_SUCCESS,
            is_read=True,
            read_at=BASE_TIME,
        )
    )
    await repo.add_notification(make_notification("n-new", created_at=BASE_TIME))
    await repo.add_notification(make_notification("n-other", user_id="user-2"))


class TestProtocol:
    def test_implementations_satisfy_protocol(self, tmp_path):
        assert isinstance(InMemoryNotificationStore(), NotificationRepository)
        assert isinstance(SQLiteNotificationStore(tmp_path / "x.db"), NotificationRepository)


class TestNotifications:
    """Tests for notification persistence."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, repo):
        notification = make_notification()
        await repo.add_notification(notification)

        loaded = await repo.get_notification("notif-1")

        assert loaded == notification
        assert loaded is not notification

    @pytest.mark.asyncio
    async def test_get_missing(self, repo):
        assert await repo.get_notification("nope") is None

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, repo):
        await repo.add_notification(make_notification())

        loaded = await repo.get_notification("notif-1")
        loaded.is_read = True

        assert (await repo.get_notification("notif-1")).is_read is False

    @pytest.mark.asyncio
    async def test_update(self, repo):
        await repo.add_notification(make_notification())
        loaded = await repo.get_notification("notif-1")

        loaded.dismiss(BASE_TIME)
        await repo.update_notification(loaded)

        stored = await repo.get_notification("notif-1")
        assert stored.is_dismissed is True
        assert stored.is_read is True
        assert stored.read_at == BASE_TIME

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, repo):
        with pytest.raises(NotificationNotFoundError):
            await repo.update_notification(make_notification("ghost"))

    @pytest.mark.asyncio
    async def test_list_newest_first(self, repo):
        await _seed(repo)

        listed = await repo.list_notifications("user-1")

        assert [n.id for n in listed] == ["n-new", "n-mid", "n-old"]

    @pytest.mark.asyncio
    async def test_list_ties_break_toward_latest_insert(self, repo):
        await repo.add_notification(make_notification("first"))
        await repo.add_notification(make_notification("second"))

        listed = await repo.list_notifications("user-1")

        assert [n.id for n in listed] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_list_filters(self, repo):
        await _seed(repo)

        unread = await repo.list_notifications("user-1", NotificationQuery(is_read=False))
        critical = await repo.list_notifications(
            "user-1", NotificationQuery(priority=Priority.CRITICAL)
        )
        success = await repo.list_notifications(
            "user-1", NotificationQuery(category=Category.CUSTOMER_SUCCESS)
        )

        assert [n.id for n in unread] == ["n-new", "n-old"]
        assert [n.id for n in critical] == ["n-mid"]
        assert [n.id for n in success] == ["n-mid"]

    @pytest.mark.asyncio
    async def test_list_pagination(self, repo):
        await _seed(repo)

        page = await repo.list_notifications("user-1", NotificationQuery(limit=1, offset=1))
        rest = await repo.list_notifications("user-1", NotificationQuery(offset=1))

        assert [n.id for n in page] == ["n-mid"]
        assert [n.id for n in rest] == ["n-mid", "n-old"]

    @pytest.mark.asyncio
    async def test_all_notifications(self, repo):
        await _seed(repo)

        everyone = await repo.all_notifications()
        user_1 = await repo.all_notifications(user_id="user-1")
        recent = await repo.all_notifications(
            user_id="user-1", since=BASE_TIME - timedelta(minutes=90)
        )

        assert len(everyone) == 4
        assert len(user_1) == 3
        assert {n.id for n in recent} == {"n-mid", "n-new"}

    @pytest.mark.asyncio
    async def test_delivery_attempts_round_trip(self, repo):
        notification = make_notification(channels=[Channel.EMAIL])
        attempt = DeliveryAttempt(channel=Channel.EMAIL)
        attempt.transition(DeliveryState.PENDING, BASE_TIME)
        attempt.transition(DeliveryState.SENT, BASE_TIME)
        attempt.retry_count = 1
        attempt.next_retry = BASE_TIME + timedelta(minutes=5)
        attempt.transition(DeliveryState.FAILED, BASE_TIME, "timeout")
        notification.delivery.append(attempt)

        await repo.add_notification(notification)
        loaded = (await repo.get_notification("notif-1")).attempt_for(Channel.EMAIL)

        assert loaded.status_history == [DeliveryState.PENDING, DeliveryState.SENT, DeliveryState.FAILED]
        assert loaded.next_retry == BASE_TIME + timedelta(minutes=5)
        assert loaded.error == "timeout"

    @pytest.mark.asyncio
    async def test_list_open_deliveries(self, repo):
        open_notification = make_notification("open")
        pending = DeliveryAttempt(channel=Channel.IN_APP)
        pending.transition(DeliveryState.PENDING, BASE_TIME)
        open_notification.delivery.append(pending)

        done = make_notification("done")
        delivered = DeliveryAttempt(channel=Channel.IN_APP)
        delivered.transition(DeliveryState.DELIVERED, BASE_TIME)
        done.delivery.append(delivered)

        await repo.add_notification(open_notification)
        await repo.add_notification(done)

        assert [n.id for n in await repo.list_open_deliveries()] == ["open"]

        # Closing the attempt drops it from the open set
        loaded = await repo.get_notification("open")
        loaded.delivery[0].transition(DeliveryState.DELIVERED, BASE_TIME)
        await repo.update_notification(loaded)

        assert await repo.list_open_deliveries() == []


class TestPreferences:
    """Tests for preference persistence."""

    @pytest.mark.asyncio
    async def test_missing_preferences(self, repo):
        assert await repo.get_preferences("user-1") is None

    @pytest.mark.asyncio
    async def test_save_and_replace(self, repo):
        prefs = NotificationPreferences.defaults("user-1")
        prefs.channels["sms"] = True
        await repo.save_preferences(prefs)

        prefs.types["churn_risk_alert"] = False
        await repo.save_preferences(prefs)

        loaded = await repo.get_preferences("user-1")
        assert loaded.channels["sms"] is True
        assert loaded.types["churn_risk_alert"] is False


class TestRules:
    """Tests for rule persistence."""

    @pytest.mark.asyncio
    async def test_save_and_list(self, repo):
        await repo.save_rule(make_rule("rule-a"))
        await repo.save_rule(make_rule("rule-b"))

        assert [r.id for r in await repo.list_rules()] == ["rule-a", "rule-b"]

    @pytest.mark.asyncio
    async def test_save_upserts(self, repo):
        rule = make_rule("rule-a")
        await repo.save_rule(rule)

        rule.is_active = False
        await repo.save_rule(rule)

        rules = await repo.list_rules()
        assert len(rules) == 1
        assert rules[0].is_active is False

    @pytest.mark.asyncio
    async def test_date_condition_value_round_trips(self, repo):
        rule = make_rule(
            "rule-renewal", conditions=[Condition("renewalDate", "less_than", date(2024, 6, 1))]
        )

        await repo.save_rule(rule)

        (loaded,) = await repo.list_rules()
        assert loaded.conditions[0].value == "2024-06-01"


class TestSQLiteStore:
    """SQLite-specific behavior."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self, tmp_path):
        store = SQLiteNotificationStore(tmp_path / "alertflow.db")
        with pytest.raises(RuntimeError, match="not initialized"):
            await store.get_notification("x")

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "alertflow.db"
        store = SQLiteNotificationStore(path)
        await store.initialize()
        await store.add_notification(make_notification())
        await store.close()

        reopened = SQLiteNotificationStore(path)
        await reopened.initialize()
        try:
            assert await reopened.get_notification("notif-1") is not None
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "cache" / "alertflow.db"
        store = SQLiteNotificationStore(path)
        await store.initialize()
        await store.close()
        assert path.exists()
