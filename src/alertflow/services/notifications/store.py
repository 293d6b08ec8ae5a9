"""
Notification Store Protocol and In-Memory Implementation.

The repository interface the engine, dispatcher and stats read and write
through. Implementations must hand out copies: callers mutate what they
get back and persist it explicitly with ``update_notification``.
"""

from __future__ import annotations

import copy
from abc import abstractmethod
from datetime import datetime
from typing import Protocol, runtime_checkable

from ...core.logging import get_logger
from .errors import NotificationNotFoundError
from .models import Notification, NotificationQuery
from .preferences import NotificationPreferences
from .rules import Rule

logger = get_logger(__name__)


# =============================================================================
# Protocol Interface
# =============================================================================


@runtime_checkable
class NotificationRepository(Protocol):
    """
    Abstract interface for notification storage.

    Design notes:
    - Notification ids are globally unique
    - Listing is newest first
    - Preferences are never deleted
    """

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the store. Must be called before any other operations."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the store and release resources."""
        ...

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_notification(self, notification: Notification) -> None:
        """Persist a new notification."""
        ...

    @abstractmethod
    async def get_notification(self, notification_id: str) -> Notification | None:
        """Get a notification by id, or None if it doesn't exist."""
        ...

    @abstractmethod
    async def update_notification(self, notification: Notification) -> None:
        """
        Replace a stored notification.

        Raises:
            NotificationNotFoundError: If the notification doesn't exist
        """
        ...

    @abstractmethod
    async def list_notifications(
        self, user_id: str, query: NotificationQuery | None = None
    ) -> list[Notification]:
        """List a user's notifications, newest first, filtered and paginated."""
        ...

    @abstractmethod
    async def all_notifications(
        self, user_id: str | None = None, since: datetime | None = None
    ) -> list[Notification]:
        """Full scan, optionally restricted to one user or to a creation cutoff."""
        ...

    @abstractmethod
    async def list_open_deliveries(self) -> list[Notification]:
        """Notifications with at least one non-terminal delivery attempt."""
        ...

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_preferences(self, user_id: str) -> NotificationPreferences | None:
        ...

    @abstractmethod
    async def save_preferences(self, preferences: NotificationPreferences) -> None:
        ...

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_rules(self) -> list[Rule]:
        ...

    @abstractmethod
    async def save_rule(self, rule: Rule) -> None:
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================


def _newest_first(notifications: list[Notification]) -> list[Notification]:
    # Reversed insertion order breaks created_at ties toward the latest insert
    return sorted(reversed(notifications), key=lambda n: n.created_at, reverse=True)


class InMemoryNotificationStore:
    """
    Dict-backed NotificationRepository.

    Suitable for tests and single-process use. Every read and write copies,
    so no caller shares state with the store.
    """

    def __init__(self) -> None:
        self._notifications: dict[str, Notification] = {}
        self._preferences: dict[str, NotificationPreferences] = {}
        self._rules: dict[str, Rule] = {}

    async def initialize(self) -> None:
        logger.debug("In-memory notification store ready")

    async def close(self) -> None:
        pass

    async def add_notification(self, notification: Notification) -> None:
        self._notifications[notification.id] = copy.deepcopy(notification)

    async def get_notification(self, notification_id: str) -> Notification | None:
        notification = self._notifications.get(notification_id)
        return copy.deepcopy(notification) if notification else None

    async def update_notification(self, notification: Notification) -> None:
        if notification.id not in self._notifications:
            raise NotificationNotFoundError(notification.id)
        self._notifications[notification.id] = copy.deepcopy(notification)

    async def list_notifications(
        self, user_id: str, query: NotificationQuery | None = None
    ) -> list[Notification]:
        query = query or NotificationQuery()
        matching = [
            n
            for n in self._notifications.values()
            if n.user_id == user_id and query.matches(n)
        ]
        return copy.deepcopy(query.paginate(_newest_first(matching)))

    async def all_notifications(
        self, user_id: str | None = None, since: datetime | None = None
    ) -> list[Notification]:
        return copy.deepcopy(
            [
                n
                for n in self._notifications.values()
                if (user_id is None or n.user_id == user_id)
                and (since is None or n.created_at >= since)
            ]
        )

    async def list_open_deliveries(self) -> list[Notification]:
        return copy.deepcopy([n for n in self._notifications.values() if n.has_open_delivery])

    async def get_preferences(self, user_id: str) -> NotificationPreferences | None:
        prefs = self._preferences.get(user_id)
        return copy.deepcopy(prefs) if prefs else None

    async def save_preferences(self, preferences: NotificationPreferences) -> None:
        self._preferences[preferences.user_id] = copy.deepcopy(preferences)

    async def list_rules(self) -> list[Rule]:
        return copy.deepcopy(list(self._rules.values()))

    async def save_rule(self, rule: Rule) -> None:
        self._rules[rule.id] = copy.deepcopy(rule)

    def __len__(self) -> int:
        return len(self._notifications)
