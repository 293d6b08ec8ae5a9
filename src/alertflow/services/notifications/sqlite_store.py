"""
SQLite Implementation of the Notification Store.

Uses WAL mode for concurrent read/write access. Records are stored as JSON
bodies with the columns used for filtering and ordering pulled out and
indexed.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ...core.logging import get_logger
from .errors import NotificationNotFoundError
from .migrations import MigrationRunner
from .models import Notification, NotificationQuery
from .preferences import NotificationPreferences
from .rules import Rule

logger = get_logger(__name__)


def _notification_row(notification: Notification) -> tuple[Any, ...]:
    return (
        notification.user_id,
        notification.type,
        notification.priority.value,
        notification.category.value,
        notification.source,
        int(notification.is_read),
        int(notification.is_dismissed),
        notification.created_at.timestamp(),
        int(notification.has_open_delivery),
        json.dumps(notification.to_dict(), default=str),
        notification.id,
    )


def _load_notification(row: aiosqlite.Row) -> Notification:
    return Notification.from_dict(json.loads(row["body"]))


class SQLiteNotificationStore:
    """
    SQLite implementation of NotificationRepository.

    Connection configuration:
        PRAGMA journal_mode=WAL
        PRAGMA busy_timeout=5000
        PRAGMA synchronous=NORMAL
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the store.

        Args:
            db_path: Path to database file. Defaults to {instance_root}/cache/alertflow.db.
        """
        if db_path is None:
            from ...core.config import get_settings

            db_path = get_settings().db_path

        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """
        Open the database, running migrations if needed.

        Must be called before any other operations.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA busy_timeout=5000")
        await self._db.execute("PRAGMA synchronous=NORMAL")

        runner = MigrationRunner(self._db)
        await runner.run_migrations()

        self._db.row_factory = aiosqlite.Row
        logger.info("Notification store initialized: %s", self.db_path)

    async def close(self) -> None:
        """Close the store and release resources."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Notification store closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection, raising if not initialized."""
        if self._db is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._db

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def add_notification(self, notification: Notification) -> None:
        await self.db.execute(
            """
            INSERT INTO notifications (
                user_id, type, priority, category, source, is_read, is_dismissed,
                created_ts, has_open_delivery, body, id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            _notification_row(notification),
        )
        await self.db.commit()

    async def get_notification(self, notification_id: str) -> Notification | None:
        cursor = await self.db.execute(
            "SELECT body FROM notifications WHERE id = ?", (notification_id,)
        )
        row = await cursor.fetchone()
        return _load_notification(row) if row else None

    async def update_notification(self, notification: Notification) -> None:
        cursor = await self.db.execute(
            """
            UPDATE notifications SET
                user_id = ?, type = ?, priority = ?, category = ?, source = ?,
                is_read = ?, is_dismissed = ?, created_ts = ?, has_open_delivery = ?,
                body = ?
            WHERE id = ?
            """,
            _notification_row(notification),
        )
        await self.db.commit()
        if cursor.rowcount == 0:
            raise NotificationNotFoundError(notification.id)

    async def list_notifications(
        self, user_id: str, query: NotificationQuery | None = None
    ) -> list[Notification]:
        query = query or NotificationQuery()
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]

        if query.category is not None:
            clauses.append("category = ?")
            params.append(query.category.value)
        if query.priority is not None:
            clauses.append("priority = ?")
            params.append(query.priority.value)
        if query.is_read is not None:
            clauses.append("is_read = ?")
            params.append(int(query.is_read))
        if query.is_dismissed is not None:
            clauses.append("is_dismissed = ?")
            params.append(int(query.is_dismissed))

        sql = f"""
            SELECT body FROM notifications
            WHERE {" AND ".join(clauses)}
            ORDER BY created_ts DESC, rowid DESC
            LIMIT ? OFFSET ?
        """
        # LIMIT -1 means no limit in SQLite
        params.extend([query.limit if query.limit is not None else -1, query.offset])

        cursor = await self.db.execute(sql, params)
        rows = await cursor.fetchall()
        return [_load_notification(row) for row in rows]

    async def all_notifications(
        self, user_id: str | None = None, since: datetime | None = None
    ) -> list[Notification]:
        clauses = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if since is not None:
            clauses.append("created_ts >= ?")
            params.append(since.timestamp())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await self.db.execute(
            f"SELECT body FROM notifications {where} ORDER BY rowid", params
        )
        rows = await cursor.fetchall()
        return [_load_notification(row) for row in rows]

    async def list_open_deliveries(self) -> list[Notification]:
        cursor = await self.db.execute(
            "SELECT body FROM notifications WHERE has_open_delivery = 1 ORDER BY rowid"
        )
        rows = await cursor.fetchall()
        return [_load_notification(row) for row in rows]

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    async def get_preferences(self, user_id: str) -> NotificationPreferences | None:
        cursor = await self.db.execute(
            "SELECT body FROM preferences WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        return NotificationPreferences.from_dict(json.loads(row["body"])) if row else None

    async def save_preferences(self, preferences: NotificationPreferences) -> None:
        await self.db.execute(
            """
            INSERT OR REPLACE INTO preferences (user_id, updated_ts, body)
            VALUES (?, ?, ?)
            """,
            (
                preferences.user_id,
                preferences.updated_at.timestamp(),
                json.dumps(preferences.to_dict()),
            ),
        )
        await self.db.commit()

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    async def list_rules(self) -> list[Rule]:
        cursor = await self.db.execute("SELECT body FROM rules ORDER BY created_ts, rowid")
        rows = await cursor.fetchall()
        return [Rule.from_dict(json.loads(row["body"])) for row in rows]

    async def save_rule(self, rule: Rule) -> None:
        await self.db.execute(
            """
            INSERT INTO rules (id, created_ts, body) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET body = excluded.body
            """,
            (rule.id, rule.created_at.timestamp(), json.dumps(rule.to_dict())),
        )
        await self.db.commit()
