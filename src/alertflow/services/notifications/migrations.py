"""
Database Migration Runner for the Notification Store.

Applies versioned schema migrations on startup and records them in the
schema_migrations table.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from ...core.logging import get_logger

if TYPE_CHECKING:
    import aiosqlite

logger = get_logger(__name__)

# (version, description, script), applied in order
MIGRATIONS: list[tuple[int, str, str]] = [
    (
        1,
        "initial schema",
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            priority TEXT NOT NULL,
            category TEXT NOT NULL,
            source TEXT NOT NULL,
            is_read INTEGER NOT NULL DEFAULT 0,
            is_dismissed INTEGER NOT NULL DEFAULT 0,
            created_ts REAL NOT NULL,
            has_open_delivery INTEGER NOT NULL DEFAULT 0,
            body TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_notifications_user_created
            ON notifications (user_id, created_ts DESC);

        CREATE INDEX IF NOT EXISTS idx_notifications_open_delivery
            ON notifications (has_open_delivery)
            WHERE has_open_delivery = 1;

        CREATE TABLE IF NOT EXISTS preferences (
            user_id TEXT PRIMARY KEY,
            updated_ts REAL NOT NULL,
            body TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS rules (
            id TEXT PRIMARY KEY,
            created_ts REAL NOT NULL,
            body TEXT NOT NULL
        );
        """,
    ),
]


class MigrationRunner:
    """
    Apply database migrations on startup.

    Migrations are applied in version order and tracked in the
    schema_migrations table.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def run_migrations(self) -> int:
        """
        Apply pending migrations.

        Returns:
            Number of migrations applied.
        """
        await self._ensure_migrations_table()
        current_version = await self._get_current_version()
        applied = 0

        for version, description, script in sorted(MIGRATIONS):
            if version > current_version:
                await self._apply_migration(version, description, script)
                applied += 1

        if applied > 0:
            logger.info("Applied %d database migration(s)", applied)

        return applied

    async def _ensure_migrations_table(self) -> None:
        await self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL,
                description TEXT
            )
            """
        )
        await self.db.commit()

    async def _get_current_version(self) -> int:
        """
        Get the current schema version.

        Returns:
            Latest applied migration version, or 0 if none applied.
        """
        cursor = await self.db.execute("SELECT MAX(version) FROM schema_migrations")
        row = await cursor.fetchone()
        return row[0] if row and row[0] is not None else 0

    async def _apply_migration(self, version: int, description: str, script: str) -> None:
        logger.info("Applying migration %03d: %s", version, description)

        await self.db.executescript(script)
        await self.db.execute(
            """
            INSERT INTO schema_migrations (version, applied_at, description)
            VALUES (?, ?, ?)
            """,
            (version, int(time.time()), description),
        )
        await self.db.commit()
