"""
Click ledger: users and their click events.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shared.errors import StorageError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..persistence.database import Database, QueryExecutor
from .models import ClickHistoryEntry, ClickRecord, GlobalStats, TopUser, UserInfo


TOP_USERS_LIMIT = 5

SCHEMA: Dict[str, List[str]] = {
    "sqlite": [
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL,
            name TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS clicks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            clicked_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_clicks_user_id ON clicks(user_id)",
    ],
    "postgres": [
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL,
            name TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS clicks (
            id BIGSERIAL PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            clicked_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_clicks_user_id ON clicks(user_id)",
    ],
}

INSERT_USER_SQL = "INSERT INTO users (id, email, name) VALUES (?, ?, ?) ON CONFLICT (id) DO NOTHING"


def _as_timestamp(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class ClickLedger:
    """Owns the ``users`` and ``clicks`` relations.

    Users are created lazily and never updated: the first observed email
    and name win. Store failures surface as StorageError; nothing is
    swallowed.
    """

    def __init__(self, database: Database, metrics: Optional[MetricsCollector] = None):
        self.database = database
        self.metrics = metrics
        self.logger = get_logger("clicks.ledger")

    async def start(self):
        """Open the store and create the schema."""
        await self.database.start()
        await self.initialize()

    async def stop(self):
        await self.database.stop()

    async def initialize(self):
        """Create tables and indexes if they do not exist."""
        statements = SCHEMA.get(self.database.dialect)
        if statements is None:
            raise StorageError(f"No schema for dialect '{self.database.dialect}'")

        with self._operation("Error initializing database"):
            async with self.database.transaction() as tx:
                for statement in statements:
                    await tx.execute(statement)
        self.logger.info("Ledger schema initialized", dialect=self.database.dialect)

    async def check_health(self) -> str:
        return "ok" if await self.database.health_check() else "error"

    @contextmanager
    def _operation(self, message: str, **context):
        """Re-raise store failures with an operation-level message."""
        try:
            yield
        except StorageError as e:
            self.logger.error(message, error=e.message, **context)
            raise StorageError(message, details=e.details) from e

    async def _insert_user(self, executor: QueryExecutor, user_id: str, email: str,
                           name: Optional[str]) -> bool:
        created = await executor.execute(INSERT_USER_SQL, user_id, email, name) > 0
        if created:
            self.logger.info("New user", user_id=user_id, name=name)
        return created

    async def ensure_user(self, user_id: str, email: str, name: Optional[str]) -> bool:
        """Make sure a user row exists; return True if this call created it.

        Concurrent callers for the same id are safe: the insert is a no-op
        when the row already exists.
        """
        with self._operation("Error processing user data", user_id=user_id):
            return await self._insert_user(self.database, user_id, email, name)

    async def record_click(self, user_id: str, email: str, name: Optional[str]) -> ClickRecord:
        """Record one click, creating the user first if needed.

        Both writes happen in one transaction.
        """
        with self._operation("Error recording click", user_id=user_id):
            async with self.database.transaction() as tx:
                await self._insert_user(tx, user_id, email, name)
                row = await tx.fetch_one("INSERT INTO clicks (user_id) VALUES (?) RETURNING id", user_id)

        if self.metrics:
            self.metrics.increment_counter("clicks_recorded_total")

        return ClickRecord(
            click_id=row["id"],
            user_id=user_id,
            timestamp=datetime.now(timezone.utc).isoformat()
        )

    async def get_user_click_count(self, user_id: str) -> int:
        with self._operation("Error getting click count", user_id=user_id):
            row = await self.database.fetch_one(
                "SELECT COUNT(*) AS count FROM clicks WHERE user_id = ?", user_id
            )
        return int(row["count"]) if row else 0

    async def get_user_click_history(self, user_id: str, limit: int = 100) -> List[ClickHistoryEntry]:
        """Most recent clicks first, at most ``limit`` of them."""
        with self._operation("Error getting click history", user_id=user_id):
            rows = await self.database.fetch_all(
                """
                SELECT id, clicked_at
                FROM clicks
                WHERE user_id = ?
                ORDER BY clicked_at DESC, id DESC
                LIMIT ?
                """,
                user_id, limit
            )
        return [ClickHistoryEntry(id=row["id"], timestamp=_as_timestamp(row["clicked_at"])) for row in rows]

    async def get_global_stats(self) -> GlobalStats:
        with self._operation("Error getting global statistics"):
            total_clicks = await self.database.fetch_one("SELECT COUNT(*) AS count FROM clicks")
            total_users = await self.database.fetch_one("SELECT COUNT(*) AS count FROM users")
            top_users = await self.database.fetch_all(
                """
                SELECT u.email, u.name, COUNT(c.id) AS click_count
                FROM users u
                LEFT JOIN clicks c ON u.id = c.user_id
                GROUP BY u.id, u.email, u.name
                ORDER BY click_count DESC
                LIMIT ?
                """,
                TOP_USERS_LIMIT
            )

        return GlobalStats(
            total_clicks=int(total_clicks["count"]),
            total_users=int(total_users["count"]),
            top_users=[
                TopUser(email=row["email"], name=row["name"], clicks=int(row["click_count"]))
                for row in top_users
            ]
        )

    async def get_user_info(self, user_id: str) -> Optional[UserInfo]:
        with self._operation("Error getting user information", user_id=user_id):
            row = await self.database.fetch_one(
                """
                SELECT u.id, u.email, u.name, u.created_at,
                       (SELECT COUNT(*) FROM clicks c WHERE c.user_id = u.id) AS total_clicks
                FROM users u
                WHERE u.id = ?
                """,
                user_id
            )

        if not row:
            return None

        return UserInfo(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            created_at=_as_timestamp(row["created_at"]),
            total_clicks=int(row["total_clicks"])
        )

    async def delete_user_clicks(self, user_id: str) -> int:
        """Delete every click of a user. The user row is kept."""
        with self._operation("Error deleting user clicks", user_id=user_id):
            deleted = await self.database.execute("DELETE FROM clicks WHERE user_id = ?", user_id)

        self.logger.info("User clicks deleted", user_id=user_id, deleted=deleted)
        return deleted
