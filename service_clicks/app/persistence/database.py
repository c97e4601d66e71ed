"""
Async query executors for the click ledger store.

Every backend exposes the same three primitives (``execute`` returning the
affected row count, ``fetch_one`` and ``fetch_all`` returning plain dicts)
plus ``transaction()``, an async context manager that commits on success and
rolls back on any exception. Statements use ``?`` placeholders; the
PostgreSQL backend rewrites them to ``$n``.

Driver exceptions never leave this module: they are converted to
:class:`shared.errors.StorageError`.
"""

import asyncio
import itertools
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type

import aiosqlite
import asyncpg

from shared.errors import StorageError
from shared.logging import get_logger


class QueryExecutor(ABC):
    """The three store primitives."""

    @abstractmethod
    async def execute(self, sql: str, *args: Any) -> int:
        """Run a statement and return the number of affected rows."""

    @abstractmethod
    async def fetch_one(self, sql: str, *args: Any) -> Optional[Dict[str, Any]]:
        """Return the first row, or None."""

    @abstractmethod
    async def fetch_all(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        """Return all rows."""


class Database(QueryExecutor):
    """A store handle: lifecycle, primitives and transactions."""

    dialect: str = ""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    def transaction(self):
        """Async context manager yielding a QueryExecutor bound to one transaction."""

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            row = await self.fetch_one("SELECT 1 AS ok")
            return row is not None
        except StorageError:
            return False


@contextmanager
def translate_errors(driver_errors: Tuple[Type[BaseException], ...], sql: str = ""):
    """Convert driver exceptions into StorageError."""
    try:
        yield
    except driver_errors as e:
        details = {"cause": str(e) or e.__class__.__name__}
        if sql:
            details["statement"] = " ".join(sql.split())[:120]
        raise StorageError(f"Database operation failed: {details['cause']}", details=details) from e


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

SQLITE_ERRORS: Tuple[Type[BaseException], ...] = (aiosqlite.Error, ValueError)


class _SQLiteExecutor(QueryExecutor):
    """Primitives over a single aiosqlite connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, sql: str, *args: Any) -> int:
        with translate_errors(SQLITE_ERRORS, sql):
            async with self._conn.execute(sql, args) as cursor:
                return max(cursor.rowcount, 0)

    async def fetch_one(self, sql: str, *args: Any) -> Optional[Dict[str, Any]]:
        with translate_errors(SQLITE_ERRORS, sql):
            async with self._conn.execute(sql, args) as cursor:
                row = await cursor.fetchone()
                return dict(row) if row is not None else None

    async def fetch_all(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        with translate_errors(SQLITE_ERRORS, sql):
            async with self._conn.execute(sql, args) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]


class SQLiteDatabase(Database):
    """SQLite store over one connection.

    Statements are serialized with a lock; a transaction holds the lock
    until it commits or rolls back.
    """

    dialect = "sqlite"

    def __init__(self, path: str):
        self.path = path
        self.logger = get_logger("clicks.persistence.sqlite")
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Open the connection."""
        with translate_errors(SQLITE_ERRORS):
            self._conn = await aiosqlite.connect(self.path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA foreign_keys = ON")
            if self.path != ":memory:":
                await self._conn.execute("PRAGMA journal_mode = WAL")
        self.logger.info("SQLite database connected", path=self.path)

    async def stop(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self.logger.info("SQLite database closed", path=self.path)

    def _executor(self) -> _SQLiteExecutor:
        if self._conn is None:
            raise StorageError("Database not started", details={"cause": "no open connection"})
        return _SQLiteExecutor(self._conn)

    async def execute(self, sql: str, *args: Any) -> int:
        async with self._lock:
            return await self._executor().execute(sql, *args)

    async def fetch_one(self, sql: str, *args: Any) -> Optional[Dict[str, Any]]:
        async with self._lock:
            return await self._executor().fetch_one(sql, *args)

    async def fetch_all(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        async with self._lock:
            return await self._executor().fetch_all(sql, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[QueryExecutor]:
        async with self._lock:
            executor = self._executor()
            await executor.execute("BEGIN IMMEDIATE")
            try:
                yield executor
                await executor.execute("COMMIT")
            except BaseException:
                await executor.execute("ROLLBACK")
                raise


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

POSTGRES_ERRORS: Tuple[Type[BaseException], ...] = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_PLACEHOLDER = re.compile(r"\?")


def to_positional(sql: str) -> str:
    """Rewrite ``?`` placeholders as ``$1, $2, ...``."""
    counter = itertools.count(1)
    return _PLACEHOLDER.sub(lambda _: f"${next(counter)}", sql)


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as ``DELETE 3``."""
    last = (status or "").rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


class _PostgresExecutor(QueryExecutor):
    """Primitives over one asyncpg connection."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def execute(self, sql: str, *args: Any) -> int:
        with translate_errors(POSTGRES_ERRORS, sql):
            status = await self.conn.execute(to_positional(sql), *args)
            return affected_rows(status)

    async def fetch_one(self, sql: str, *args: Any) -> Optional[Dict[str, Any]]:
        with translate_errors(POSTGRES_ERRORS, sql):
            row = await self.conn.fetchrow(to_positional(sql), *args)
            return dict(row) if row is not None else None

    async def fetch_all(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        with translate_errors(POSTGRES_ERRORS, sql):
            rows = await self.conn.fetch(to_positional(sql), *args)
            return [dict(row) for row in rows]


class PostgresDatabase(Database):
    """PostgreSQL store backed by an asyncpg pool."""

    dialect = "postgres"

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("clicks.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self) -> None:
        """Create the connection pool."""
        with translate_errors(POSTGRES_ERRORS):
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
        self.logger.info("PostgreSQL pool started")

    async def stop(self) -> None:
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL pool stopped")

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[_PostgresExecutor]:
        if self.pool is None:
            raise StorageError("Database not started", details={"cause": "no connection pool"})
        try:
            async with self.pool.acquire() as conn:
                yield _PostgresExecutor(conn)
        except POSTGRES_ERRORS as e:
            raise StorageError(f"Database operation failed: {e}", details={"cause": str(e)}) from e

    async def execute(self, sql: str, *args: Any) -> int:
        async with self._connection() as executor:
            return await executor.execute(sql, *args)

    async def fetch_one(self, sql: str, *args: Any) -> Optional[Dict[str, Any]]:
        async with self._connection() as executor:
            return await executor.fetch_one(sql, *args)

    async def fetch_all(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        async with self._connection() as executor:
            return await executor.fetch_all(sql, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[QueryExecutor]:
        async with self._connection() as executor:
            try:
                async with executor.conn.transaction():
                    yield executor
            except POSTGRES_ERRORS as e:
                raise StorageError(f"Transaction failed: {e}", details={"cause": str(e)}) from e


def create_database(url: str) -> Database:
    """Build a Database for a URL.

    ``sqlite:///relative.db``, ``sqlite:////absolute.db`` and
    ``sqlite:///:memory:`` select SQLite; ``postgres://`` and
    ``postgresql://`` select PostgreSQL.
    """
    if url.startswith("sqlite:///"):
        return SQLiteDatabase(url[len("sqlite:///"):])
    if url.startswith("sqlite://"):
        return SQLiteDatabase(url[len("sqlite://"):] or ":memory:")
    if url.startswith(("postgres://", "postgresql://")):
        return PostgresDatabase(url)
    raise ValueError(f"Unsupported database URL: {url}")
