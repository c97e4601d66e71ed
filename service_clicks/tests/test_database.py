"""
Unit tests for the store backends.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

import asyncpg

from service_clicks.app.persistence.database import (
    PostgresDatabase,
    SQLiteDatabase,
    _PostgresExecutor,
    affected_rows,
    create_database,
    to_positional,
)
from shared.errors import StorageError


class TestCreateDatabase:
    """URL dispatch."""

    def test_relative_sqlite_path(self):
        database = create_database("sqlite:///clicks.db")
        assert isinstance(database, SQLiteDatabase)
        assert database.path == "clicks.db"

    def test_absolute_sqlite_path(self):
        database = create_database("sqlite:////var/lib/clicks/clicks.db")
        assert database.path == "/var/lib/clicks/clicks.db"

    def test_memory_sqlite(self):
        assert create_database("sqlite:///:memory:").path == ":memory:"
        assert create_database("sqlite://").path == ":memory:"

    @pytest.mark.parametrize("url", ["postgres://u:p@db/clicks", "postgresql://u:p@db/clicks"])
    def test_postgres(self, url):
        database = create_database(url)
        assert isinstance(database, PostgresDatabase)
        assert database.dialect == "postgres"

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError):
            create_database("mysql://db/clicks")


class TestPlaceholderRewriting:

    def test_to_positional(self):
        sql = "SELECT * FROM clicks WHERE user_id = ? AND id > ? LIMIT ?"
        assert to_positional(sql) == "SELECT * FROM clicks WHERE user_id = $1 AND id > $2 LIMIT $3"

    def test_no_placeholders(self):
        assert to_positional("SELECT 1") == "SELECT 1"

    @pytest.mark.parametrize("status, expected", [
        ("INSERT 0 1", 1),
        ("INSERT 0 0", 0),
        ("DELETE 7", 7),
        ("CREATE TABLE", 0),
        ("", 0),
    ])
    def test_affected_rows(self, status, expected):
        assert affected_rows(status) == expected


class TestSQLiteDatabase:
    """Test cases for SQLiteDatabase against a real file."""

    @pytest.fixture
    async def database(self, tmp_path):
        database = SQLiteDatabase(str(tmp_path / "store.db"))
        await database.start()
        await database.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
        yield database
        await database.stop()

    @pytest.mark.asyncio
    async def test_execute_returns_affected_rows(self, database):
        assert await database.execute("INSERT INTO items (name) VALUES (?)", "a") == 1
        assert await database.execute("INSERT INTO items (name) VALUES (?)", "b") == 1
        assert await database.execute("DELETE FROM items") == 2

    @pytest.mark.asyncio
    async def test_fetch_one_and_all(self, database):
        await database.execute("INSERT INTO items (name) VALUES (?)", "a")
        await database.execute("INSERT INTO items (name) VALUES (?)", "b")

        row = await database.fetch_one("SELECT name FROM items WHERE name = ?", "b")
        rows = await database.fetch_all("SELECT name FROM items ORDER BY name")

        assert row == {"name": "b"}
        assert rows == [{"name": "a"}, {"name": "b"}]
        assert await database.fetch_one("SELECT name FROM items WHERE name = ?", "zzz") is None

    @pytest.mark.asyncio
    async def test_transaction_commits(self, database):
        async with database.transaction() as tx:
            await tx.execute("INSERT INTO items (name) VALUES (?)", "a")
            await tx.execute("INSERT INTO items (name) VALUES (?)", "b")

        rows = await database.fetch_all("SELECT name FROM items")
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, database):
        with pytest.raises(RuntimeError):
            async with database.transaction() as tx:
                await tx.execute("INSERT INTO items (name) VALUES (?)", "a")
                raise RuntimeError("boom")

        assert await database.fetch_all("SELECT name FROM items") == []

    @pytest.mark.asyncio
    async def test_driver_errors_become_storage_errors(self, database):
        with pytest.raises(StorageError) as exc_info:
            await database.execute("INSERT INTO items (name) VALUES (?)", None)

        assert exc_info.value.code == "STORAGE_ERROR"
        assert "statement" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_health_check(self, database):
        assert await database.health_check() is True

    @pytest.mark.asyncio
    async def test_not_started(self, tmp_path):
        database = SQLiteDatabase(str(tmp_path / "never.db"))

        with pytest.raises(StorageError):
            await database.fetch_one("SELECT 1")

        assert await database.health_check() is False

    @pytest.mark.asyncio
    async def test_foreign_keys_enforced(self, database):
        await database.execute(
            "CREATE TABLE children (id INTEGER PRIMARY KEY, item_id INTEGER NOT NULL REFERENCES items(id))"
        )

        with pytest.raises(StorageError):
            await database.execute("INSERT INTO children (item_id) VALUES (?)", 999)


class TestPostgresExecutor:
    """Test cases for the asyncpg executor with a mocked connection."""

    @pytest.fixture
    def conn(self):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="DELETE 3")
        conn.fetchrow = AsyncMock(return_value={"id": 1})
        conn.fetch = AsyncMock(return_value=[{"id": 1}, {"id": 2}])
        return conn

    @pytest.mark.asyncio
    async def test_execute_rewrites_placeholders(self, conn):
        executor = _PostgresExecutor(conn)

        deleted = await executor.execute("DELETE FROM clicks WHERE user_id = ?", "user1")

        assert deleted == 3
        conn.execute.assert_called_once_with("DELETE FROM clicks WHERE user_id = $1", "user1")

    @pytest.mark.asyncio
    async def test_fetch_returns_dicts(self, conn):
        executor = _PostgresExecutor(conn)

        assert await executor.fetch_one("SELECT id FROM clicks WHERE id = ?", 1) == {"id": 1}
        assert await executor.fetch_all("SELECT id FROM clicks") == [{"id": 1}, {"id": 2}]

    @pytest.mark.asyncio
    async def test_driver_errors_become_storage_errors(self, conn):
        conn.execute = AsyncMock(side_effect=asyncpg.PostgresError("relation does not exist"))
        executor = _PostgresExecutor(conn)

        with pytest.raises(StorageError):
            await executor.execute("DELETE FROM missing")

    @pytest.mark.asyncio
    async def test_pool_not_started(self):
        database = PostgresDatabase("postgresql://u:p@db/clicks")

        with pytest.raises(StorageError):
            await database.fetch_one("SELECT 1")
