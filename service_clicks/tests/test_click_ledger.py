"""
Tests for ClickLedger against a real SQLite database.
"""

import asyncio
from datetime import datetime

import pytest
from unittest.mock import AsyncMock, MagicMock

from service_clicks.app.ledger.click_ledger import ClickLedger
from service_clicks.app.persistence.database import SQLiteDatabase
from shared.errors import StorageError
from shared.metrics import MetricsCollector


@pytest.fixture
def metrics():
    return MetricsCollector("clicks")


@pytest.fixture
async def ledger(tmp_path, metrics):
    """Started ledger on a fresh database file."""
    ledger = ClickLedger(SQLiteDatabase(str(tmp_path / "clicks.db")), metrics=metrics)
    await ledger.start()
    yield ledger
    await ledger.stop()


async def count_rows(ledger, table):
    row = await ledger.database.fetch_one(f"SELECT COUNT(*) AS count FROM {table}")
    return row["count"]


class TestEnsureUser:

    @pytest.mark.asyncio
    async def test_creates_once(self, ledger):
        assert await ledger.ensure_user("u1", "u1@example.com", "One") is True
        assert await ledger.ensure_user("u1", "u1@example.com", "One") is False
        assert await count_rows(ledger, "users") == 1

    @pytest.mark.asyncio
    async def test_first_profile_wins(self, ledger):
        """Users are never updated after creation."""
        await ledger.ensure_user("u1", "first@example.com", "First")
        await ledger.ensure_user("u1", "second@example.com", "Second")

        info = await ledger.get_user_info("u1")
        assert info.email == "first@example.com"
        assert info.name == "First"

    @pytest.mark.asyncio
    async def test_concurrent_first_calls(self, ledger):
        """Racing first calls create exactly one row and never fail."""
        results = await asyncio.gather(*[
            ledger.ensure_user("u1", "u1@example.com", "One") for _ in range(10)
        ])

        assert results.count(True) == 1
        assert await count_rows(ledger, "users") == 1


class TestRecordClick:

    @pytest.mark.asyncio
    async def test_new_user_gets_user_and_click(self, ledger, metrics):
        record = await ledger.record_click("u1", "u1@example.com", "One")

        assert record.user_id == "u1"
        assert record.click_id > 0
        assert datetime.fromisoformat(record.timestamp).tzinfo is not None
        assert record.to_dict().keys() == {"clickId", "userId", "timestamp"}
        assert await count_rows(ledger, "users") == 1
        assert await count_rows(ledger, "clicks") == 1
        assert metrics.registry.get_sample_value("clicks_recorded_total") == 1

    @pytest.mark.asyncio
    async def test_existing_user_gets_only_click(self, ledger):
        await ledger.record_click("u1", "u1@example.com", "One")
        await ledger.record_click("u1", "u1@example.com", "One")

        assert await count_rows(ledger, "users") == 1
        assert await count_rows(ledger, "clicks") == 2

    @pytest.mark.asyncio
    async def test_click_ids_increase(self, ledger):
        first = await ledger.record_click("u1", "u1@example.com", "One")
        second = await ledger.record_click("u1", "u1@example.com", "One")

        assert second.click_id > first.click_id

    @pytest.mark.asyncio
    async def test_concurrent_clicks_for_new_user(self, ledger):
        await asyncio.gather(*[
            ledger.record_click("u1", "u1@example.com", "One") for _ in range(5)
        ])

        assert await count_rows(ledger, "users") == 1
        assert await ledger.get_user_click_count("u1") == 5


class TestQueries:

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger):
        assert await ledger.get_user_click_count("nobody") == 0
        assert await ledger.get_user_click_history("nobody") == []
        assert await ledger.get_user_info("nobody") is None
        assert await ledger.delete_user_clicks("nobody") == 0

    @pytest.mark.asyncio
    async def test_click_lifecycle(self, ledger):
        """Three clicks, partial history, delete, then zero."""
        ids = [(await ledger.record_click("u1", "u1@example.com", "One")).click_id for _ in range(3)]

        assert await ledger.get_user_click_count("u1") == 3

        history = await ledger.get_user_click_history("u1", 2)
        assert [entry.id for entry in history] == [ids[2], ids[1]]
        assert history[0].to_dict().keys() == {"id", "timestamp"}

        assert await ledger.delete_user_clicks("u1") == 3
        assert await ledger.get_user_click_count("u1") == 0
        assert await ledger.get_user_info("u1") is not None

    @pytest.mark.asyncio
    async def test_history_default_limit(self, ledger):
        for _ in range(3):
            await ledger.record_click("u1", "u1@example.com", "One")

        assert len(await ledger.get_user_click_history("u1")) == 3

    @pytest.mark.asyncio
    async def test_delete_only_touches_own_clicks(self, ledger):
        await ledger.record_click("u1", "u1@example.com", "One")
        await ledger.record_click("u2", "u2@example.com", "Two")
        await ledger.record_click("u2", "u2@example.com", "Two")

        assert await ledger.delete_user_clicks("u1") == 1
        assert await ledger.get_user_click_count("u2") == 2

    @pytest.mark.asyncio
    async def test_global_stats(self, ledger):
        """Users with 5 and 2 clicks."""
        for _ in range(5):
            await ledger.record_click("u1", "u1@example.com", "One")
        for _ in range(2):
            await ledger.record_click("u2", "u2@example.com", "Two")

        stats = await ledger.get_global_stats()

        assert stats.total_clicks == 7
        assert stats.total_users == 2
        assert stats.top_users[0].clicks == 5
        assert stats.top_users[0].email == "u1@example.com"
        assert stats.top_users[1].clicks == 2
        assert stats.to_dict()["topUsers"][0] == {"email": "u1@example.com", "name": "One", "clicks": 5}

    @pytest.mark.asyncio
    async def test_top_users_capped_at_five(self, ledger):
        for index in range(7):
            await ledger.ensure_user(f"u{index}", f"u{index}@example.com", None)

        stats = await ledger.get_global_stats()

        assert stats.total_users == 7
        assert stats.total_clicks == 0
        assert len(stats.top_users) == 5
        assert all(user.clicks == 0 for user in stats.top_users)

    @pytest.mark.asyncio
    async def test_user_info(self, ledger):
        await ledger.record_click("u1", "u1@example.com", "One")
        await ledger.record_click("u1", "u1@example.com", "One")

        info = await ledger.get_user_info("u1")

        assert info.id == "u1"
        assert info.total_clicks == 2
        assert info.created_at
        assert set(info.to_dict()) == {"id", "email", "name", "createdAt", "totalClicks"}

    @pytest.mark.asyncio
    async def test_deleting_user_cascades_to_clicks(self, ledger):
        await ledger.record_click("u1", "u1@example.com", "One")

        await ledger.database.execute("DELETE FROM users WHERE id = ?", "u1")

        assert await count_rows(ledger, "clicks") == 0


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, ledger):
        await ledger.record_click("u1", "u1@example.com", "One")
        await ledger.initialize()

        assert await ledger.get_user_click_count("u1") == 1

    @pytest.mark.asyncio
    async def test_data_survives_restart(self, tmp_path):
        path = str(tmp_path / "persist.db")
        first = ClickLedger(SQLiteDatabase(path))
        await first.start()
        await first.record_click("u1", "u1@example.com", "One")
        await first.stop()

        second = ClickLedger(SQLiteDatabase(path))
        await second.start()
        try:
            assert await second.get_user_click_count("u1") == 1
        finally:
            await second.stop()

    @pytest.mark.asyncio
    async def test_check_health(self, ledger):
        assert await ledger.check_health() == "ok"

    @pytest.mark.asyncio
    async def test_unknown_dialect(self):
        database = MagicMock()
        database.dialect = "oracle"
        database.start = AsyncMock()

        with pytest.raises(StorageError):
            await ClickLedger(database).start()


class TestStorageFailures:

    @pytest.mark.asyncio
    async def test_failures_propagate_with_operation_message(self):
        database = MagicMock()
        database.fetch_one = AsyncMock(side_effect=StorageError("disk I/O error", details={"cause": "disk I/O error"}))
        ledger = ClickLedger(database)

        with pytest.raises(StorageError) as exc_info:
            await ledger.get_user_click_count("u1")

        assert exc_info.value.message == "Error getting click count"
        assert exc_info.value.details == {"cause": "disk I/O error"}

    @pytest.mark.asyncio
    async def test_record_click_rolls_back(self, ledger):
        """When the click insert fails, the user insert is undone too."""
        await ledger.database.execute("DROP TABLE clicks")

        with pytest.raises(StorageError):
            await ledger.record_click("u1", "u1@example.com", "One")

        assert await count_rows(ledger, "users") == 0
