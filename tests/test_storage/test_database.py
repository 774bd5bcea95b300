"""Tests for the asyncpg pool wrapper."""

from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from forum_tracker.config.settings import Settings
from forum_tracker.storage.database import Database, DatabaseNotConfiguredError

DSN = "postgresql://forums@localhost/forums"


@pytest.fixture
def conn():
    mock = MagicMock()
    mock.fetchval = AsyncMock(return_value=1)
    mock.execute = AsyncMock(return_value="UPDATE 1")
    mock.fetch = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def pool(conn):
    mock = MagicMock()
    mock.acquire.return_value.__aenter__.return_value = conn
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def create_pool(pool):
    with patch("asyncpg.create_pool", new=AsyncMock(return_value=pool)) as mock:
        yield mock


class TestDatabase:
    def test_requires_url(self):
        with pytest.raises(DatabaseNotConfiguredError):
            Database(settings=Settings(database_url=None))

    def test_pool_sizes_from_settings(self):
        db = Database(settings=Settings(database_url=DSN, db_pool_min_size=1, db_pool_max_size=4))

        assert (db._min_size, db._max_size) == (1, 4)

    def test_not_connected(self):
        db = Database(DSN)

        assert db.is_connected is False
        with pytest.raises(RuntimeError, match="not connected"):
            db.pool

    @pytest.mark.asyncio
    async def test_connect_once(self, create_pool):
        db = Database(DSN)

        await db.connect()
        await db.connect()

        create_pool.assert_awaited_once()
        assert create_pool.await_args.args[0] == DSN
        assert db.is_connected

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self):
        with patch("asyncpg.create_pool", new=AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(OSError):
                await Database(DSN).connect()

    @pytest.mark.asyncio
    async def test_context_manager_closes_pool(self, create_pool, pool):
        async with Database(DSN) as db:
            assert db.is_connected

        pool.close.assert_awaited_once()
        assert db.is_connected is False

    @pytest.mark.asyncio
    async def test_query_helpers(self, create_pool, conn):
        async with Database(DSN) as db:
            status = await db.execute("UPDATE forums SET name = $1", "x")
            await db.fetch("SELECT 1")

        assert status == "UPDATE 1"
        conn.execute.assert_awaited_once_with("UPDATE forums SET name = $1", "x")
        conn.fetch.assert_awaited_once_with("SELECT 1")

    @pytest.mark.asyncio
    async def test_transaction(self, create_pool, conn):
        async with Database(DSN) as db:
            async with db.transaction() as tx_conn:
                assert tx_conn is conn

        conn.transaction.assert_called_once()


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, create_pool):
        async with Database(DSN) as db:
            assert await db.health_check() is True

    @pytest.mark.asyncio
    async def test_not_connected(self):
        assert await Database(DSN).health_check() is False

    @pytest.mark.asyncio
    async def test_query_error(self, create_pool, conn):
        conn.fetchval.side_effect = asyncpg.InterfaceError("connection is closed")

        async with Database(DSN) as db:
            assert await db.health_check() is False
