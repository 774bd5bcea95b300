"""
Shared PostgreSQL pool.

The durable cache tier (``forums``/``topics``) and the tenant pipeline
(``tenants``/``delegates``/``delegate_snapshots``) run on one asyncpg pool.
Construction fails fast without DATABASE_URL; connecting is a separate
step so each caller decides how to degrade when PostgreSQL is down.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg

from forum_tracker.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Errors that mean "the durable tier is unavailable right now"
DB_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


class DatabaseNotConfiguredError(RuntimeError):
    """Raised when an operation needs PostgreSQL but DATABASE_URL is unset."""


class Database:
    """
    asyncpg pool owned by one process.

    Usage:
        async with Database() as db:
            async with db.transaction() as conn:
                row = await conn.fetchrow("SELECT ... FOR UPDATE", ...)
                await conn.execute("UPDATE ...")
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float = 60.0,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        dsn = database_url or settings.database_url
        if not dsn:
            raise DatabaseNotConfiguredError("DATABASE_URL is not set")

        self._dsn = dsn
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def connect(self) -> None:
        """Create the pool. A second call is a no-op."""
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                server_settings={"application_name": "forum-tracker"},
            )
        except DB_ERRORS as e:
            logger.error(f"Failed to connect to database: {e}")
            raise
        logger.info(f"Database connected (pool: {self._min_size}-{self._max_size})")

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection with an open transaction, committed on clean exit."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def _run(self, method: str, query: str, args: tuple[Any, ...]) -> Any:
        async with self.acquire() as conn:
            return await getattr(conn, method)(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement; returns the status string (e.g. ``UPDATE 1``)."""
        return await self._run("execute", query, args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        return await self._run("fetch", query, args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        return await self._run("fetchrow", query, args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self._run("fetchval", query, args)

    async def health_check(self) -> bool:
        """True when the pool is up and answers ``SELECT 1``."""
        if self._pool is None:
            return False
        try:
            return await self.fetchval("SELECT 1") == 1
        except DB_ERRORS as e:
            logger.warning(f"Database health check failed: {e}")
            return False
