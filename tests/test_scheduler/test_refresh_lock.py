"""Tests for the local and Redis refresh locks."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from forum_tracker.cache.ephemeral import EphemeralStore
from forum_tracker.scheduler.lock import LocalRefreshLock, RedisRefreshLock


class TestLocalRefreshLock:
    @pytest.mark.asyncio
    async def test_exclusive_until_released(self, fake_clock):
        lock = LocalRefreshLock(clock=fake_clock)

        assert await lock.acquire(300)
        assert not await lock.acquire(300)

        await lock.release()
        assert await lock.acquire(300)

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, fake_clock):
        lock = LocalRefreshLock(clock=fake_clock)
        await lock.acquire(300)

        fake_clock.now += 299
        assert not await lock.acquire(300)

        fake_clock.now += 1
        assert await lock.acquire(300)


@pytest.fixture
def store():
    mock = AsyncMock(spec=EphemeralStore)
    mock.acquire_lock.return_value = True
    mock.release_lock.return_value = True
    return mock


class TestRedisRefreshLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release_same_token(self, store):
        lock = RedisRefreshLock(store)

        assert await lock.acquire(300)
        await lock.release()

        token, ttl = store.acquire_lock.await_args.args
        assert ttl == 300
        store.release_lock.assert_awaited_once_with(token)

    @pytest.mark.asyncio
    async def test_tokens_are_unique_per_acquire(self, store):
        lock = RedisRefreshLock(store)

        await lock.acquire(300)
        await lock.release()
        await lock.acquire(300)

        first, second = (c.args[0] for c in store.acquire_lock.await_args_list)
        assert first != second

    @pytest.mark.asyncio
    async def test_held_elsewhere(self, store):
        store.acquire_lock.return_value = False
        lock = RedisRefreshLock(store)

        assert await lock.acquire(300) is False
        await lock.release()

        store.release_lock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_down_degrades_to_local_guard(self, store):
        store.acquire_lock.side_effect = RedisConnectionError("down")
        lock = RedisRefreshLock(store)

        assert await lock.acquire(300) is True
        await lock.release()

        store.release_lock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_release_error_is_absorbed(self, store):
        store.release_lock.side_effect = RedisConnectionError("down")
        lock = RedisRefreshLock(store)
        await lock.acquire(300)

        await lock.release()

        store.release_lock.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, store):
        lock = RedisRefreshLock(store)
        await lock.acquire(300)

        await lock.release()
        await lock.release()

        assert store.release_lock.await_count == 1
