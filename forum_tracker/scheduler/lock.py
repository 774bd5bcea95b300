"""
Cross-instance refresh lock.

``RedisRefreshLock`` uses SET NX EX with a per-holder token so only the
holder can release it. ``LocalRefreshLock`` is used when Redis is not
configured; the coordinator's in-process flag is then the only guard.
"""

import time
import uuid
from collections.abc import Callable
from typing import Protocol

import structlog
from redis.exceptions import RedisError

from forum_tracker.cache.ephemeral import EphemeralStore
from forum_tracker.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


class RefreshLock(Protocol):
    async def acquire(self, ttl_seconds: int) -> bool:
        """Try to take the lock. False means another instance holds it."""
        ...

    async def release(self) -> None:
        ...


class LocalRefreshLock:
    """Lock for a single process. Expires after its TTL like the Redis key."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at: float | None = None

    async def acquire(self, ttl_seconds: int) -> bool:
        now = self._clock()
        if self._expires_at is not None and now < self._expires_at:
            return False
        self._expires_at = now + ttl_seconds
        return True

    async def release(self) -> None:
        self._expires_at = None


class RedisRefreshLock:
    """
    Distributed lock on the ``refresh:lock`` key.

    A Redis error while acquiring degrades to the in-process guard and
    reports the lock as taken by this instance.
    """

    def __init__(self, store: EphemeralStore):
        self._store = store
        self._token: str | None = None

    async def acquire(self, ttl_seconds: int) -> bool:
        token = uuid.uuid4().hex
        try:
            acquired = await self._store.acquire_lock(token, ttl_seconds)
        except RedisError as e:
            logger.warning("Refresh lock unavailable, using in-process guard", error=str(e))
            get_metrics().record_tier_error("ephemeral", "lock")
            self._token = None
            return True

        if acquired:
            self._token = token
        return acquired

    async def release(self) -> None:
        token, self._token = self._token, None
        if token is None:
            return
        try:
            released = await self._store.release_lock(token)
        except RedisError as e:
            # The key expires on its own after the TTL
            logger.warning("Refresh lock release failed", error=str(e))
            get_metrics().record_tier_error("ephemeral", "unlock")
            return
        if not released:
            logger.warning("Refresh lock expired before release")
