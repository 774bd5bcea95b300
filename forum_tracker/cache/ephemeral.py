"""
Redis-backed ephemeral tier.

Keys are namespaced by origin URL and purpose:

    forum:{url}:topics   topic list of one origin (TTL 15 min)
    forums:all           URLs refreshed by the last cycle (TTL 1 h)
    refresh:last         ISO timestamp of the last completed cycle
    refresh:lock         distributed refresh lock (SET NX EX)

Read and write failures are logged and reported as a miss so the caller
can fall through to the next tier. Lock operations raise RedisError and
leave the degradation policy to the lock wrapper.
"""

import json
import logging
from datetime import datetime, timezone
from urllib.parse import quote

import redis.asyncio as redis
from redis.exceptions import RedisError

from forum_tracker.ingestion.schemas import Topic
from forum_tracker.ingestion.url import normalize_url
from forum_tracker.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

FORUM_LIST_KEY = "forums:all"
LAST_REFRESH_KEY = "refresh:last"
REFRESH_LOCK_KEY = "refresh:lock"

# Deletes the lock only while it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def topics_key(url: str) -> str:
    return f"forum:{quote(normalize_url(url), safe='')}:topics"


class EphemeralStore:
    """
    Fast, TTL-bound topic cache in Redis.

    Usage:
        store = EphemeralStore.from_url("redis://localhost:6379/0")
        await store.set_topics("https://forum.example.org", topics)
        cached = await store.get_topics("https://forum.example.org")
        await store.close()
    """

    def __init__(
        self,
        client: redis.Redis,
        topics_ttl_seconds: int = 900,
        forum_list_ttl_seconds: int = 3600,
    ):
        self._redis = client
        self.topics_ttl_seconds = topics_ttl_seconds
        self.forum_list_ttl_seconds = forum_list_ttl_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "EphemeralStore":
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, **kwargs)

    async def close(self) -> None:
        await self._redis.aclose()

    def _failed(self, operation: str, error: Exception) -> None:
        logger.warning(f"Redis {operation} failed: {error}")
        get_metrics().record_tier_error("ephemeral", operation)

    # Topics

    async def get_topics(self, url: str) -> tuple[list[Topic], datetime] | None:
        """
        Read the cached topic list of an origin.

        Returns:
            (topics, fetched_at) or None on miss, decode error or Redis error
        """
        try:
            data = await self._redis.get(topics_key(url))
        except RedisError as e:
            self._failed("get_topics", e)
            return None
        if not data:
            return None

        try:
            payload = json.loads(data)
            topics = [Topic.from_dict(t) for t in payload["topics"]]
            fetched_at = datetime.fromisoformat(payload["fetched_at"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding undecodable cache entry for {url}: {e}")
            return None
        return topics, fetched_at

    async def set_topics(
        self,
        url: str,
        topics: list[Topic],
        fetched_at: datetime | None = None,
    ) -> bool:
        """Cache an origin's topics with the topics TTL. Returns False on error."""
        fetched_at = fetched_at or datetime.now(timezone.utc)
        payload = json.dumps(
            {
                "fetched_at": fetched_at.isoformat(),
                "topics": [t.to_dict() for t in topics],
            }
        )
        try:
            await self._redis.set(topics_key(url), payload, ex=self.topics_ttl_seconds)
        except RedisError as e:
            self._failed("set_topics", e)
            return False
        return True

    # Markers

    async def get_forum_urls(self) -> list[str]:
        try:
            data = await self._redis.get(FORUM_LIST_KEY)
        except RedisError as e:
            self._failed("get_forum_urls", e)
            return []
        return json.loads(data) if data else []

    async def set_forum_urls(self, urls: list[str]) -> bool:
        try:
            await self._redis.set(
                FORUM_LIST_KEY, json.dumps(urls), ex=self.forum_list_ttl_seconds
            )
        except RedisError as e:
            self._failed("set_forum_urls", e)
            return False
        return True

    async def get_last_refresh(self) -> datetime | None:
        try:
            value = await self._redis.get(LAST_REFRESH_KEY)
        except RedisError as e:
            self._failed("get_last_refresh", e)
            return None
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None

    async def set_last_refresh(self, when: datetime | None = None) -> bool:
        when = when or datetime.now(timezone.utc)
        try:
            await self._redis.set(LAST_REFRESH_KEY, when.isoformat())
        except RedisError as e:
            self._failed("set_last_refresh", e)
            return False
        return True

    # Distributed lock

    async def acquire_lock(self, token: str, ttl_seconds: int) -> bool:
        """
        SET NX EX on the refresh lock.

        Returns:
            True if this token now holds the lock

        Raises:
            RedisError: Redis unreachable
        """
        was_set = await self._redis.set(REFRESH_LOCK_KEY, token, nx=True, ex=ttl_seconds)
        return bool(was_set)

    async def release_lock(self, token: str) -> bool:
        """
        Delete the refresh lock if ``token`` still holds it.

        Raises:
            RedisError: Redis unreachable
        """
        deleted = await self._redis.eval(_RELEASE_SCRIPT, 1, REFRESH_LOCK_KEY, token)
        return bool(deleted)

    # Maintenance

    async def clear(self) -> int:
        """
        Delete all cached topic lists and the forum-list marker.

        Uses SCAN rather than KEYS so large keyspaces are not blocked.

        Returns:
            Number of keys deleted
        """
        deleted = 0
        try:
            cursor = 0
            while True:
                cursor, batch = await self._redis.scan(cursor=cursor, match="forum:*", count=100)
                if batch:
                    deleted += await self._redis.delete(*batch)
                if cursor == 0:
                    break
            deleted += await self._redis.delete(FORUM_LIST_KEY)
        except RedisError as e:
            self._failed("clear", e)
        logger.info(f"Ephemeral cache cleared ({deleted} keys)")
        return deleted

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False
