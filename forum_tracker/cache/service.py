"""
Multi-tier forum cache.

Tiers, fastest first:
1. Ephemeral store (Redis, TTL-bound, shared between instances)
2. In-process fallback map (entries served up to 2x TTL old)
3. Durable store (PostgreSQL topics table)

The write path never replaces good topics with an empty result: a failed
or empty fetch for an origin that already has topics keeps them and
refreshes the timestamp (a failure also records the error). The read
path never makes outbound network calls.
"""

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

import structlog

from forum_tracker.cache.config import CacheConfig
from forum_tracker.cache.ephemeral import EphemeralStore
from forum_tracker.cache.repository import ForumRepository
from forum_tracker.cache.schemas import CacheEntry, CacheStats, OriginHealth, OriginStatus
from forum_tracker.config.external_sources import EXTERNAL_KEY_PREFIX, ExternalSource
from forum_tracker.ingestion.schemas import FetchResult, Origin, Topic
from forum_tracker.ingestion.url import normalize_url
from forum_tracker.observability.metrics import get_metrics
from forum_tracker.storage.database import DB_ERRORS

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _topic_sort_key(topic: Topic) -> datetime:
    return topic.bumped_at or topic.created_at or datetime.min.replace(tzinfo=timezone.utc)


class ForumCache:
    """
    Serves the freshest available topics per origin across three tiers.

    One instance lives for the lifetime of the process. Either store may
    be None, in which case that tier is skipped.

    Example:
        cache = ForumCache(CacheConfig(), ephemeral=store, repository=repo)
        await cache.record_fetch(origin, await client.fetch_latest(origin))
        entry = await cache.get_cached_origin(origin.url)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        ephemeral: EphemeralStore | None = None,
        repository: ForumRepository | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.config = config or CacheConfig()
        self._ephemeral = ephemeral
        self._repository = repository
        self._clock = clock

        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    @property
    def ephemeral(self) -> EphemeralStore | None:
        return self._ephemeral

    @property
    def has_durable_tier(self) -> bool:
        return self._repository is not None

    # Write path

    async def record_fetch(
        self,
        origin: Origin | ExternalSource,
        result: FetchResult[list[Topic]],
    ) -> CacheEntry:
        """
        Store the outcome of one origin or external source fetch.

        On success the topics go to the fallback map and, when non-empty,
        to the ephemeral store; durable persistence runs in the background.
        An existing non-empty topic list is kept on failure and when the
        origin answers with no topics. External sources skip the durable
        tier.

        Returns:
            The entry now held in the fallback map
        """
        key = origin.key
        now = self._clock()

        async with self._lock:
            existing = self._entries.get(key)
            kept = existing is not None and bool(existing.topics)
            if result.ok and (result.value or not kept):
                entry = CacheEntry(topics=list(result.value), fetched_at=now)
            elif result.ok:
                entry = replace(existing, fetched_at=now, error=None, source="memory")
                logger.info(
                    "Origin returned no topics, keeping cached list",
                    origin=key,
                    topics=len(existing.topics),
                )
            elif kept:
                entry = replace(existing, fetched_at=now, error=str(result.error), source="memory")
                logger.warning(
                    "Keeping cached topics despite refresh error",
                    origin=key,
                    topics=len(existing.topics),
                    error=str(result.error),
                )
            else:
                entry = CacheEntry(topics=[], fetched_at=now, error=str(result.error))
            self._entries[key] = entry

        if result.ok and result.value:
            if self._ephemeral is not None:
                await self._ephemeral.set_topics(key, result.value, now)
            if self._repository is not None and isinstance(origin, Origin):
                self._schedule_persist(origin, list(result.value))

        return entry

    def _schedule_persist(self, origin: Origin, topics: list[Topic]) -> None:
        task = asyncio.create_task(self._persist(origin, topics))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, origin: Origin, topics: list[Topic]) -> None:
        assert self._repository is not None
        try:
            forum_id = await self._repository.upsert_forum(origin)
            await self._repository.upsert_topics(forum_id, topics)
            await self._repository.update_forum_last_fetched(forum_id)
        except DB_ERRORS as e:
            logger.warning("Durable persistence skipped", origin=origin.key, error=str(e))
            get_metrics().record_tier_error("durable", "persist")

    async def drain(self) -> None:
        """Wait for background persistence started so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # Read path

    async def get_cached_origin(self, url: str) -> CacheEntry | None:
        """
        Return the freshest cached entry for an origin URL or
        ``external:<id>`` key, or None.

        Order: ephemeral store, fallback map (age under 2x TTL, with
        topics), durable store (warms the fallback map). A fresh map entry
        that only holds an error is returned when no tier has topics.
        """
        key = normalize_url(url)
        metrics = get_metrics()
        now = self._clock()

        if self._ephemeral is not None:
            cached = await self._ephemeral.get_topics(key)
            if cached is not None:
                topics, fetched_at = cached
                metrics.record_cache_read("ephemeral")
                return CacheEntry(topics=topics, fetched_at=fetched_at, source="ephemeral")

        async with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry.age_seconds(now) >= self.config.fallback_max_age_seconds:
            entry = None

        if entry is not None and entry.topics:
            metrics.record_cache_read("memory")
            return replace(entry, source="memory")

        if self._repository is not None and not key.startswith(EXTERNAL_KEY_PREFIX):
            durable = await self._load_durable(key, now)
            if durable is not None:
                metrics.record_cache_read("durable")
                return durable

        metrics.record_cache_read("miss")
        return entry

    async def _load_durable(self, key: str, now: datetime) -> CacheEntry | None:
        assert self._repository is not None
        try:
            record = await self._repository.get_forum_by_url(key)
            if record is None:
                return None
            topics = await self._repository.get_recent_topics(
                record.id, limit=self.config.durable_read_limit
            )
        except DB_ERRORS as e:
            logger.warning("Durable read failed", origin=key, error=str(e))
            get_metrics().record_tier_error("durable", "read")
            return None

        if not topics:
            return None

        warmed = CacheEntry(topics=topics, fetched_at=now)
        async with self._lock:
            current = self._entries.get(key)
            # A concurrent fetch may already have stored newer topics
            if current is None or not current.topics:
                self._entries[key] = warmed
        logger.debug("Warmed fallback map from durable store", origin=key, topics=len(topics))
        return replace(warmed, source="durable")

    async def collect_topics(self, urls: list[str]) -> list[Topic]:
        """Merged topics of several origins, most recently active first."""
        seen: set[tuple[str, int]] = set()
        topics: list[Topic] = []
        for url in urls:
            entry = await self.get_cached_origin(url)
            if entry is None:
                continue
            for topic in entry.topics:
                ident = (normalize_url(topic.origin_url), topic.id)
                if ident in seen:
                    continue
                seen.add(ident)
                topics.append(topic)
        topics.sort(key=_topic_sort_key, reverse=True)
        return topics

    # Status

    async def origin_health(self, origins: list[Origin]) -> list[OriginHealth]:
        """Classify each origin as ok, error or not_cached (this process lifetime)."""
        async with self._lock:
            entries = dict(self._entries)

        results = []
        for origin in origins:
            entry = entries.get(origin.key)
            if entry is None:
                results.append(
                    OriginHealth(name=origin.name, url=origin.url, status=OriginStatus.NOT_CACHED)
                )
                continue
            results.append(
                OriginHealth(
                    name=origin.name,
                    url=origin.url,
                    status=OriginStatus.ERROR if entry.error else OriginStatus.OK,
                    topic_count=len(entry.topics),
                    last_fetched=entry.fetched_at,
                    error=entry.error,
                )
            )
        return results

    async def stats(self) -> CacheStats:
        async with self._lock:
            entries = list(self._entries.values())
        return CacheStats(
            total_origins=len(entries),
            successful=sum(1 for e in entries if not e.error),
            failed=sum(1 for e in entries if e.error),
            total_topics=sum(len(e.topics) for e in entries),
        )

    async def clear(self) -> None:
        """Drop the fallback map and the ephemeral topic lists."""
        async with self._lock:
            self._entries.clear()
        if self._ephemeral is not None:
            await self._ephemeral.clear()
