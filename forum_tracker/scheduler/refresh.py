"""
Origin refresh cycle with single-flight and a distributed lock.

One cycle:
1. Set the in-process flag (a concurrent call returns immediately)
2. Acquire the distributed lock (held elsewhere: skip this cycle)
3. Fetch origins in fixed-size concurrent batches, pausing between batches
4. Write the forum-list and last-refresh markers
5. Refresh external sources one at a time (when a client is configured)
6. Release the lock and clear the flag, whatever happened in between
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from forum_tracker.cache.service import ForumCache
from forum_tracker.config.external_sources import ExternalSource, SourceType, get_external_sources
from forum_tracker.config.origins import get_origins
from forum_tracker.ingestion.external_client import ExternalSourceClient
from forum_tracker.ingestion.origin_client import OriginClient
from forum_tracker.ingestion.schemas import FetchResult, Origin, Topic
from forum_tracker.observability.metrics import get_metrics
from forum_tracker.scheduler.config import SchedulerConfig
from forum_tracker.scheduler.lock import RefreshLock

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RefreshOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED_IN_PROGRESS = "skipped_in_progress"
    SKIPPED_LOCKED = "skipped_locked"


@dataclass
class RefreshSummary:
    """Result of one refresh invocation."""

    outcome: RefreshOutcome
    origins: int = 0
    successful: int = 0
    failed: int = 0
    total_topics: int = 0
    errors: dict[str, str] = field(default_factory=dict)
    started_at: datetime | None = None
    duration_seconds: float = 0.0
    external_sources: int = 0
    external_failed: int = 0

    @property
    def ran(self) -> bool:
        return self.outcome == RefreshOutcome.COMPLETED


@dataclass
class RefreshStatus:
    in_progress: bool
    started_at: datetime | None = None
    last_refresh: datetime | None = None
    last_summary: RefreshSummary | None = None


class RefreshCoordinator:
    """
    Brings the cache up to date for every configured origin.

    One instance per process; the flag and last summary live on it.

    Example:
        coordinator = RefreshCoordinator(cache, OriginClient(http), RedisRefreshLock(store))
        summary = await coordinator.refresh()
        if summary.outcome is RefreshOutcome.SKIPPED_LOCKED:
            ...  # another instance is refreshing
    """

    def __init__(
        self,
        cache: ForumCache,
        client: OriginClient,
        lock: RefreshLock,
        config: SchedulerConfig | None = None,
        origins_provider: Callable[[list[int] | None], list[Origin]] = get_origins,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        external_client: ExternalSourceClient | None = None,
        external_provider: Callable[[list[int] | None], list[ExternalSource]] = get_external_sources,
    ):
        self._cache = cache
        self._client = client
        self._lock = lock
        self.config = config or SchedulerConfig()
        self._origins_provider = origins_provider
        self._clock = clock
        self._sleep = sleep
        self._external_client = external_client
        self._external_provider = external_provider

        self._state_lock = asyncio.Lock()
        self._in_progress = False
        self._started_at: datetime | None = None
        # Incremented per run so a run cleared as stale cannot reset its successor
        self._run_id = 0
        self._last_summary: RefreshSummary | None = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def last_summary(self) -> RefreshSummary | None:
        return self._last_summary

    async def refresh(self, tiers: list[int] | None = None) -> RefreshSummary:
        """
        Run one refresh cycle unless one is already running.

        Args:
            tiers: Origin tiers to refresh (default: configured tiers)
        """
        metrics = get_metrics()
        now = self._clock()

        async with self._state_lock:
            self._clear_if_stale(now)
            if self._in_progress:
                logger.info("Refresh already in progress", started_at=self._started_at)
                metrics.record_refresh(RefreshOutcome.SKIPPED_IN_PROGRESS.value)
                return RefreshSummary(outcome=RefreshOutcome.SKIPPED_IN_PROGRESS)
            self._in_progress = True
            self._started_at = now
            self._run_id += 1
            run_id = self._run_id
        metrics.set_refresh_in_progress(True)

        acquired = False
        try:
            acquired = await self._lock.acquire(self.config.lock_ttl_seconds)
            if not acquired:
                logger.info("Refresh lock held by another instance, skipping")
                metrics.record_refresh(RefreshOutcome.SKIPPED_LOCKED.value)
                return RefreshSummary(outcome=RefreshOutcome.SKIPPED_LOCKED)

            summary = await self._run(tiers or self.config.tiers, now)
            self._last_summary = summary
            metrics.record_refresh(summary.outcome.value, summary.duration_seconds)
            return summary
        finally:
            if acquired:
                await self._lock.release()
            async with self._state_lock:
                if self._run_id == run_id:
                    self._in_progress = False
                    self._started_at = None
            metrics.set_refresh_in_progress(False)

    async def _refresh_origin(self, origin: Origin) -> tuple[Origin, FetchResult[list[Topic]], int]:
        result = await self._client.fetch_latest(origin)
        entry = await self._cache.record_fetch(origin, result)
        return origin, result, len(entry.topics)

    async def _run(self, tiers: list[int], started_at: datetime) -> RefreshSummary:
        start = time.monotonic()
        origins = self._origins_provider(tiers)
        batch_size = max(1, self.config.batch_size)
        summary = RefreshSummary(
            outcome=RefreshOutcome.COMPLETED,
            origins=len(origins),
            started_at=started_at,
        )
        logger.info("Refresh started", origins=len(origins), tiers=tiers)

        refreshed: list[str] = []
        for offset in range(0, len(origins), batch_size):
            if offset and self.config.batch_delay_seconds > 0:
                await self._sleep(self.config.batch_delay_seconds)

            batch = origins[offset : offset + batch_size]
            outcomes = await asyncio.gather(*(self._refresh_origin(o) for o in batch))

            for origin, result, cached in outcomes:
                summary.total_topics += cached
                if result.ok:
                    summary.successful += 1
                    if result.value:
                        refreshed.append(origin.key)
                else:
                    summary.failed += 1
                    summary.errors[origin.key] = str(result.error)

        ephemeral = self._cache.ephemeral
        if ephemeral is not None:
            await ephemeral.set_forum_urls(refreshed)
            await ephemeral.set_last_refresh(self._clock())

        if self._external_client is not None:
            await self._refresh_external(tiers, summary)

        summary.duration_seconds = time.monotonic() - start
        logger.info(
            "Refresh complete",
            successful=summary.successful,
            failed=summary.failed,
            topics=summary.total_topics,
            external=summary.external_sources,
            duration=round(summary.duration_seconds, 2),
        )
        return summary

    async def _refresh_external(self, tiers: list[int], summary: RefreshSummary) -> None:
        """
        Fetch external sources sequentially. GitHub and Snapshot calls are
        followed by a pause; sources the client cannot fetch are skipped.
        """
        assert self._external_client is not None
        for source in self._external_provider(tiers):
            if not self._external_client.can_fetch(source):
                logger.debug("Skipping unconfigured external source", source=source.key)
                continue

            result = await self._external_client.fetch(source)
            entry = await self._cache.record_fetch(source, result)
            summary.external_sources += 1
            summary.total_topics += len(entry.topics)
            if not result.ok:
                summary.external_failed += 1
                summary.errors[source.key] = str(result.error)

            throttled = source.source_type in (SourceType.GITHUB, SourceType.SNAPSHOT)
            if throttled and self.config.external_delay_seconds > 0:
                await self._sleep(self.config.external_delay_seconds)

    def _clear_if_stale(self, now: datetime) -> None:
        """
        Drop a flag set for longer than the stale threshold. It is left over
        from a crashed or hung run. Caller holds ``_state_lock``.
        """
        if (
            self._in_progress
            and self._started_at is not None
            and (now - self._started_at).total_seconds() > self.config.stale_seconds
        ):
            logger.warning("Clearing stale refresh flag", started_at=self._started_at)
            self._in_progress = False
            self._started_at = None
            get_metrics().set_refresh_in_progress(False)

    async def status(self) -> RefreshStatus:
        """Current refresh state, with a stale in-progress flag cleared first."""
        async with self._state_lock:
            self._clear_if_stale(self._clock())
            in_progress, started_at = self._in_progress, self._started_at

        last_refresh = None
        if self._cache.ephemeral is not None:
            last_refresh = await self._cache.ephemeral.get_last_refresh()
        if last_refresh is None and self._last_summary is not None:
            last_refresh = self._last_summary.started_at

        return RefreshStatus(
            in_progress=in_progress,
            started_at=started_at,
            last_refresh=last_refresh,
            last_summary=self._last_summary,
        )
