"""
Process-lifetime service container.

Builds every long-lived component from Settings once, in dependency
order, and tears them down in reverse. The API lifespan, the CLI and the
standalone scheduler all go through it, so there is no module-level
state besides settings and metrics.

Tiers degrade independently: without DATABASE_URL (or when the database
is unreachable at startup) there is no durable tier and no tenant
pipeline; without REDIS_URL there is no ephemeral tier and the refresh
lock is process-local.
"""

import structlog

from forum_tracker.cache.config import CacheConfig
from forum_tracker.cache.ephemeral import EphemeralStore
from forum_tracker.cache.repository import ForumRepository
from forum_tracker.cache.service import ForumCache
from forum_tracker.config.external_sources import get_external_sources
from forum_tracker.config.settings import Settings, get_settings
from forum_tracker.ingestion.external_client import ExternalSourceClient
from forum_tracker.ingestion.http_client import DomainRateLimiter, ForumHTTPClient, RetryConfig
from forum_tracker.ingestion.origin_client import OriginClient
from forum_tracker.members.credentials import CredentialCipher
from forum_tracker.members.refresh import TenantRefresher
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.sync import ContributorSync
from forum_tracker.scheduler.config import SchedulerConfig
from forum_tracker.scheduler.lock import LocalRefreshLock, RedisRefreshLock, RefreshLock
from forum_tracker.scheduler.refresh import RefreshCoordinator
from forum_tracker.scheduler.service import RefreshScheduler
from forum_tracker.scheduler.tenants import TenantSweep
from forum_tracker.storage.database import DB_ERRORS, Database

logger = structlog.get_logger(__name__)


class ServiceContainer:
    """
    Owns the long-lived components of one process.

    Usage:
        container = ServiceContainer()
        await container.start()
        summary = await container.coordinator.refresh()
        await container.close()
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

        self.database: Database | None = None
        self.ephemeral: EphemeralStore | None = None
        self.forum_repository: ForumRepository | None = None
        self.member_repository: MemberRepository | None = None
        self.refresher: TenantRefresher | None = None
        self.sweep: TenantSweep | None = None

        self.http = ForumHTTPClient(
            rate_limiter=DomainRateLimiter(max_requests=self.settings.outgoing_rate_limit),
            retry_config=RetryConfig(
                max_retries=self.settings.max_throttle_retries,
                backoff_floor_seconds=self.settings.throttle_backoff_floor_seconds,
                max_backoff_seconds=self.settings.max_backoff_seconds,
            ),
            timeout=self.settings.http_timeout_seconds,
            user_agent=self.settings.http_user_agent,
        )
        self.scheduler_config = SchedulerConfig.from_settings(self.settings)

        self.cache: ForumCache | None = None
        self.coordinator: RefreshCoordinator | None = None
        self.scheduler: RefreshScheduler | None = None
        self._started = False

    async def _connect_database(self) -> None:
        if not self.settings.database_configured:
            logger.info("DATABASE_URL not set, durable tier disabled")
            return
        database = Database(self.settings.database_url)
        try:
            await database.connect()
        except DB_ERRORS as e:
            logger.warning("Database unavailable, durable tier disabled", error=str(e))
            return
        self.database = database

        self.forum_repository = ForumRepository(database)
        try:
            await self.forum_repository.create_tables()
        except DB_ERRORS as e:
            logger.warning("Forum table creation failed", error=str(e))
        self.member_repository = MemberRepository(database)

    async def start(self) -> None:
        if self._started:
            return
        settings = self.settings

        await self._connect_database()
        if settings.redis_configured:
            self.ephemeral = EphemeralStore.from_url(
                settings.redis_url,
                topics_ttl_seconds=settings.cache_ttl_seconds,
                forum_list_ttl_seconds=settings.forum_list_ttl_seconds,
            )
        await self.http.open()

        self.cache = ForumCache(
            CacheConfig.from_settings(settings),
            ephemeral=self.ephemeral,
            repository=self.forum_repository,
        )

        lock: RefreshLock = (
            RedisRefreshLock(self.ephemeral) if self.ephemeral is not None else LocalRefreshLock()
        )
        external_client = None
        if settings.external_sources_enabled:
            external_client = ExternalSourceClient(
                self.http,
                github_token=settings.github_token,
                snapshot_api_key=settings.snapshot_api_key,
                limit=settings.external_posts_limit,
            )
        self.coordinator = RefreshCoordinator(
            self.cache,
            OriginClient(self.http, per_page=settings.latest_per_page),
            lock,
            self.scheduler_config,
            external_client=external_client,
            external_provider=lambda tiers: get_external_sources(tiers, settings),
        )

        if self.member_repository is not None:
            self.refresher = TenantRefresher(
                self.member_repository,
                self.http,
                CredentialCipher.from_settings(settings),
                ContributorSync(self.member_repository, max_members=settings.directory_max_members),
                recent_posts_limit=settings.recent_posts_limit,
            )
            self.sweep = TenantSweep(
                self.member_repository,
                self.refresher,
                default_hours=self.scheduler_config.tenant_refresh_hours,
            )

        self.scheduler = RefreshScheduler(self.coordinator, self.sweep, self.scheduler_config)
        self._started = True
        logger.info(
            "Services started",
            durable=self.database is not None,
            ephemeral=self.ephemeral is not None,
            tenants=self.refresher is not None,
        )

    async def close(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.cache is not None:
            await self.cache.drain()
        await self.http.close()
        if self.ephemeral is not None:
            await self.ephemeral.close()
        if self.database is not None:
            await self.database.close()
        self._started = False
        logger.info("Services closed")

    async def __aenter__(self) -> "ServiceContainer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
