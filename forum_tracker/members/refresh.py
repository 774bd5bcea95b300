"""
Per-tenant refresh: contributor sync plus detailed snapshots of tracked members.

Tracked members are processed one after another so a tenant's credential
never bursts past the shared per-domain rate limit. A member whose stats
cannot be fetched is recorded and skipped; the loop carries on.
"""

import time
from datetime import datetime, timezone

import structlog

from forum_tracker.ingestion.http_client import ForumHTTPClient
from forum_tracker.members.client import ForumAPIClient, ForumCredentials
from forum_tracker.members.credentials import CredentialCipher, CredentialError
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.schemas import (
    ContributorSyncResult,
    Member,
    MemberError,
    MemberUpdate,
    RationaleSearch,
    Tenant,
    TenantCapabilities,
    TenantRefreshResult,
    UserRef,
)
from forum_tracker.members.sync import ContributorSync
from forum_tracker.observability.metrics import get_metrics
from forum_tracker.storage.database import DB_ERRORS

logger = structlog.get_logger(__name__)


class TenantNotFoundError(LookupError):
    """No active tenant with the requested slug."""


class TenantRefresher:
    """
    Runs the tenant pipeline against one tenant at a time.

    Example:
        refresher = TenantRefresher(repo, http, cipher, ContributorSync(repo))
        result = await refresher.refresh_tenant("acme")
        print(result.snapshots_created, len(result.errors))
    """

    def __init__(
        self,
        repository: MemberRepository,
        http: ForumHTTPClient,
        cipher: CredentialCipher | None,
        contributor_sync: ContributorSync,
        recent_posts_limit: int = 15,
    ):
        self._repository = repository
        self._http = http
        self._cipher = cipher
        self._contributor_sync = contributor_sync
        self._recent_posts_limit = recent_posts_limit

    def client_for(self, tenant: Tenant) -> ForumAPIClient:
        """
        Build an API client with the tenant's decrypted credential.

        Raises:
            CredentialError: No encryption key configured, or the stored
                credential cannot be decrypted
        """
        if self._cipher is None:
            raise CredentialError("ENCRYPTION_KEY is not set")
        api_key = self._cipher.decrypt(tenant.encrypted_api_key)
        return ForumAPIClient(
            self._http,
            ForumCredentials(
                base_url=tenant.forum_url,
                api_key=api_key,
                api_username=tenant.api_username,
            ),
        )

    async def _open(self, slug: str) -> tuple[Tenant, ForumAPIClient]:
        tenant = await self._repository.get_tenant_by_slug(slug)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant not found: {slug}")
        return tenant, self.client_for(tenant)

    async def refresh_tenant(self, slug: str) -> TenantRefreshResult:
        """
        Refresh one tenant.

        Raises:
            TenantNotFoundError: Unknown or inactive slug
            CredentialError: Credential cannot be decrypted
        """
        start = time.monotonic()
        tenant, client = await self._open(slug)
        log = logger.bind(tenant=slug)
        result = TenantRefreshResult(tenant_slug=slug)

        if tenant.config.sync_contributors:
            result.contributor_sync = await self._contributor_sync.sync(tenant, client)

        members = await self._repository.list_members(tenant.id, tracked_only=True)
        log.info("Refreshing tracked members", count=len(members))

        for member in members:
            if await self._refresh_member(tenant, client, member, result):
                result.members_refreshed += 1

        await self._repository.update_last_refresh(tenant.id)

        result.elapsed_seconds = time.monotonic() - start
        result.timestamp = datetime.now(timezone.utc)
        get_metrics().tenant_refreshes.labels(status="ok").inc()
        log.info(
            "Tenant refresh complete",
            members=result.members_refreshed,
            snapshots=result.snapshots_created,
            errors=len(result.errors),
            duration=round(result.elapsed_seconds, 2),
        )
        return result

    async def _refresh_member(
        self,
        tenant: Tenant,
        client: ForumAPIClient,
        member: Member,
        result: TenantRefreshResult,
    ) -> bool:
        """Fetch one member's detail and snapshot it. Returns True on success."""
        username = member.username
        metrics = get_metrics()
        log = logger.bind(tenant=tenant.slug, username=username)

        stats_result = await client.get_user_stats(username)
        if not stats_result.ok or stats_result.value is None:
            log.warning("Stats fetch failed", error=str(stats_result.error))
            metrics.record_member_error("stats")
            result.errors.append(
                MemberError(username=username, error=str(stats_result.error), stage="stats")
            )
            return False
        stats = stats_result.value

        posts_result = await client.get_user_posts(username, limit=self._recent_posts_limit)
        if not posts_result.ok:
            log.info("Recent posts unavailable", error=str(posts_result.error))
        posts = posts_result.unwrap_or([])

        config = tenant.config
        rationale_result = await client.search_rationales(
            username,
            pattern=config.rationale_search_pattern,
            category_ids=config.rationale_category_ids,
            tags=config.rationale_tags,
        )
        if not rationale_result.ok:
            log.info("Rationale search unavailable", error=str(rationale_result.error))
        rationales = rationale_result.unwrap_or(RationaleSearch())

        try:
            stored = await self._repository.upsert_member(
                tenant.id,
                MemberUpdate(
                    username=username,
                    display_name=stats.name,
                    is_tracked=True,
                    avatar_template=stats.avatar_template or None,
                ),
            )
            await self._repository.create_snapshot(
                member_id=stored.id,
                tenant_id=tenant.id,
                stats=stats.to_dict(),
                rationale_count=rationales.count,
                recent_posts=[p.to_dict() for p in posts],
            )
        except DB_ERRORS as e:
            log.warning("Snapshot write failed", error=str(e))
            metrics.record_member_error("upsert")
            result.errors.append(MemberError(username=username, error=str(e), stage="upsert"))
            return False

        result.snapshots_created += 1
        metrics.snapshots_created.inc()
        return True

    async def sync_contributors(self, slug: str) -> ContributorSyncResult:
        """Run only the directory sync for a tenant."""
        tenant, client = await self._open(slug)
        return await self._contributor_sync.sync(tenant, client)

    async def probe_capabilities(self, slug: str) -> TenantCapabilities:
        """Probe the tenant credential and store the capability flags."""
        tenant, client = await self._open(slug)
        capabilities = await client.detect_capabilities()
        await self._repository.update_capabilities(tenant.id, capabilities)
        return capabilities

    async def track_member(self, slug: str, username: str) -> Member | None:
        """
        Start tracking a forum user.

        The username is resolved against the forum first; returns None when
        the forum does not know it.
        """
        tenant, client = await self._open(slug)
        lookup = await client.lookup_username(username)
        user = lookup.unwrap_or(None)
        if user is None:
            logger.info(
                "Username lookup failed",
                tenant=slug,
                username=username,
                error=str(lookup.error),
            )
            return None
        return await self._repository.upsert_member(
            tenant.id,
            MemberUpdate(
                username=user.username,
                display_name=user.name,
                is_tracked=True,
                avatar_template=user.avatar_template or None,
            ),
        )

    async def search_users(self, slug: str, term: str, limit: int = 10) -> list[UserRef]:
        """Forum user autocomplete for a tenant. Empty on failure."""
        _, client = await self._open(slug)
        return (await client.search_users(term, limit=limit)).unwrap_or([])
