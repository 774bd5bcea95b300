"""Tests for TenantRefresher."""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx

from forum_tracker.ingestion.http_client import ForumHTTPClient
from forum_tracker.ingestion.schemas import FetchError, FetchErrorKind, FetchResult
from forum_tracker.members.client import ForumAPIClient
from forum_tracker.members.credentials import CredentialCipher, CredentialError
from forum_tracker.members.refresh import TenantNotFoundError, TenantRefresher
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.schemas import (
    ContributorSyncResult,
    RationaleSearch,
    TenantCapabilities,
    TenantConfig,
    UserPost,
    UserRef,
    UserStats,
)
from forum_tracker.members.sync import ContributorSync

KEY = "11" * 32


def _failure(message="HTTP 404", kind=FetchErrorKind.HTTP_STATUS):
    return FetchError(kind, message, 404)


@pytest.fixture
def cipher():
    return CredentialCipher(KEY)


@pytest.fixture
def repository(tenant, make_member):
    repo = AsyncMock(spec=MemberRepository)
    repo.get_tenant_by_slug.return_value = tenant
    repo.list_members.return_value = [
        make_member("alice", 1, is_tracked=True),
        make_member("bob", 2, is_tracked=True),
    ]
    repo.upsert_member.side_effect = lambda tenant_id, update: make_member(
        update.username, 1 if update.username == "alice" else 2, is_tracked=True
    )
    return repo


@pytest.fixture
def api_client():
    client = AsyncMock(spec=ForumAPIClient)
    client.get_user_stats.side_effect = lambda username: FetchResult.success(
        UserStats(username=username, name=username.title(), post_count=12)
    )
    client.get_user_posts.return_value = FetchResult.success(
        [UserPost(id=5, topic_id=9, topic_title="Budget")]
    )
    client.search_rationales.return_value = FetchResult.success(RationaleSearch(count=2))
    return client


@pytest.fixture
def contributor_sync():
    sync = AsyncMock(spec=ContributorSync)
    sync.sync.return_value = ContributorSyncResult(tenant_slug="acme", synced=40, fetched=40)
    return sync


@pytest.fixture
def refresher(repository, cipher, contributor_sync, api_client):
    instance = TenantRefresher(repository, MagicMock(), cipher, contributor_sync)
    instance.client_for = MagicMock(return_value=api_client)
    return instance


class TestRefreshTenant:
    """Tests for refresh_tenant."""

    @pytest.mark.asyncio
    async def test_snapshots_every_tracked_member(self, refresher, repository, tenant):
        result = await refresher.refresh_tenant("acme")

        assert result.tenant_slug == "acme"
        assert result.members_refreshed == 2
        assert result.snapshots_created == 2
        assert result.errors == []
        assert result.contributor_sync is None
        assert result.timestamp is not None

        repository.list_members.assert_awaited_once_with(tenant.id, tracked_only=True)
        repository.update_last_refresh.assert_awaited_once_with(tenant.id)

        snapshot = repository.create_snapshot.await_args_list[0].kwargs
        assert snapshot["member_id"] == 1
        assert snapshot["tenant_id"] == tenant.id
        assert snapshot["stats"]["post_count"] == 12
        assert snapshot["rationale_count"] == 2
        assert snapshot["recent_posts"][0]["topic_title"] == "Budget"

    @pytest.mark.asyncio
    async def test_upserts_as_tracked(self, refresher, repository):
        await refresher.refresh_tenant("acme")

        update = repository.upsert_member.await_args_list[0].args[1]
        assert update.username == "alice"
        assert update.is_tracked is True
        assert update.display_name == "Alice"

    @pytest.mark.asyncio
    async def test_stats_failure_skips_member(self, refresher, repository, api_client):
        def stats(username):
            if username == "alice":
                return FetchResult.failure(_failure(), None)
            return FetchResult.success(UserStats(username=username))

        api_client.get_user_stats.side_effect = stats

        result = await refresher.refresh_tenant("acme")

        assert result.members_refreshed == 1
        assert result.snapshots_created == 1
        assert [(e.username, e.stage, e.error) for e in result.errors] == [
            ("alice", "stats", "HTTP 404")
        ]
        repository.update_last_refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_posts_and_rationales_are_best_effort(self, refresher, repository, api_client):
        api_client.get_user_posts.return_value = FetchResult.failure(_failure(), [])
        api_client.search_rationales.return_value = FetchResult.failure(
            _failure(), RationaleSearch()
        )

        result = await refresher.refresh_tenant("acme")

        assert result.snapshots_created == 2
        snapshot = repository.create_snapshot.await_args_list[0].kwargs
        assert snapshot["recent_posts"] == []
        assert snapshot["rationale_count"] == 0

    @pytest.mark.asyncio
    async def test_database_error_recorded_per_member(self, refresher, repository):
        repository.create_snapshot.side_effect = [OSError("disk full"), None]

        result = await refresher.refresh_tenant("acme")

        assert result.snapshots_created == 1
        assert result.errors[0].stage == "upsert"
        assert result.errors[0].username == "alice"

    @pytest.mark.asyncio
    async def test_rationale_config_passed_through(self, refresher, repository, api_client, tenant):
        repository.get_tenant_by_slug.return_value = replace(
            tenant,
            config=TenantConfig(
                rationale_search_pattern="vote rationale",
                rationale_category_ids=[14],
                rationale_tags=["votes"],
            ),
        )

        await refresher.refresh_tenant("acme")

        api_client.search_rationales.assert_any_await(
            "alice", pattern="vote rationale", category_ids=[14], tags=["votes"]
        )

    @pytest.mark.asyncio
    async def test_contributor_sync_when_enabled(
        self, refresher, repository, contributor_sync, api_client, tenant
    ):
        syncing = replace(tenant, config=TenantConfig(sync_contributors=True))
        repository.get_tenant_by_slug.return_value = syncing

        result = await refresher.refresh_tenant("acme")

        contributor_sync.sync.assert_awaited_once_with(syncing, api_client)
        assert result.contributor_sync.synced == 40

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, refresher, repository):
        repository.get_tenant_by_slug.return_value = None

        with pytest.raises(TenantNotFoundError):
            await refresher.refresh_tenant("nope")


class TestOtherOperations:
    @pytest.mark.asyncio
    async def test_sync_contributors(self, refresher, contributor_sync):
        result = await refresher.sync_contributors("acme")
        assert result.synced == 40

    @pytest.mark.asyncio
    async def test_probe_capabilities_stores_flags(self, refresher, repository, api_client, tenant):
        capabilities = TenantCapabilities(can_list_users=False, can_view_user_stats=True)
        api_client.detect_capabilities.return_value = capabilities

        result = await refresher.probe_capabilities("acme")

        assert result is capabilities
        repository.update_capabilities.assert_awaited_once_with(tenant.id, capabilities)

    @pytest.mark.asyncio
    async def test_track_member_uses_canonical_username(self, refresher, repository, api_client):
        api_client.lookup_username.return_value = FetchResult.success(
            UserRef(username="Alice", name="Alice A.", avatar_template="/a/{size}.png")
        )

        await refresher.track_member("acme", "alice")

        update = repository.upsert_member.await_args.args[1]
        assert update.username == "Alice"
        assert update.is_tracked is True
        assert update.avatar_template == "/a/{size}.png"

    @pytest.mark.asyncio
    async def test_track_unknown_user(self, refresher, repository, api_client):
        api_client.lookup_username.return_value = FetchResult.failure(_failure(), None)

        assert await refresher.track_member("acme", "ghost") is None
        repository.upsert_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_search_users_empty_on_failure(self, refresher, api_client):
        api_client.search_users.return_value = FetchResult.failure(_failure(), [])
        assert await refresher.search_users("acme", "al") == []


class TestClientFor:
    """Credential handling when building the tenant client."""

    def test_missing_cipher(self, repository, contributor_sync, tenant):
        refresher = TenantRefresher(repository, MagicMock(), None, contributor_sync)

        with pytest.raises(CredentialError):
            refresher.client_for(tenant)

    def test_undecryptable_key(self, repository, contributor_sync, cipher, tenant):
        refresher = TenantRefresher(repository, MagicMock(), cipher, contributor_sync)

        with pytest.raises(CredentialError):
            refresher.client_for(replace(tenant, encrypted_api_key="bm90LWEtdG9rZW4="))

    @pytest.mark.asyncio
    @respx.mock
    async def test_decrypted_key_sent_as_header(self, repository, contributor_sync, cipher, tenant):
        route = respx.get("https://forum.example.org/users/alice.json").mock(
            return_value=httpx.Response(200, json={"user": {"username": "alice"}})
        )
        stored = replace(tenant, encrypted_api_key=cipher.encrypt("secret-key"))

        async with ForumHTTPClient() as http:
            refresher = TenantRefresher(repository, http, cipher, contributor_sync)
            await refresher.client_for(stored).lookup_username("alice")

        request = route.calls.last.request
        assert request.headers["Api-Key"] == "secret-key"
        assert request.headers["Api-Username"] == "system"
