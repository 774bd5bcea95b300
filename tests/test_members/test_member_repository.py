"""Tests for MemberRepository against a mocked Database."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from forum_tracker.members.repository import _UPDATE_COLUMNS, MemberRepository
from forum_tracker.members.schemas import MemberUpdate, TenantCapabilities, TenantConfig
from forum_tracker.storage.database import Database

CAPTURED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tenant_row(**overrides):
    row = {
        "id": 7,
        "slug": "acme",
        "name": "Acme DAO",
        "forum_url": "https://forum.example.org",
        "api_username": None,
        "encrypted_api_key": "encrypted",
        "config": json.dumps({"sync_contributors": True, "refresh_interval_hours": 6}),
        "capabilities": "{}",
        "is_active": True,
        "last_refresh_at": None,
        "created_at": CAPTURED,
        "updated_at": CAPTURED,
    }
    row.update(overrides)
    return row


def _snapshot_row(snapshot_id: int, delegate_id: int = 1):
    return {
        "id": snapshot_id,
        "delegate_id": delegate_id,
        "tenant_id": 7,
        "stats": json.dumps({"post_count": 12}),
        "rationale_count": 2,
        "recent_posts": "[]",
        "captured_at": CAPTURED,
    }


@pytest.fixture
def conn():
    return AsyncMock()


@pytest.fixture
def database(conn):
    db = AsyncMock(spec=Database)

    @asynccontextmanager
    async def transaction():
        yield conn

    db.transaction = MagicMock(side_effect=transaction)
    return db


@pytest.fixture
def repository(database):
    return MemberRepository(database)


class TestSchema:
    @pytest.mark.asyncio
    async def test_schema_created_once(self, repository, database):
        database.fetch.return_value = []

        await repository.list_tenants()
        await repository.list_tenants()

        ddl = [c for c in database.execute.await_args_list if "CREATE TABLE" in c.args[0]]
        assert len(ddl) == 1
        assert "delegate_snapshots" in ddl[0].args[0]


class TestTenants:
    """Tests for tenant persistence."""

    @pytest.mark.asyncio
    async def test_create_tenant(self, repository, database):
        database.fetchrow.return_value = _tenant_row()

        tenant = await repository.create_tenant(
            slug="acme",
            name="Acme DAO",
            forum_url="https://forum.example.org/",
            encrypted_api_key="encrypted",
            config=TenantConfig(sync_contributors=True),
        )

        assert tenant.slug == "acme"
        args = database.fetchrow.await_args.args
        assert args[3] == "https://forum.example.org"
        assert json.loads(args[6])["sync_contributors"] is True

    @pytest.mark.asyncio
    async def test_create_tenant_rejects_private_url(self, repository, database):
        with pytest.raises(ValueError):
            await repository.create_tenant(
                slug="evil",
                name="Evil",
                forum_url="http://169.254.169.254",
                encrypted_api_key="x",
            )
        database.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_tenant_decodes_json_columns(self, repository, database):
        database.fetchrow.return_value = _tenant_row()

        tenant = await repository.get_tenant_by_slug("acme")

        assert tenant.api_username == ""
        assert tenant.config.sync_contributors is True
        assert tenant.config.refresh_interval_hours == 6
        assert tenant.capabilities.can_list_users is None
        assert "is_active = TRUE" in database.fetchrow.await_args.args[0]

    @pytest.mark.asyncio
    async def test_get_tenant_missing(self, repository, database):
        database.fetchrow.return_value = None
        assert await repository.get_tenant_by_slug("nope") is None

    @pytest.mark.asyncio
    async def test_list_tenants(self, repository, database):
        database.fetch.return_value = [_tenant_row(), _tenant_row(id=8, slug="beta")]

        tenants = await repository.list_tenants(active_only=False)

        assert [t.slug for t in tenants] == ["acme", "beta"]
        assert "is_active" not in database.fetch.await_args.args[0]

    @pytest.mark.asyncio
    async def test_update_capabilities(self, repository, database):
        await repository.update_capabilities(7, TenantCapabilities(can_search_posts=True))

        args = database.execute.await_args.args
        assert args[1] == 7
        assert json.loads(args[2])["can_search_posts"] is True


class TestUpsertMember:
    """Tests for the locked read-merge-write upsert."""

    @pytest.mark.asyncio
    async def test_inserts_new_member(self, repository, conn, make_member):
        conn.fetchrow.side_effect = [None, make_member("carol", 3).to_dict()]

        member = await repository.upsert_member(7, MemberUpdate(username="carol"))

        assert member.id == 3
        select, insert = conn.fetchrow.await_args_list
        assert "FOR UPDATE" in select.args[0]
        assert "ON CONFLICT (tenant_id, username) DO NOTHING" in insert.args[0]
        assert insert.args[1:4] == (7, "carol", False)

    @pytest.mark.asyncio
    async def test_merges_into_existing_row(self, repository, conn, make_member):
        stored = make_member("alice", 1, is_tracked=True, wallet_address="0xabc", notes="keep")
        conn.fetchrow.side_effect = [stored.to_dict(), stored.to_dict()]

        await repository.upsert_member(
            7,
            MemberUpdate(username="alice", is_tracked=False, directory_post_count=40, notes=""),
        )

        update = conn.fetchrow.await_args_list[1]
        assert update.args[0].startswith("UPDATE delegates SET")
        assert update.args[1] == 1
        written = dict(zip(_UPDATE_COLUMNS, update.args[2:]))
        assert written["is_tracked"] is True
        assert written["wallet_address"] == "0xabc"
        assert written["notes"] == "keep"
        assert written["directory_post_count"] == 40

    @pytest.mark.asyncio
    async def test_lost_insert_race_merges_into_winner(self, repository, conn, make_member):
        winner = make_member("dave", 4, role="delegate")
        conn.fetchrow.side_effect = [None, None, winner.to_dict(), winner.to_dict()]

        member = await repository.upsert_member(7, MemberUpdate(username="dave", votes_cast=2))

        assert member.id == 4
        assert conn.fetchrow.await_count == 4
        written = dict(zip(_UPDATE_COLUMNS, conn.fetchrow.await_args_list[3].args[2:]))
        assert written["role"] == "delegate"
        assert written["votes_cast"] == 2


class TestMembers:
    @pytest.mark.asyncio
    async def test_list_tracked(self, repository, database, make_member):
        database.fetch.return_value = [make_member("alice", 1).to_dict()]

        members = await repository.list_members(7, tracked_only=True)

        assert [m.username for m in members] == ["alice"]
        query, tenant_id = database.fetch.await_args.args
        assert "is_tracked = TRUE" in query
        assert tenant_id == 7

    @pytest.mark.asyncio
    async def test_untrack(self, repository, database):
        database.fetchval.return_value = 1
        assert await repository.untrack_member(7, "alice") is True

        database.fetchval.return_value = None
        assert await repository.untrack_member(7, "ghost") is False

    @pytest.mark.asyncio
    async def test_delete(self, repository, database):
        database.fetchval.return_value = 1
        assert await repository.delete_member(7, "alice") is True


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_create_snapshot(self, repository, database):
        database.fetchrow.return_value = _snapshot_row(10)

        snapshot = await repository.create_snapshot(
            member_id=1, tenant_id=7, stats={"post_count": 12}, rationale_count=2
        )

        assert snapshot.member_id == 1
        assert snapshot.stats == {"post_count": 12}
        args = database.fetchrow.await_args.args
        assert "INSERT INTO delegate_snapshots" in args[0]
        assert json.loads(args[3]) == {"post_count": 12}
        assert args[5] == "[]"

    @pytest.mark.asyncio
    async def test_latest_snapshots_keyed_by_member(self, repository, database):
        database.fetch.return_value = [_snapshot_row(10, 1), _snapshot_row(11, 2)]

        latest = await repository.get_latest_snapshots(7)

        assert set(latest) == {1, 2}
        assert latest[2].id == 11
        assert "DISTINCT ON (delegate_id)" in database.fetch.await_args.args[0]

    @pytest.mark.asyncio
    async def test_history(self, repository, database):
        database.fetch.return_value = [_snapshot_row(11), _snapshot_row(10)]

        history = await repository.get_snapshot_history(1, limit=5)

        assert [s.id for s in history] == [11, 10]
        assert database.fetch.await_args.args[1:] == (1, 5)
