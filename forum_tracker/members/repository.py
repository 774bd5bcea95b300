"""
Database repository for tenants, members and snapshots.

Member writes go through ``upsert_member``, which locks the row, merges the
incoming facts with ``merge_member`` and writes the result back, so
concurrent partial updates never erase each other's columns.
"""

import asyncio
import json
import logging
from typing import Any

from forum_tracker.ingestion.url import is_allowed_url
from forum_tracker.members.merge import MERGED_FIELDS, merge_member, new_member
from forum_tracker.members.schemas import (
    Member,
    MemberUpdate,
    Snapshot,
    Tenant,
    TenantCapabilities,
    TenantConfig,
)
from forum_tracker.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS delegate_tenants (
    id                SERIAL PRIMARY KEY,
    slug              TEXT NOT NULL UNIQUE,
    name              TEXT NOT NULL,
    forum_url         TEXT NOT NULL,
    api_username      TEXT NOT NULL DEFAULT '',
    encrypted_api_key TEXT NOT NULL,
    config            JSONB NOT NULL DEFAULT '{}',
    capabilities      JSONB NOT NULL DEFAULT '{}',
    is_active         BOOLEAN NOT NULL DEFAULT TRUE,
    last_refresh_at   TIMESTAMPTZ,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS delegates (
    id                         SERIAL PRIMARY KEY,
    tenant_id                  INTEGER NOT NULL REFERENCES delegate_tenants(id) ON DELETE CASCADE,
    username                   TEXT NOT NULL,
    display_name               TEXT NOT NULL DEFAULT '',
    is_tracked                 BOOLEAN NOT NULL DEFAULT FALSE,
    wallet_address             TEXT,
    kyc_status                 TEXT CHECK (kyc_status IN ('verified', 'pending', 'not_required')),
    verified_status            BOOLEAN,
    programs                   TEXT[] NOT NULL DEFAULT '{}',
    role                       TEXT,
    notes                      TEXT,
    is_active                  BOOLEAN DEFAULT TRUE,
    votes_cast                 INTEGER,
    votes_total                INTEGER,
    voting_power               TEXT,
    avatar_template            TEXT,
    directory_post_count       INTEGER,
    directory_topic_count      INTEGER,
    directory_likes_received   INTEGER,
    directory_likes_given      INTEGER,
    directory_days_visited     INTEGER,
    directory_posts_read       INTEGER,
    directory_topics_entered   INTEGER,
    monthly_post_count         INTEGER,
    monthly_likes_received     INTEGER,
    monthly_days_visited       INTEGER,
    monthly_topics_entered     INTEGER,
    post_count_percentile      INTEGER,
    likes_received_percentile  INTEGER,
    days_visited_percentile    INTEGER,
    topics_entered_percentile  INTEGER,
    created_at                 TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at                 TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (tenant_id, username)
);

CREATE TABLE IF NOT EXISTS delegate_snapshots (
    id              SERIAL PRIMARY KEY,
    delegate_id     INTEGER NOT NULL REFERENCES delegates(id) ON DELETE CASCADE,
    tenant_id       INTEGER NOT NULL REFERENCES delegate_tenants(id) ON DELETE CASCADE,
    stats           JSONB NOT NULL,
    rationale_count INTEGER NOT NULL DEFAULT 0,
    recent_posts    JSONB NOT NULL DEFAULT '[]',
    captured_at     TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_delegates_tenant_tracked
    ON delegates(tenant_id, is_tracked);
CREATE INDEX IF NOT EXISTS idx_delegate_snapshots_delegate_captured
    ON delegate_snapshots(delegate_id, captured_at DESC);
"""

# Columns written by upsert_member, after tenant_id
_INSERT_COLUMNS = ("username", "is_tracked", *MERGED_FIELDS)
_UPDATE_COLUMNS = ("is_tracked", *MERGED_FIELDS)

_INSERT_MEMBER_SQL = (
    f"INSERT INTO delegates (tenant_id, {', '.join(_INSERT_COLUMNS)}) "
    f"VALUES ({', '.join(f'${i}' for i in range(1, len(_INSERT_COLUMNS) + 2))}) "
    "ON CONFLICT (tenant_id, username) DO NOTHING "
    "RETURNING *"
)

_UPDATE_MEMBER_SQL = (
    "UPDATE delegates SET "
    + ", ".join(f"{col} = ${i}" for i, col in enumerate(_UPDATE_COLUMNS, start=2))
    + ", updated_at = NOW() WHERE id = $1 RETURNING *"
)

_SELECT_MEMBER_FOR_UPDATE_SQL = """
SELECT * FROM delegates
WHERE tenant_id = $1 AND username = $2
FOR UPDATE
"""

_LATEST_SNAPSHOTS_SQL = """
SELECT DISTINCT ON (delegate_id) *
FROM delegate_snapshots
WHERE tenant_id = $1
ORDER BY delegate_id, captured_at DESC
"""


def _json_value(value: Any, default: Any) -> Any:
    """Decode a JSONB column, which asyncpg returns as text."""
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _record_to_tenant(record) -> Tenant:
    return Tenant(
        id=record["id"],
        slug=record["slug"],
        name=record["name"],
        forum_url=record["forum_url"],
        api_username=record["api_username"] or "",
        encrypted_api_key=record["encrypted_api_key"],
        config=TenantConfig.model_validate(_json_value(record["config"], {})),
        capabilities=TenantCapabilities.model_validate(_json_value(record["capabilities"], {})),
        is_active=record["is_active"],
        last_refresh_at=record["last_refresh_at"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _record_to_member(record) -> Member:
    values = {col: record[col] for col in _INSERT_COLUMNS}
    values["programs"] = list(values["programs"] or [])
    return Member(
        id=record["id"],
        tenant_id=record["tenant_id"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
        **values,
    )


def _record_to_snapshot(record) -> Snapshot:
    return Snapshot(
        id=record["id"],
        member_id=record["delegate_id"],
        tenant_id=record["tenant_id"],
        stats=_json_value(record["stats"], {}),
        rationale_count=record["rationale_count"],
        recent_posts=_json_value(record["recent_posts"], []),
        captured_at=record["captured_at"],
    )


class MemberRepository:
    """
    Persistence for the tenant pipeline.

    The schema is ensured lazily, once per repository instance.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def ensure_schema(self) -> None:
        """Create the tenant, member and snapshot tables if missing."""
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            await self._db.execute(_CREATE_TABLES_SQL)
            self._schema_ready = True
            logger.info("Member tables ensured")

    # Tenants

    async def create_tenant(
        self,
        slug: str,
        name: str,
        forum_url: str,
        encrypted_api_key: str,
        api_username: str = "",
        config: TenantConfig | None = None,
    ) -> Tenant:
        """
        Register a tenant.

        Raises:
            ValueError: If the forum URL is not a public http(s) address
        """
        if not is_allowed_url(forum_url):
            raise ValueError(f"Forum URL not allowed: {forum_url}")

        await self.ensure_schema()
        row = await self._db.fetchrow(
            """
            INSERT INTO delegate_tenants
                (slug, name, forum_url, api_username, encrypted_api_key, config)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING *
            """,
            slug,
            name,
            forum_url.rstrip("/"),
            api_username,
            encrypted_api_key,
            (config or TenantConfig()).model_dump_json(exclude_none=True),
        )
        logger.info(f"Created tenant {slug}")
        return _record_to_tenant(row)

    async def get_tenant_by_slug(self, slug: str) -> Tenant | None:
        """Active tenant with this slug, or None."""
        await self.ensure_schema()
        row = await self._db.fetchrow(
            "SELECT * FROM delegate_tenants WHERE slug = $1 AND is_active = TRUE",
            slug,
        )
        return _record_to_tenant(row) if row else None

    async def list_tenants(self, active_only: bool = True) -> list[Tenant]:
        await self.ensure_schema()
        if active_only:
            rows = await self._db.fetch(
                "SELECT * FROM delegate_tenants WHERE is_active = TRUE ORDER BY slug"
            )
        else:
            rows = await self._db.fetch("SELECT * FROM delegate_tenants ORDER BY slug")
        return [_record_to_tenant(r) for r in rows]

    async def update_capabilities(
        self,
        tenant_id: int,
        capabilities: TenantCapabilities,
    ) -> None:
        await self.ensure_schema()
        await self._db.execute(
            """
            UPDATE delegate_tenants
            SET capabilities = $2, updated_at = NOW()
            WHERE id = $1
            """,
            tenant_id,
            capabilities.model_dump_json(),
        )

    async def update_last_refresh(self, tenant_id: int) -> None:
        await self.ensure_schema()
        await self._db.execute(
            """
            UPDATE delegate_tenants
            SET last_refresh_at = NOW(), updated_at = NOW()
            WHERE id = $1
            """,
            tenant_id,
        )

    # Members

    async def get_member(self, tenant_id: int, username: str) -> Member | None:
        await self.ensure_schema()
        row = await self._db.fetchrow(
            "SELECT * FROM delegates WHERE tenant_id = $1 AND username = $2",
            tenant_id,
            username,
        )
        return _record_to_member(row) if row else None

    async def list_members(self, tenant_id: int, tracked_only: bool = False) -> list[Member]:
        """Members of a tenant, most active first."""
        await self.ensure_schema()
        query = "SELECT * FROM delegates WHERE tenant_id = $1"
        if tracked_only:
            query += " AND is_tracked = TRUE"
        query += " ORDER BY directory_post_count DESC NULLS LAST, username"
        rows = await self._db.fetch(query, tenant_id)
        return [_record_to_member(r) for r in rows]

    async def upsert_member(self, tenant_id: int, incoming: MemberUpdate) -> Member:
        """
        Insert a member or merge ``incoming`` into the stored row.

        Runs in one transaction with the existing row locked, so two
        concurrent upserts for the same member apply one after the other.
        """
        await self.ensure_schema()
        async with self._db.transaction() as conn:
            row = await conn.fetchrow(_SELECT_MEMBER_FOR_UPDATE_SQL, tenant_id, incoming.username)

            if row is None:
                member = new_member(tenant_id, incoming)
                row = await conn.fetchrow(
                    _INSERT_MEMBER_SQL,
                    tenant_id,
                    *(getattr(member, col) for col in _INSERT_COLUMNS),
                )
                if row is not None:
                    return _record_to_member(row)
                # Lost an insert race; merge into the winner's row
                row = await conn.fetchrow(
                    _SELECT_MEMBER_FOR_UPDATE_SQL, tenant_id, incoming.username
                )

            merged = merge_member(_record_to_member(row), incoming)
            row = await conn.fetchrow(
                _UPDATE_MEMBER_SQL,
                merged.id,
                *(getattr(merged, col) for col in _UPDATE_COLUMNS),
            )
            return _record_to_member(row)

    async def untrack_member(self, tenant_id: int, username: str) -> bool:
        """Clear ``is_tracked``. Returns False when the member does not exist."""
        await self.ensure_schema()
        member_id = await self._db.fetchval(
            """
            UPDATE delegates SET is_tracked = FALSE, updated_at = NOW()
            WHERE tenant_id = $1 AND username = $2
            RETURNING id
            """,
            tenant_id,
            username,
        )
        return member_id is not None

    async def delete_member(self, tenant_id: int, username: str) -> bool:
        """Delete a member and its snapshots."""
        await self.ensure_schema()
        member_id = await self._db.fetchval(
            "DELETE FROM delegates WHERE tenant_id = $1 AND username = $2 RETURNING id",
            tenant_id,
            username,
        )
        return member_id is not None

    # Snapshots

    async def create_snapshot(
        self,
        member_id: int,
        tenant_id: int,
        stats: dict[str, Any],
        rationale_count: int = 0,
        recent_posts: list[dict[str, Any]] | None = None,
    ) -> Snapshot:
        """Append a snapshot. Snapshots are never updated."""
        await self.ensure_schema()
        row = await self._db.fetchrow(
            """
            INSERT INTO delegate_snapshots
                (delegate_id, tenant_id, stats, rationale_count, recent_posts)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
            """,
            member_id,
            tenant_id,
            json.dumps(stats),
            rationale_count,
            json.dumps(recent_posts or []),
        )
        return _record_to_snapshot(row)

    async def get_latest_snapshots(self, tenant_id: int) -> dict[int, Snapshot]:
        """Most recent snapshot per member, keyed by member id."""
        await self.ensure_schema()
        rows = await self._db.fetch(_LATEST_SNAPSHOTS_SQL, tenant_id)
        return {r["delegate_id"]: _record_to_snapshot(r) for r in rows}

    async def get_snapshot_history(self, member_id: int, limit: int = 30) -> list[Snapshot]:
        """Snapshots of one member, newest first."""
        await self.ensure_schema()
        rows = await self._db.fetch(
            """
            SELECT * FROM delegate_snapshots
            WHERE delegate_id = $1
            ORDER BY captured_at DESC
            LIMIT $2
            """,
            member_id,
            limit,
        )
        return [_record_to_snapshot(r) for r in rows]
