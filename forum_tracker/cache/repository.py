"""Database repository for the forums and topics tables (durable cache tier)."""

import json
import logging

from forum_tracker.cache.schemas import ForumRecord
from forum_tracker.ingestion.schemas import Origin, Topic
from forum_tracker.ingestion.url import normalize_url
from forum_tracker.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS forums (
    id              SERIAL PRIMARY KEY,
    url             TEXT NOT NULL UNIQUE,
    name            TEXT NOT NULL,
    category        TEXT,
    tier            INTEGER NOT NULL DEFAULT 2,
    logo_url        TEXT,
    is_active       BOOLEAN NOT NULL DEFAULT TRUE,
    last_fetched_at TIMESTAMPTZ,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS topics (
    id            SERIAL PRIMARY KEY,
    forum_id      INTEGER NOT NULL REFERENCES forums(id) ON DELETE CASCADE,
    external_id   INTEGER NOT NULL,
    title         TEXT NOT NULL DEFAULT '',
    slug          TEXT NOT NULL DEFAULT '',
    category_id   INTEGER,
    tags          JSONB NOT NULL DEFAULT '[]',
    posts_count   INTEGER NOT NULL DEFAULT 0,
    views         INTEGER NOT NULL DEFAULT 0,
    reply_count   INTEGER NOT NULL DEFAULT 0,
    like_count    INTEGER NOT NULL DEFAULT 0,
    pinned        BOOLEAN NOT NULL DEFAULT FALSE,
    visible       BOOLEAN NOT NULL DEFAULT TRUE,
    closed        BOOLEAN NOT NULL DEFAULT FALSE,
    archived      BOOLEAN NOT NULL DEFAULT FALSE,
    image_url     TEXT,
    excerpt       TEXT,
    created_at    TIMESTAMPTZ,
    bumped_at     TIMESTAMPTZ,
    first_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (forum_id, external_id)
);

CREATE INDEX IF NOT EXISTS idx_topics_forum_bumped
    ON topics(forum_id, bumped_at DESC NULLS LAST);
"""

_UPSERT_FORUM_SQL = """
INSERT INTO forums (url, name, category, tier, logo_url)
VALUES ($1, $2, $3, $4, $5)
ON CONFLICT (url) DO UPDATE SET
    name = EXCLUDED.name,
    category = EXCLUDED.category,
    tier = EXCLUDED.tier,
    logo_url = COALESCE(EXCLUDED.logo_url, forums.logo_url)
RETURNING id
"""

# Re-applying the same payload leaves the row unchanged apart from updated_at
_BULK_UPSERT_TOPICS_SQL = """
INSERT INTO topics (
    forum_id, external_id, title, slug, category_id, tags,
    posts_count, views, reply_count, like_count,
    pinned, visible, closed, archived,
    image_url, excerpt, created_at, bumped_at
)
SELECT $1::integer, * FROM unnest(
    $2::integer[], $3::text[], $4::text[], $5::integer[], $6::jsonb[],
    $7::integer[], $8::integer[], $9::integer[], $10::integer[],
    $11::boolean[], $12::boolean[], $13::boolean[], $14::boolean[],
    $15::text[], $16::text[], $17::timestamptz[], $18::timestamptz[]
)
ON CONFLICT (forum_id, external_id) DO UPDATE SET
    title = EXCLUDED.title,
    slug = EXCLUDED.slug,
    category_id = EXCLUDED.category_id,
    tags = EXCLUDED.tags,
    posts_count = EXCLUDED.posts_count,
    views = EXCLUDED.views,
    reply_count = EXCLUDED.reply_count,
    like_count = EXCLUDED.like_count,
    pinned = EXCLUDED.pinned,
    visible = EXCLUDED.visible,
    closed = EXCLUDED.closed,
    archived = EXCLUDED.archived,
    image_url = COALESCE(EXCLUDED.image_url, topics.image_url),
    excerpt = COALESCE(EXCLUDED.excerpt, topics.excerpt),
    created_at = COALESCE(EXCLUDED.created_at, topics.created_at),
    bumped_at = COALESCE(EXCLUDED.bumped_at, topics.bumped_at),
    updated_at = NOW()
"""

_RECENT_TOPICS_SQL = """
SELECT t.*, f.url AS forum_url, f.name AS forum_name
FROM topics t
JOIN forums f ON f.id = t.forum_id
WHERE t.forum_id = $1
ORDER BY t.bumped_at DESC NULLS LAST, t.external_id DESC
LIMIT $2
"""


def _record_to_forum(record) -> ForumRecord:
    return ForumRecord(
        id=record["id"],
        url=record["url"],
        name=record["name"],
        category=record["category"],
        tier=record["tier"],
        logo_url=record["logo_url"],
        last_fetched_at=record["last_fetched_at"],
    )


def _record_to_topic(record) -> Topic:
    tags = record["tags"]
    if isinstance(tags, str):
        tags = json.loads(tags)
    return Topic(
        id=record["external_id"],
        origin_url=record["forum_url"],
        origin_name=record["forum_name"],
        title=record["title"],
        slug=record["slug"],
        category_id=record["category_id"] or 0,
        tags=list(tags or []),
        posts_count=record["posts_count"],
        reply_count=record["reply_count"],
        views=record["views"],
        like_count=record["like_count"],
        pinned=record["pinned"],
        visible=record["visible"],
        closed=record["closed"],
        archived=record["archived"],
        created_at=record["created_at"],
        bumped_at=record["bumped_at"],
        image_url=record["image_url"],
        excerpt=record["excerpt"],
    )


class ForumRepository:
    """Persistence for origins and their topics."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the forums and topics tables (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Forum tables ensured")

    async def upsert_forum(self, origin: Origin) -> int:
        """Insert or update an origin record. Returns its id."""
        return await self._db.fetchval(
            _UPSERT_FORUM_SQL,
            origin.key,
            origin.name,
            origin.category,
            origin.tier,
            origin.logo_url,
        )

    async def get_forum_by_url(self, url: str) -> ForumRecord | None:
        row = await self._db.fetchrow(
            "SELECT * FROM forums WHERE url = $1",
            normalize_url(url),
        )
        return _record_to_forum(row) if row else None

    async def upsert_topics(self, forum_id: int, topics: list[Topic]) -> int:
        """Insert or update topics keyed by (forum, external id) in one statement.

        Returns the number of topics processed.
        """
        if not topics:
            return 0

        # Last occurrence wins when a payload repeats an id
        unique = list({t.id: t for t in topics}.values())

        await self._db.execute(
            _BULK_UPSERT_TOPICS_SQL,
            forum_id,
            [t.id for t in unique],
            [t.title for t in unique],
            [t.slug for t in unique],
            [t.category_id or None for t in unique],
            [json.dumps(t.tags) for t in unique],
            [t.posts_count for t in unique],
            [t.views for t in unique],
            [t.reply_count for t in unique],
            [t.like_count for t in unique],
            [t.pinned for t in unique],
            [t.visible for t in unique],
            [t.closed for t in unique],
            [t.archived for t in unique],
            [t.image_url for t in unique],
            [t.excerpt for t in unique],
            [t.created_at for t in unique],
            [t.bumped_at for t in unique],
        )
        logger.debug("Upserted %d topics for forum %d", len(unique), forum_id)
        return len(unique)

    async def update_forum_last_fetched(self, forum_id: int) -> None:
        await self._db.execute(
            "UPDATE forums SET last_fetched_at = NOW() WHERE id = $1",
            forum_id,
        )

    async def get_recent_topics(self, forum_id: int, limit: int = 30) -> list[Topic]:
        """Most recently active topics of a forum, newest first."""
        rows = await self._db.fetch(_RECENT_TOPICS_SQL, forum_id, limit)
        return [_record_to_topic(r) for r in rows]

    async def count_topics(self, forum_id: int | None = None) -> int:
        if forum_id is None:
            return await self._db.fetchval("SELECT COUNT(*) FROM topics") or 0
        return (
            await self._db.fetchval("SELECT COUNT(*) FROM topics WHERE forum_id = $1", forum_id)
            or 0
        )
