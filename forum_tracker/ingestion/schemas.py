"""
Canonical schemas for forum origins, topics and fetch outcomes.

Topic is the unit that flows through every cache tier (Redis JSON, the
in-process fallback map, the ``topics`` table), so field names here are
shared by all of them.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from forum_tracker.ingestion.url import normalize_url

T = TypeVar("T")

_TAG_RE = re.compile(r"<[^>]*>")
EXCERPT_MAX_LENGTH = 200


@dataclass(frozen=True)
class Origin:
    """
    A registered forum instance.

    Immutable once registered. Identified by its normalized base URL.
    """

    name: str
    url: str
    tier: int = 2
    category: str = "custom"
    logo_url: str | None = None

    @property
    def key(self) -> str:
        """Normalized URL used as cache key."""
        return normalize_url(self.url)

    @property
    def base_url(self) -> str:
        """URL without trailing slash, for building API paths."""
        return self.url.rstrip("/")


def _as_int(value: Any) -> int:
    """Coerce loosely-typed JSON numbers, defaulting to zero."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _clean_excerpt(excerpt: Any) -> str | None:
    if not isinstance(excerpt, str) or not excerpt:
        return None
    return _TAG_RE.sub("", excerpt)[:EXCERPT_MAX_LENGTH]


class Topic(BaseModel):
    """
    One discussion topic on an origin.

    ``id`` is the origin's stable numeric identifier; together with the
    origin URL it is the idempotent upsert key.
    """

    id: int = Field(..., description="Stable topic id on the origin")
    origin_url: str = Field(..., description="Base URL of the owning origin")
    origin_name: str = Field(default="", description="Display name of the owning origin")
    title: str = ""
    slug: str = ""
    category_id: int = 0
    tags: list[str] = Field(default_factory=list)

    posts_count: int = Field(default=0, ge=0)
    reply_count: int = Field(default=0, ge=0)
    views: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)

    pinned: bool = False
    visible: bool = True
    closed: bool = False
    archived: bool = False

    created_at: datetime | None = None
    bumped_at: datetime | None = None

    image_url: str | None = None
    excerpt: str | None = None

    # Non-forum sources (EA Forum, GitHub Discussions, Snapshot)
    source_type: str = "discourse"
    author_name: str | None = None
    external_url: str | None = None

    @property
    def url(self) -> str:
        """Canonical link to the topic on its origin."""
        if self.external_url:
            return self.external_url
        return f"{self.origin_url.rstrip('/')}/t/{self.slug}/{self.id}"

    @classmethod
    def from_api(cls, raw: dict[str, Any], origin: Origin) -> "Topic | None":
        """
        Build a Topic from a ``latest.json`` topic entry.

        Missing optional fields default to zero/empty. Entries without a
        usable id are skipped (returns None) rather than raising.
        """
        topic_id = _as_int(raw.get("id"))
        if topic_id <= 0:
            return None

        tags = [
            tag if isinstance(tag, str) else _as_str(tag.get("name"))
            for tag in raw.get("tags") or []
            if isinstance(tag, (str, dict))
        ]

        return cls(
            id=topic_id,
            origin_url=origin.base_url,
            origin_name=origin.name,
            title=_as_str(raw.get("title")),
            slug=_as_str(raw.get("slug")),
            category_id=_as_int(raw.get("category_id")),
            tags=[t for t in tags if t],
            posts_count=max(0, _as_int(raw.get("posts_count"))),
            reply_count=max(0, _as_int(raw.get("reply_count"))),
            views=max(0, _as_int(raw.get("views"))),
            like_count=max(0, _as_int(raw.get("like_count"))),
            pinned=bool(raw.get("pinned")),
            visible=raw.get("visible", True) is not False,
            closed=bool(raw.get("closed")),
            archived=bool(raw.get("archived")),
            created_at=raw.get("created_at") or None,
            bumped_at=raw.get("bumped_at") or raw.get("last_posted_at") or None,
            image_url=origin.logo_url or raw.get("image_url") or None,
            excerpt=_clean_excerpt(raw.get("excerpt")),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict for the ephemeral store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Topic":
        return cls.model_validate(data)


class FetchErrorKind(str, Enum):
    """Why an outbound fetch failed."""

    UNREACHABLE = "unreachable"
    HTTP_STATUS = "http_status"
    THROTTLED = "throttled"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class FetchError:
    """Typed description of a failed outbound fetch."""

    kind: FetchErrorKind
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        return self.message


@dataclass
class FetchResult(Generic[T]):
    """
    Outcome of an outbound fetch: a value, an error, or both.

    On failure ``value`` holds the documented fallback for the call (an
    empty list, zero, None), so callers can keep going without branching.
    """

    value: T
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, fallback: T) -> T:
        """Return the value on success, otherwise ``fallback``."""
        return self.value if self.error is None else fallback

    @classmethod
    def success(cls, value: T) -> "FetchResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: FetchError, fallback: T) -> "FetchResult[T]":
        return cls(value=fallback, error=error)
