"""Data models for the forum cache."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from forum_tracker.ingestion.schemas import Topic


class OriginStatus(str, Enum):
    """Health of one origin as seen by this process."""

    OK = "ok"
    ERROR = "error"
    NOT_CACHED = "not_cached"


@dataclass
class CacheEntry:
    """
    Topics cached for one origin key.

    ``error`` is set when the most recent fetch failed. The topic list may
    still be non-empty in that case: it then holds the last good result.
    ``source`` names the tier the entry was served from.
    """

    topics: list[Topic]
    fetched_at: datetime
    error: str | None = None
    source: str = "memory"

    @property
    def is_valid(self) -> bool:
        """True for a successful, non-empty result."""
        return self.error is None and bool(self.topics)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.fetched_at).total_seconds()


@dataclass
class ForumRecord:
    """A row of the ``forums`` table."""

    id: int
    url: str
    name: str
    category: str | None = None
    tier: int = 2
    logo_url: str | None = None
    last_fetched_at: datetime | None = None


@dataclass
class OriginHealth:
    """Per-origin entry of the health/status surface."""

    name: str
    url: str
    status: OriginStatus
    topic_count: int = 0
    last_fetched: datetime | None = None
    error: str | None = None


@dataclass
class CacheStats:
    """Global counts over the in-process fallback map."""

    total_origins: int = 0
    successful: int = 0
    failed: int = 0
    total_topics: int = 0
