"""Multi-tier forum cache: Redis, in-process fallback map, PostgreSQL."""

from forum_tracker.cache.config import CacheConfig
from forum_tracker.cache.ephemeral import EphemeralStore
from forum_tracker.cache.repository import ForumRepository
from forum_tracker.cache.schemas import CacheEntry, CacheStats, OriginHealth, OriginStatus
from forum_tracker.cache.service import ForumCache

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "EphemeralStore",
    "ForumCache",
    "ForumRepository",
    "OriginHealth",
    "OriginStatus",
]
