"""Cache tier configuration."""

from dataclasses import dataclass

from forum_tracker.config.settings import Settings


@dataclass
class CacheConfig:
    """
    Configuration for the multi-tier forum cache.

    Attributes:
        ttl_seconds: Lifetime of topic lists in the ephemeral store. The
            in-process fallback map serves entries up to twice this age.
        forum_list_ttl_seconds: Lifetime of the refreshed-forum list marker.
        durable_read_limit: How many recent topics a durable-store read
            returns when warming the fallback map.
    """

    ttl_seconds: int = 900  # 15 minutes
    forum_list_ttl_seconds: int = 3600
    durable_read_limit: int = 30

    @property
    def fallback_max_age_seconds(self) -> int:
        return self.ttl_seconds * 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        return cls(
            ttl_seconds=settings.cache_ttl_seconds,
            forum_list_ttl_seconds=settings.forum_list_ttl_seconds,
            durable_read_limit=settings.latest_per_page,
        )
