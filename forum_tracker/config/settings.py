"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the forum-tracker application.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., DATABASE_URL).
    Redis and PostgreSQL are both optional: each cache tier degrades on its
    own when its URL is unset.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Redis (ephemeral tier + distributed refresh lock)
    redis_url: str | None = None

    # PostgreSQL (durable tier + tenant pipeline)
    database_url: str | None = None
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    http_user_agent: str = "forum-tracker/0.1.0 (forum aggregator)"
    outgoing_rate_limit: int = Field(default=20, ge=1, description="Requests per minute per domain")
    max_throttle_retries: int = Field(default=2, ge=0, le=10)
    throttle_backoff_floor_seconds: float = Field(default=5.0, ge=0.0)
    max_backoff_seconds: float = Field(default=60.0, ge=1.0, le=300.0)

    # Cache
    cache_ttl_seconds: int = Field(default=900, ge=1)
    forum_list_ttl_seconds: int = Field(default=3600, ge=1)
    latest_per_page: int = Field(default=30, ge=1, le=100)

    # Non-forum sources refreshed after the forum cycle
    external_sources_enabled: bool = True
    external_posts_limit: int = Field(default=30, ge=1, le=50)
    external_delay_seconds: float = Field(default=1.0, ge=0.0)
    github_token: str | None = None
    snapshot_api_key: str | None = None
    snapshot_spaces: str = Field(
        default="",
        description="Comma-separated Snapshot space ids, e.g. 'uniswapgovernance.eth,ens.eth'",
    )

    # Refresh scheduler
    refresh_batch_size: int = Field(default=3, ge=1)
    refresh_batch_delay_seconds: float = Field(default=2.0, ge=0.0)
    refresh_lock_ttl_seconds: int = Field(default=300, ge=1)
    refresh_stale_seconds: int = Field(default=600, ge=1)
    refresh_interval_seconds: int = Field(default=900, ge=1)
    refresh_tiers: str = "1,2"
    tenant_check_interval_seconds: int = Field(default=3600, ge=1)
    tenant_refresh_hours: float = Field(default=12.0, gt=0)

    # Member pipeline
    directory_max_members: int = Field(default=200, ge=1)
    recent_posts_limit: int = Field(default=15, ge=1)

    # Secrets
    refresh_secret: str | None = None
    encryption_key: str | None = None

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8001
    cors_origins: str = "http://localhost:3000"
    api_run_scheduler: bool = Field(
        default=False,
        description="Run the refresh scheduler inside the API process",
    )
    rate_limit_enabled: bool = True
    rate_limit_default: str = Field(
        default="30/minute",
        description="Per-client limit on the public read routes (slowapi syntax)",
    )

    # Observability
    metrics_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def redis_configured(self) -> bool:
        """Check if the ephemeral Redis tier is configured."""
        return bool(self.redis_url)

    @property
    def database_configured(self) -> bool:
        """Check if the durable PostgreSQL tier is configured."""
        return bool(self.database_url)

    @property
    def tiers(self) -> list[int]:
        """Origin tiers included in the default scheduled refresh."""
        return sorted({int(t) for t in self.refresh_tiers.split(",") if t.strip()})

    @property
    def snapshot_space_ids(self) -> list[str]:
        return [s.strip() for s in self.snapshot_spaces.split(",") if s.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
