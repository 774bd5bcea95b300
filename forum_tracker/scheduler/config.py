"""Refresh scheduler configuration."""

from dataclasses import dataclass, field

from forum_tracker.config.settings import Settings


@dataclass
class SchedulerConfig:
    """
    Configuration for the origin refresh cycle and the tenant sweep.

    Attributes:
        batch_size: Origins fetched concurrently per batch.
        batch_delay_seconds: Pause between consecutive batches.
        lock_ttl_seconds: Expiry of the distributed refresh lock. A cycle
            running longer than this may overlap with another instance.
        stale_seconds: Age after which a set in-process flag is treated as
            left over from a crashed run and cleared.
        interval_seconds: Period of the scheduled origin refresh.
        tiers: Origin tiers included in the scheduled refresh.
        tenant_check_interval_seconds: Period of the tenant sweep.
        tenant_refresh_hours: Default per-tenant refresh interval.
        external_delay_seconds: Pause after each GitHub or Snapshot call
            in the external-source pass.
    """

    batch_size: int = 3
    batch_delay_seconds: float = 2.0
    lock_ttl_seconds: int = 300
    stale_seconds: int = 600  # 10 minutes
    interval_seconds: int = 900
    tiers: list[int] = field(default_factory=lambda: [1, 2])
    tenant_check_interval_seconds: int = 3600
    tenant_refresh_hours: float = 12.0
    external_delay_seconds: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        return cls(
            batch_size=settings.refresh_batch_size,
            batch_delay_seconds=settings.refresh_batch_delay_seconds,
            lock_ttl_seconds=settings.refresh_lock_ttl_seconds,
            stale_seconds=settings.refresh_stale_seconds,
            interval_seconds=settings.refresh_interval_seconds,
            tiers=settings.tiers,
            tenant_check_interval_seconds=settings.tenant_check_interval_seconds,
            tenant_refresh_hours=settings.tenant_refresh_hours,
            external_delay_seconds=settings.external_delay_seconds,
        )
