"""Tenant sweep: refresh every active tenant whose interval has elapsed."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog

from forum_tracker.members.refresh import TenantRefresher
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.schemas import Tenant, TenantRefreshResult
from forum_tracker.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

DEFAULT_REFRESH_HOURS = 12.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_refresh_due(
    tenant: Tenant,
    now: datetime,
    default_hours: float = DEFAULT_REFRESH_HOURS,
) -> bool:
    """True when the tenant was never refreshed or its interval has elapsed."""
    if tenant.last_refresh_at is None:
        return True
    hours = tenant.config.refresh_interval_hours or default_hours
    return now - tenant.last_refresh_at >= timedelta(hours=hours)


@dataclass
class TenantSweepResult:
    checked: int = 0
    refreshed: list[TenantRefreshResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class TenantSweep:
    """
    One pass over all active tenants.

    Each tenant is refreshed in isolation: a failure (bad credential,
    database error, anything else) is logged and recorded, and the sweep
    moves on to the next tenant.
    """

    def __init__(
        self,
        repository: MemberRepository,
        refresher: TenantRefresher,
        default_hours: float = DEFAULT_REFRESH_HOURS,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._repository = repository
        self._refresher = refresher
        self._default_hours = default_hours
        self._clock = clock

    async def run(self) -> TenantSweepResult:
        result = TenantSweepResult()
        metrics = get_metrics()
        now = self._clock()

        tenants = await self._repository.list_tenants(active_only=True)
        result.checked = len(tenants)

        for tenant in tenants:
            if not is_refresh_due(tenant, now, self._default_hours):
                result.skipped.append(tenant.slug)
                continue
            try:
                result.refreshed.append(await self._refresher.refresh_tenant(tenant.slug))
            except Exception as e:
                logger.error(
                    "Tenant refresh failed",
                    tenant=tenant.slug,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                metrics.tenant_refreshes.labels(status="error").inc()
                result.failed[tenant.slug] = str(e)

        logger.info(
            "Tenant sweep complete",
            checked=result.checked,
            refreshed=len(result.refreshed),
            skipped=len(result.skipped),
            failed=len(result.failed),
        )
        return result
