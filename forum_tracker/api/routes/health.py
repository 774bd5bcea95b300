"""
Health check endpoint with infrastructure checks.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from forum_tracker import __version__
from forum_tracker.api.dependencies import get_coordinator, get_database, get_ephemeral_store
from forum_tracker.api.models import ComponentHealth, HealthResponse
from forum_tracker.cache.ephemeral import EphemeralStore
from forum_tracker.scheduler.refresh import RefreshCoordinator
from forum_tracker.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check_database(db: Database | None) -> ComponentHealth:
    """Check database connectivity and measure latency."""
    if db is None:
        return ComponentHealth(status="not_configured")
    start = time.perf_counter()
    healthy = await db.health_check()
    latency_ms = (time.perf_counter() - start) * 1000
    return ComponentHealth(
        status="healthy" if healthy else "unhealthy",
        latency_ms=round(latency_ms, 2),
    )


async def _check_redis(store: EphemeralStore | None) -> ComponentHealth:
    """Check Redis connectivity and measure latency."""
    if store is None:
        return ComponentHealth(status="not_configured")
    start = time.perf_counter()
    healthy = await store.health_check()
    latency_ms = (time.perf_counter() - start) * 1000
    return ComponentHealth(
        status="healthy" if healthy else "unhealthy",
        latency_ms=round(latency_ms, 2),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Check the health of the service and its storage tiers.",
)
async def health_check(
    db: Database | None = Depends(get_database),
    store: EphemeralStore | None = Depends(get_ephemeral_store),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
) -> HealthResponse:
    """
    Check service health.

    Status logic:
    - unhealthy: database configured but down
    - degraded: Redis configured but down (cache serves from memory/database)
    - healthy: every configured component operational
    """
    components = {
        "database": await _check_database(db),
        "redis": await _check_redis(store),
    }

    if components["database"].status == "unhealthy":
        status = "unhealthy"
    elif components["redis"].status == "unhealthy":
        status = "degraded"
    else:
        status = "healthy"

    refresh = await coordinator.status()

    return HealthResponse(
        status=status,
        components=components,
        refresh_in_progress=refresh.in_progress,
        version=__version__,
    )
