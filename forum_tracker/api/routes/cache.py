"""
Cache status and refresh trigger endpoints.
"""

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from forum_tracker.api.auth import verify_refresh_secret
from forum_tracker.api.dependencies import get_cache, get_coordinator
from forum_tracker.api.models import (
    CacheClearResponse,
    CacheStatsModel,
    CacheStatusResponse,
    OriginHealthModel,
    RefreshStatusModel,
    RefreshSummaryModel,
    RefreshTriggerResponse,
)
from forum_tracker.api.rate_limit import default_limit, limiter
from forum_tracker.cache.service import ForumCache
from forum_tracker.config.origins import get_origins
from forum_tracker.scheduler.refresh import RefreshCoordinator

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "/cache",
    response_model=CacheStatusResponse,
    summary="Cache status",
)
@limiter.limit(default_limit)
async def cache_status(
    request: Request,
    details: bool = Query(default=False, description="Include per-origin health"),
    cache: ForumCache = Depends(get_cache),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
) -> CacheStatusResponse:
    stats = await cache.stats()
    refresh = await coordinator.status()

    origins = None
    if details:
        health = await cache.origin_health(get_origins())
        origins = [OriginHealthModel.model_validate(h) for h in health]

    return CacheStatusResponse(
        stats=CacheStatsModel.model_validate(stats),
        refresh=RefreshStatusModel.model_validate(refresh),
        origins=origins,
    )


@router.post(
    "/cache/refresh",
    response_model=RefreshTriggerResponse,
    summary="Trigger an origin refresh",
    description=(
        "Starts a refresh cycle in the background, or runs it inline with "
        "wait=true. Concurrent triggers are skipped by the single-flight guard."
    ),
)
async def trigger_refresh(
    background_tasks: BackgroundTasks,
    tier: list[int] | None = Query(default=None),
    wait: bool = Query(default=False),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
    _auth: str = Depends(verify_refresh_secret),
) -> RefreshTriggerResponse:
    if (await coordinator.status()).in_progress:
        return RefreshTriggerResponse(status="in_progress")

    if wait:
        summary = await coordinator.refresh(tier)
        return RefreshTriggerResponse(
            status=summary.outcome.value,
            summary=RefreshSummaryModel.model_validate(summary),
        )

    background_tasks.add_task(coordinator.refresh, tier)
    logger.info("Refresh scheduled", tiers=tier)
    return RefreshTriggerResponse(status="started")


@router.delete(
    "/cache",
    response_model=CacheClearResponse,
    summary="Clear the in-process and Redis topic caches",
)
async def clear_cache(
    cache: ForumCache = Depends(get_cache),
    _auth: str = Depends(verify_refresh_secret),
) -> CacheClearResponse:
    await cache.clear()
    return CacheClearResponse()
