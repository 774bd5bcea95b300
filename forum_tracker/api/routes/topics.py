"""
Topic read endpoint. Served from the cache only; never fetches origins.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from forum_tracker.api.dependencies import get_cache
from forum_tracker.api.models import TopicsResponse
from forum_tracker.api.rate_limit import default_limit, limiter
from forum_tracker.cache.service import ForumCache
from forum_tracker.config.external_sources import (
    EXTERNAL_KEY_PREFIX,
    find_external_source,
    get_external_sources,
)
from forum_tracker.config.origins import find_origin, get_origins

router = APIRouter()


@router.get(
    "/topics",
    response_model=TopicsResponse,
    summary="Latest cached topics",
)
@limiter.limit(default_limit)
async def list_topics(
    request: Request,
    origin: str | None = Query(
        default=None,
        description="Origin base URL or external:<id> source key",
    ),
    tier: list[int] | None = Query(default=None),
    external: bool = Query(default=False, description="Include external sources"),
    limit: int = Query(default=100, ge=1, le=500),
    cache: ForumCache = Depends(get_cache),
) -> TopicsResponse:
    if origin is not None and origin.startswith(EXTERNAL_KEY_PREFIX):
        source = find_external_source(origin)
        if source is None:
            raise HTTPException(status_code=404, detail=f"Unknown source: {origin}")
        urls = [source.key]
    elif origin is not None:
        registered = find_origin(origin)
        if registered is None:
            raise HTTPException(status_code=404, detail=f"Unknown origin: {origin}")
        urls = [registered.url]
    else:
        urls = [o.url for o in get_origins(tier)]
        if external:
            urls += [s.key for s in get_external_sources(tier)]

    topics = await cache.collect_topics(urls)
    return TopicsResponse(
        topics=[t.to_dict() for t in topics[:limit]],
        count=min(len(topics), limit),
        origins=urls,
    )
