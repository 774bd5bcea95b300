"""
Topic fetcher for public forum origins.

Wraps ForumHTTPClient with the ``latest.json`` contract: one call per
origin, parsed into Topic models, with the outcome reported as a
FetchResult instead of an exception.
"""

import time
from typing import Any

import structlog

from forum_tracker.ingestion.http_client import ForumHTTPClient
from forum_tracker.ingestion.schemas import (
    FetchError,
    FetchErrorKind,
    FetchResult,
    Origin,
    Topic,
)
from forum_tracker.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


class OriginClient:
    """
    Fetches the latest topics of an origin.

    The client has no cache of its own; callers hand the result to the
    cache layer.

    Example:
        async with ForumHTTPClient(limiter) as http:
            client = OriginClient(http, per_page=30)
            result = await client.fetch_latest(origin)
            topics, error = result.value, result.error
    """

    def __init__(self, http: ForumHTTPClient, per_page: int = 30):
        self._http = http
        self.per_page = per_page

    async def fetch_latest(self, origin: Origin) -> FetchResult[list[Topic]]:
        """
        Fetch ``GET {origin}/latest.json?per_page=N``.

        Returns:
            FetchResult whose value is the parsed topics, or an empty list
            with the error when the fetch or parse failed
        """
        start = time.monotonic()
        result = await self._http.get_json(
            f"{origin.base_url}/latest.json",
            params={"per_page": self.per_page},
        )
        latency = time.monotonic() - start
        metrics = get_metrics()

        if not result.ok:
            assert result.error is not None
            logger.warning(
                "Origin fetch failed",
                origin=origin.key,
                kind=result.error.kind.value,
                error=str(result.error),
            )
            metrics.record_fetch(origin.key, result.error.kind.value, latency)
            return FetchResult.failure(result.error, [])

        topics = parse_topic_list(result.value, origin)
        if topics is None:
            error = FetchError(FetchErrorKind.MALFORMED, "Missing topic_list.topics")
            metrics.record_fetch(origin.key, error.kind.value, latency)
            return FetchResult.failure(error, [])

        metrics.record_fetch(origin.key, "ok", latency)
        logger.debug("Origin fetched", origin=origin.key, topics=len(topics))
        return FetchResult.success(topics)


def parse_topic_list(payload: Any, origin: Origin) -> list[Topic] | None:
    """
    Extract topics from a ``latest.json`` payload.

    Returns None when the payload has no topic list at all. Individual
    entries that cannot be parsed are skipped.
    """
    if not isinstance(payload, dict):
        return None
    topic_list = payload.get("topic_list")
    if not isinstance(topic_list, dict):
        return None
    raw_topics = topic_list.get("topics")
    if not isinstance(raw_topics, list):
        return None

    topics: list[Topic] = []
    for raw in raw_topics:
        if not isinstance(raw, dict):
            continue
        try:
            topic = Topic.from_api(raw, origin)
        except ValueError as e:
            logger.debug("Skipping unparseable topic", origin=origin.key, error=str(e))
            continue
        if topic is not None:
            topics.append(topic)
    return topics
