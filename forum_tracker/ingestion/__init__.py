"""Ingestion: rate-limited fetching of forum origin data."""

from forum_tracker.ingestion.http_client import DomainRateLimiter, ForumHTTPClient, RetryConfig
from forum_tracker.ingestion.origin_client import OriginClient
from forum_tracker.ingestion.schemas import FetchError, FetchErrorKind, FetchResult, Origin, Topic

__all__ = [
    "DomainRateLimiter",
    "FetchError",
    "FetchErrorKind",
    "FetchResult",
    "ForumHTTPClient",
    "Origin",
    "OriginClient",
    "RetryConfig",
    "Topic",
]
