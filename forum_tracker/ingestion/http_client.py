"""
HTTP infrastructure layer with per-domain rate limiting and throttle retries.

Provides:
- DomainRateLimiter: Rolling 60-second window of request timestamps per domain
- RetryConfig: Backoff configuration for HTTP 429 responses
- ForumHTTPClient: Async JSON client that never raises past its boundary

This layer separates HTTP concerns (rate limits, retries, content checks)
from domain logic (topic and member parsing) in the origin clients.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from forum_tracker.ingestion.schemas import FetchError, FetchErrorKind, FetchResult
from forum_tracker.ingestion.url import domain_of
from forum_tracker.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class DomainRateLimiter:
    """
    Rolling-window outbound rate limiter keyed by target domain.

    Keeps the timestamps of requests issued in the last ``window_seconds``
    per domain. When the window already holds ``max_requests`` entries the
    caller waits until the oldest one expires. The ceiling holds per domain
    no matter how many tenants or origins share it.

    Example:
        limiter = DomainRateLimiter(max_requests=20)
        await limiter.acquire("forum.example.org")  # before each request
    """

    max_requests: int = 20
    window_seconds: float = 60.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: SleepFn = field(default=asyncio.sleep, repr=False)
    _windows: dict[str, deque[float]] = field(default_factory=dict, repr=False)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, repr=False)

    def _evict(self, window: deque[float], now: float) -> None:
        while window and now - window[0] >= self.window_seconds:
            window.popleft()

    async def acquire(self, domain: str) -> float:
        """
        Wait until a request to ``domain`` is allowed, then record it.

        Waiters for the same domain are served in order; other domains are
        not affected.

        Returns:
            Seconds spent waiting (0.0 when the window had room)
        """
        lock = self._locks.setdefault(domain, asyncio.Lock())
        async with lock:
            window = self._windows.setdefault(domain, deque())
            blocked_at: float | None = None
            while True:
                now = self.clock()
                self._evict(window, now)
                if len(window) < self.max_requests:
                    break
                if blocked_at is None:
                    blocked_at = now
                # A sleep that returns early goes round again
                wait_time = self.window_seconds - (now - window[0])
                logger.debug(
                    "Outbound rate limit reached for %s, waiting %.2fs",
                    domain,
                    wait_time,
                )
                await self.sleep(wait_time)

            window.append(now)
            return 0.0 if blocked_at is None else now - blocked_at

    def in_window(self, domain: str) -> int:
        """Number of requests to ``domain`` currently counted in the window."""
        window = self._windows.get(domain)
        if not window:
            return 0
        self._evict(window, self.clock())
        return len(window)


@dataclass
class RetryConfig:
    """
    Backoff configuration for throttled (HTTP 429) responses.

    With a Retry-After value the delay grows exponentially from it:
    ``retry_after * 2^attempt``. Without one, the delay is a fixed floor
    multiplied by the attempt number: ``floor * (attempt + 1)``.
    Both are capped at ``max_backoff_seconds``.
    """

    max_retries: int = 2
    backoff_floor_seconds: float = 5.0
    max_backoff_seconds: float = 60.0

    def calculate_backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)
            retry_after: Seconds advertised by the origin, if any

        Returns:
            Backoff duration in seconds
        """
        if retry_after is not None and retry_after > 0:
            delay = retry_after * (2**attempt)
        else:
            delay = self.backoff_floor_seconds * (attempt + 1)
        return min(delay, self.max_backoff_seconds)

    @staticmethod
    def parse_retry_after(value: str | None) -> float | None:
        """Parse a Retry-After header (delta-seconds or HTTP-date)."""
        if not value:
            return None
        value = value.strip()
        try:
            return max(0.0, float(value))
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class ForumHTTPClient:
    """
    Async JSON client for forum origins.

    Features:
    - Per-domain rate limiting before every attempt (including retries)
    - Retry with backoff on 429, up to ``RetryConfig.max_retries``
    - Typed errors for non-2xx, non-JSON and transport failures
    - Context manager for proper resource cleanup

    ``get_json`` and ``post_json`` never raise for remote failures: they
    always return a ``FetchResult`` whose ``error`` says what went wrong.

    Example:
        async with ForumHTTPClient(DomainRateLimiter(20)) as client:
            result = await client.get_json("https://forum.example.org/latest.json")
            if result.ok:
                topics = result.value["topic_list"]["topics"]
    """

    def __init__(
        self,
        rate_limiter: DomainRateLimiter | None = None,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        user_agent: str = "forum-tracker/0.1.0",
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize HTTP client.

        Args:
            rate_limiter: Shared per-domain limiter. A private one is created if None.
            retry_config: Configuration for throttle retries. Uses defaults if None.
            timeout: Request timeout in seconds.
            user_agent: User-Agent sent to origins.
            transport: Optional httpx transport (tests).
            sleep: Coroutine used for backoff waits (tests).
        """
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        """Create the underlying httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json", "User-Agent": self.user_agent},
            )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ForumHTTPClient":
        """Enter async context manager, create client."""
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        await self.close()

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult[Any]:
        """Rate-limited GET; see ``request_json``."""
        return await self.request_json("GET", url, params=params, headers=headers)

    async def post_json(
        self,
        url: str,
        body: Any,
        headers: dict[str, str] | None = None,
    ) -> FetchResult[Any]:
        """Rate-limited POST of a JSON body (GraphQL endpoints)."""
        return await self.request_json("POST", url, headers=headers, json_body=body)

    async def request_json(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> FetchResult[Any]:
        """
        Perform a rate-limited request and decode the JSON body.

        Args:
            method: HTTP method
            url: Request URL
            params: Query parameters
            headers: Extra request headers (e.g. Api-Key)
            json_body: JSON request body, if any

        Returns:
            FetchResult with the decoded JSON on success, or value=None and a
            FetchError describing the failure
        """
        if not self._client:
            raise RuntimeError("ForumHTTPClient must be opened before use")

        domain = domain_of(url)
        metrics = get_metrics()
        max_retries = self.retry_config.max_retries

        for attempt in range(max_retries + 1):
            waited = await self.rate_limiter.acquire(domain)
            if waited:
                metrics.rate_limit_waits.labels(domain=domain).inc()

            try:
                response = await self._client.request(
                    method, url, params=params, headers=headers, json=json_body
                )
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                logger.warning(f"Request to {url} failed: {type(e).__name__}: {e}")
                return FetchResult.failure(
                    FetchError(FetchErrorKind.UNREACHABLE, f"{type(e).__name__}: {e}"),
                    None,
                )

            if response.status_code == 429:
                if attempt < max_retries:
                    retry_after = self.retry_config.parse_retry_after(
                        response.headers.get("retry-after")
                    )
                    backoff = self.retry_config.calculate_backoff(attempt, retry_after)
                    logger.warning(
                        f"Rate limited by {domain}, "
                        f"attempt {attempt + 1}/{max_retries + 1}, "
                        f"backing off {backoff:.2f}s"
                    )
                    metrics.throttle_retries.labels(domain=domain).inc()
                    await self._sleep(backoff)
                    continue

                return FetchResult.failure(
                    FetchError(FetchErrorKind.THROTTLED, "Rate limited", 429),
                    None,
                )

            if not response.is_success:
                return FetchResult.failure(
                    FetchError(
                        FetchErrorKind.HTTP_STATUS,
                        f"HTTP {response.status_code}",
                        response.status_code,
                    ),
                    None,
                )

            content_type = response.headers.get("content-type", "")
            if "json" not in content_type.lower():
                return FetchResult.failure(
                    FetchError(
                        FetchErrorKind.MALFORMED,
                        "Invalid response (not JSON)",
                        response.status_code,
                    ),
                    None,
                )

            try:
                return FetchResult.success(response.json())
            except ValueError as e:
                return FetchResult.failure(
                    FetchError(
                        FetchErrorKind.MALFORMED,
                        f"Invalid JSON body: {e}",
                        response.status_code,
                    ),
                    None,
                )

        # Should not reach here, but just in case
        return FetchResult.failure(
            FetchError(FetchErrorKind.THROTTLED, "Rate limited", 429),
            None,
        )
