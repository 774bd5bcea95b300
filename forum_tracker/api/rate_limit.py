"""
Inbound API rate limiting using slowapi.

One shared Limiter keyed by client IP. Counters live in Redis when
REDIS_URL is set, so every API replica shares them; otherwise they are
per process. Disable with RATE_LIMIT_ENABLED=false.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from forum_tracker.config.settings import Settings, get_settings


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return get_remote_address(request)


def create_limiter(settings: Settings | None = None) -> Limiter:
    settings = settings or get_settings()
    return Limiter(
        key_func=client_ip,
        default_limits=[settings.rate_limit_default],
        storage_uri=settings.redis_url or "memory://",
        enabled=settings.rate_limit_enabled,
    )


limiter = create_limiter()


def default_limit() -> str:
    return get_settings().rate_limit_default
