"""
FastAPI application factory.

The app owns one ServiceContainer for its lifetime (``app.state.container``);
routes reach the container's components through ``api.dependencies``.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from forum_tracker import __version__
from forum_tracker.api.rate_limit import limiter
from forum_tracker.api.routes import cache, health, tenants, topics
from forum_tracker.config.settings import Settings, get_settings
from forum_tracker.observability.logging import bind_context, clear_context
from forum_tracker.services.container import ServiceContainer

logger = structlog.get_logger(__name__)

SERVICE_NAME = "Forum Tracker API"

DESCRIPTION = """
Latest topics from many discussion forums, refreshed on a schedule and
served from a multi-tier cache (Redis, in-process, PostgreSQL).

Refresh triggers and tenant routes require `Authorization: Bearer <REFRESH_SECRET>`.
"""

# (router module, tag, tag description)
ROUTERS = (
    (health, "health", "Service health checks"),
    (cache, "cache", "Cache status and refresh triggers"),
    (topics, "topics", "Latest topics served from the cache"),
    (tenants, "tenants", "Tenant refresh, contributor sync and members"),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    container = ServiceContainer(settings)
    await container.start()
    app.state.container = container
    if settings.api_run_scheduler:
        container.scheduler.start()
    logger.info("API started", scheduler=settings.api_run_scheduler)

    try:
        yield
    finally:
        logger.info("API stopping")
        await container.close()


async def correlate_request(request: Request, call_next):
    """Bind a request id to every log line of the request and echo it back."""
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or uuid.uuid4().hex
    )
    bind_context(request_id=request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
    finally:
        clear_context()


async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_type": "internal"},
    )


def _cors_origins(settings: Settings) -> list[str]:
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=SERVICE_NAME,
        description=DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[{"name": tag, "description": text} for _, tag, text in ROUTERS],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.middleware("http")(correlate_request)
    app.add_exception_handler(Exception, unhandled_error)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    for module, tag, _ in ROUTERS:
        app.include_router(module.router, tags=[tag])

    @app.get("/", include_in_schema=False)
    async def root():
        return {"service": SERVICE_NAME, "version": __version__, "docs": "/docs"}

    return app
