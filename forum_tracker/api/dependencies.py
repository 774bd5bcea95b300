"""
Dependency injection for FastAPI endpoints.

Everything is read from the ServiceContainer the lifespan stores on
``app.state``; tests override these functions.
"""

from fastapi import Depends, HTTPException, Request, status

from forum_tracker.cache.ephemeral import EphemeralStore
from forum_tracker.cache.service import ForumCache
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.refresh import TenantRefresher
from forum_tracker.scheduler.refresh import RefreshCoordinator
from forum_tracker.scheduler.tenants import TenantSweep
from forum_tracker.services.container import ServiceContainer
from forum_tracker.storage.database import Database


def _tenants_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Tenant pipeline unavailable (DATABASE_URL not configured or unreachable)",
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_cache(container: ServiceContainer = Depends(get_container)) -> ForumCache:
    return container.cache


def get_coordinator(container: ServiceContainer = Depends(get_container)) -> RefreshCoordinator:
    return container.coordinator


def get_database(container: ServiceContainer = Depends(get_container)) -> Database | None:
    return container.database


def get_ephemeral_store(
    container: ServiceContainer = Depends(get_container),
) -> EphemeralStore | None:
    return container.ephemeral


def get_member_repository(
    container: ServiceContainer = Depends(get_container),
) -> MemberRepository:
    if container.member_repository is None:
        raise _tenants_unavailable()
    return container.member_repository


def get_tenant_refresher(
    container: ServiceContainer = Depends(get_container),
) -> TenantRefresher:
    if container.refresher is None:
        raise _tenants_unavailable()
    return container.refresher


def get_tenant_sweep(container: ServiceContainer = Depends(get_container)) -> TenantSweep:
    if container.sweep is None:
        raise _tenants_unavailable()
    return container.sweep
