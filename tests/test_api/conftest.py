"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from forum_tracker.api.app import create_app
from forum_tracker.api.dependencies import (
    get_cache,
    get_coordinator,
    get_database,
    get_ephemeral_store,
    get_member_repository,
    get_tenant_refresher,
    get_tenant_sweep,
)
from forum_tracker.api.rate_limit import limiter
from forum_tracker.cache.schemas import CacheStats
from forum_tracker.cache.service import ForumCache
from forum_tracker.members.refresh import TenantRefresher
from forum_tracker.members.repository import MemberRepository
from forum_tracker.scheduler.refresh import RefreshCoordinator, RefreshStatus
from forum_tracker.scheduler.tenants import TenantSweep


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Each test starts with empty per-client counters."""
    limiter.reset()


@pytest.fixture
def mock_cache():
    """Mock ForumCache with an empty fallback map."""
    cache = AsyncMock(spec=ForumCache)
    cache.stats.return_value = CacheStats()
    cache.origin_health.return_value = []
    cache.collect_topics.return_value = []
    return cache


@pytest.fixture
def mock_coordinator():
    """Mock RefreshCoordinator that is idle."""
    coordinator = AsyncMock(spec=RefreshCoordinator)
    coordinator.in_progress = False
    coordinator.status.return_value = RefreshStatus(in_progress=False)
    return coordinator


@pytest.fixture
def mock_member_repo(tenant):
    repo = AsyncMock(spec=MemberRepository)
    repo.get_tenant_by_slug.return_value = tenant
    repo.list_members.return_value = []
    return repo


@pytest.fixture
def mock_refresher():
    return AsyncMock(spec=TenantRefresher)


@pytest.fixture
def mock_sweep():
    return AsyncMock(spec=TenantSweep)


@pytest.fixture
def app(mock_cache, mock_coordinator, mock_member_repo, mock_refresher, mock_sweep):
    """Application with every service dependency overridden."""
    app = create_app()
    app.dependency_overrides[get_cache] = lambda: mock_cache
    app.dependency_overrides[get_coordinator] = lambda: mock_coordinator
    app.dependency_overrides[get_database] = lambda: None
    app.dependency_overrides[get_ephemeral_store] = lambda: None
    app.dependency_overrides[get_member_repository] = lambda: mock_member_repo
    app.dependency_overrides[get_tenant_refresher] = lambda: mock_refresher
    app.dependency_overrides[get_tenant_sweep] = lambda: mock_sweep
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """FastAPI TestClient with dependency overrides."""
    with TestClient(app) as c:
        yield c
