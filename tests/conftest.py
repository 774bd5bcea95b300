"""Pytest fixtures for forum-tracker tests."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from forum_tracker.config.settings import Settings, get_settings
from forum_tracker.ingestion.schemas import Origin, Topic
from forum_tracker.members.schemas import Member, Tenant, TenantConfig


class FakeClock:
    """Controllable monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeWallClock:
    """Controllable UTC datetime clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep tests independent of the developer's environment."""
    for var in (
        "DATABASE_URL",
        "REDIS_URL",
        "REFRESH_SECRET",
        "ENCRYPTION_KEY",
        "API_RUN_SCHEDULER",
        "ENVIRONMENT",
        "RATE_LIMIT_DEFAULT",
        "GITHUB_TOKEN",
        "SNAPSHOT_API_KEY",
        "SNAPSHOT_SPACES",
        "EXTERNAL_SOURCES_ENABLED",
    ):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Settings without Redis or PostgreSQL."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        redis_url=None,
        database_url=None,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def origin() -> Origin:
    return Origin(name="Example", url="https://forum.example.org", tier=1, category="oss")


@pytest.fixture
def other_origin() -> Origin:
    return Origin(name="Other", url="https://discuss.other.org", tier=2, category="oss")


@pytest.fixture
def make_topic(origin) -> Callable[..., Topic]:
    """Factory for topics on the default origin."""

    def _make(topic_id: int = 1, **kwargs: Any) -> Topic:
        kwargs.setdefault("origin_url", origin.base_url)
        kwargs.setdefault("origin_name", origin.name)
        kwargs.setdefault("title", f"Topic {topic_id}")
        kwargs.setdefault("slug", f"topic-{topic_id}")
        kwargs.setdefault(
            "bumped_at", datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc) + timedelta(minutes=topic_id)
        )
        return Topic(id=topic_id, **kwargs)

    return _make


def latest_payload(*topics: dict[str, Any]) -> dict[str, Any]:
    """A ``latest.json`` body with the given raw topic entries."""
    return {"users": [], "topic_list": {"can_create_topic": False, "topics": list(topics)}}


def raw_topic(topic_id: int, like_count: int = 0, **kwargs: Any) -> dict[str, Any]:
    entry = {
        "id": topic_id,
        "title": f"Topic {topic_id}",
        "slug": f"topic-{topic_id}",
        "posts_count": 3,
        "reply_count": 2,
        "views": 40,
        "like_count": like_count,
        "category_id": 5,
        "created_at": "2026-02-28T09:00:00.000Z",
        "bumped_at": f"2026-03-01T10:{topic_id:02d}:00.000Z",
    }
    entry.update(kwargs)
    return entry


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(
        id=7,
        slug="acme",
        name="Acme DAO",
        forum_url="https://forum.example.org",
        api_username="system",
        encrypted_api_key="encrypted",
        config=TenantConfig(),
    )


@pytest.fixture
def make_member() -> Callable[..., Member]:
    def _make(username: str = "alice", member_id: int = 1, **kwargs: Any) -> Member:
        kwargs.setdefault("display_name", username.title())
        return Member(tenant_id=7, username=username, id=member_id, **kwargs)

    return _make


@pytest.fixture
def payload_builders():
    """(latest_payload, raw_topic) builders for ``latest.json`` bodies."""
    return latest_payload, raw_topic
