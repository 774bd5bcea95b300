"""End-to-end refresh cycles against a mocked origin."""

from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from forum_tracker.cache.repository import ForumRepository
from forum_tracker.cache.service import ForumCache
from forum_tracker.ingestion.http_client import DomainRateLimiter, ForumHTTPClient
from forum_tracker.ingestion.origin_client import OriginClient
from forum_tracker.scheduler.lock import LocalRefreshLock
from forum_tracker.scheduler.refresh import RefreshCoordinator

LATEST_URL = "https://forum.example.org/latest.json"


class TestRefreshCycles:
    """Success, failure, recovery against one origin."""

    @pytest.fixture
    def repository(self):
        mock = AsyncMock(spec=ForumRepository)
        mock.upsert_forum.return_value = 11
        return mock

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_between_successes_serves_stale_topics(
        self, origin, payload_builders, wall_clock, fake_clock, repository
    ):
        latest_payload, raw_topic = payload_builders
        respx.get(LATEST_URL).mock(
            side_effect=[
                httpx.Response(200, json=latest_payload(*(raw_topic(i) for i in (1, 2, 3)))),
                httpx.Response(500),
                httpx.Response(
                    200,
                    json=latest_payload(
                        raw_topic(1), raw_topic(2), raw_topic(3, like_count=9), raw_topic(4)
                    ),
                ),
            ]
        )
        limiter = DomainRateLimiter(max_requests=20, clock=fake_clock, sleep=fake_clock.sleep)
        cache = ForumCache(repository=repository, clock=wall_clock)

        async with ForumHTTPClient(rate_limiter=limiter, sleep=AsyncMock()) as http:
            coordinator = RefreshCoordinator(
                cache,
                OriginClient(http),
                LocalRefreshLock(clock=fake_clock),
                origins_provider=lambda tiers: [origin],
                clock=wall_clock,
            )

            first = await coordinator.refresh()
            await cache.drain()
            entry = await cache.get_cached_origin(origin.url)
            assert first.successful == 1
            assert len(entry.topics) == 3
            assert entry.error is None

            wall_clock.advance(900)
            second = await coordinator.refresh()
            await cache.drain()
            entry = await cache.get_cached_origin(origin.url)
            assert second.failed == 1
            assert second.errors == {origin.key: "HTTP 500"}
            assert len(entry.topics) == 3
            assert entry.error == "HTTP 500"
            assert entry.fetched_at == wall_clock.now

            wall_clock.advance(900)
            third = await coordinator.refresh()
            await cache.drain()
            entry = await cache.get_cached_origin(origin.url)
            assert third.successful == 1
            assert len(entry.topics) == 4
            assert entry.error is None
            assert {t.id: t.like_count for t in entry.topics}[3] == 9

        topics = await cache.collect_topics([origin.url])
        assert [t.id for t in topics] == [4, 3, 2, 1]
        assert limiter.in_window("forum.example.org") == 3

        # Cycles 1 and 3 persist; the failed cycle 2 writes nothing
        assert repository.upsert_forum.await_count == 2
        persisted = [c.args for c in repository.upsert_topics.await_args_list]
        assert [forum_id for forum_id, _ in persisted] == [11, 11]
        assert [t.id for t in persisted[0][1]] == [1, 2, 3]
        assert [(t.id, t.like_count) for t in persisted[1][1]] == [(1, 0), (2, 0), (3, 9), (4, 0)]
        assert repository.update_forum_last_fetched.await_count == 2
