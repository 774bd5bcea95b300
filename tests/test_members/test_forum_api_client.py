"""Tests for the authenticated ForumAPIClient."""

import httpx
import pytest
import respx

from forum_tracker.ingestion.http_client import ForumHTTPClient
from forum_tracker.ingestion.schemas import FetchErrorKind
from forum_tracker.members.client import ForumAPIClient, ForumCredentials, parse_directory_item

BASE = "https://forum.example.org"


@pytest.fixture
async def http():
    async with ForumHTTPClient() as client:
        yield client


@pytest.fixture
def api(http):
    return ForumAPIClient(http, ForumCredentials(BASE + "/", "key-123", "system"))


def _directory_row(username: str, post_count: int, **kwargs):
    row = {
        "id": 1,
        "post_count": post_count,
        "topic_count": 1,
        "likes_received": 3,
        "likes_given": 2,
        "days_visited": 10,
        "posts_read": 50,
        "topics_entered": 8,
        "user": {"username": username, "name": username.title(), "avatar_template": "/a.png"},
    }
    row.update(kwargs)
    return row


class TestParseDirectoryItem:
    def test_nested_user(self):
        item = parse_directory_item(_directory_row("alice", 12))

        assert item.username == "alice"
        assert item.name == "Alice"
        assert item.post_count == 12
        assert item.topics_entered == 8

    def test_flat_username_and_missing_counters(self):
        item = parse_directory_item({"username": "bob"})

        assert item.username == "bob"
        assert item.post_count == 0
        assert item.name is None

    def test_no_username(self):
        assert parse_directory_item({"post_count": 3}) is None


class TestHeaders:
    @pytest.mark.asyncio
    @respx.mock
    async def test_api_key_and_username(self, api):
        route = respx.get(f"{BASE}/users/alice.json").mock(
            return_value=httpx.Response(200, json={"user": {"username": "alice"}})
        )

        await api.lookup_username("alice")

        headers = route.calls.last.request.headers
        assert headers["Api-Key"] == "key-123"
        assert headers["Api-Username"] == "system"

    @pytest.mark.asyncio
    @respx.mock
    async def test_all_users_key_omits_username(self, http):
        client = ForumAPIClient(http, ForumCredentials(BASE, "key-123"))
        route = respx.get(f"{BASE}/users/alice.json").mock(
            return_value=httpx.Response(200, json={"user": {"username": "alice"}})
        )

        await client.lookup_username("alice")

        assert "Api-Username" not in route.calls.last.request.headers


class TestDirectory:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_page(self, api):
        route = respx.get(f"{BASE}/directory_items.json").mock(
            return_value=httpx.Response(
                200,
                json={
                    "directory_items": [_directory_row("alice", 12), {"junk": True}],
                    "meta": {"total_rows_directory_items": 734},
                },
            )
        )

        result = await api.fetch_directory_page(period="monthly", page=2)

        assert result.ok
        assert [i.username for i in result.value.items] == ["alice"]
        assert result.value.total_count == 734
        params = route.calls.last.request.url.params
        assert params["period"] == "monthly"
        assert params["page"] == "2"
        assert params["order"] == "post_count"

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_items_is_malformed(self, api):
        respx.get(f"{BASE}/directory_items.json").mock(
            return_value=httpx.Response(200, json={"meta": {}})
        )

        result = await api.fetch_directory_page()

        assert result.error.kind == FetchErrorKind.MALFORMED
        assert result.value.items == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_forbidden(self, api):
        respx.get(f"{BASE}/directory_items.json").mock(return_value=httpx.Response(403))

        result = await api.fetch_directory_page()

        assert result.error.status_code == 403
        assert result.value.total_count == 0


class TestUserStats:
    @pytest.mark.asyncio
    @respx.mock
    async def test_summary_counters_preferred(self, api):
        respx.get(f"{BASE}/users/alice.json").mock(
            return_value=httpx.Response(
                200,
                json={
                    "user": {
                        "username": "alice",
                        "name": "Alice",
                        "trust_level": 2,
                        "post_count": 5,
                        "last_seen_at": "2026-03-01T09:00:00Z",
                    }
                },
            )
        )
        respx.get(f"{BASE}/users/alice/summary.json").mock(
            return_value=httpx.Response(
                200,
                json={
                    "user_summary": {
                        "post_count": 40,
                        "topic_count": 6,
                        "posts_read_count": 900,
                        "likes_received": 77,
                        "days_visited": 120,
                    }
                },
            )
        )

        result = await api.get_user_stats("alice")

        stats = result.value
        assert stats.post_count == 40
        assert stats.posts_read == 900
        assert stats.likes_received == 77
        assert stats.trust_level == 2
        assert stats.last_seen_at == "2026-03-01T09:00:00Z"

    @pytest.mark.asyncio
    @respx.mock
    async def test_summary_failure_falls_back_to_profile(self, api):
        respx.get(f"{BASE}/users/alice.json").mock(
            return_value=httpx.Response(200, json={"user": {"username": "alice", "post_count": 5}})
        )
        respx.get(f"{BASE}/users/alice/summary.json").mock(return_value=httpx.Response(403))

        result = await api.get_user_stats("alice")

        assert result.ok
        assert result.value.post_count == 5

    @pytest.mark.asyncio
    @respx.mock
    async def test_unknown_user(self, api):
        respx.get(f"{BASE}/users/ghost.json").mock(return_value=httpx.Response(404))

        result = await api.get_user_stats("ghost")

        assert result.value is None
        assert result.error.status_code == 404


class TestPostsAndSearch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_user_posts(self, api):
        route = respx.get(f"{BASE}/user_actions.json").mock(
            return_value=httpx.Response(
                200,
                json={
                    "user_actions": [
                        {
                            "post_id": 77,
                            "topic_id": 9,
                            "title": "Budget",
                            "slug": "budget",
                            "post_number": 3,
                            "excerpt": "I support this",
                            "created_at": "2026-02-01T00:00:00Z",
                        }
                    ]
                },
            )
        )

        result = await api.get_user_posts("alice", limit=5)

        post = result.value[0]
        assert (post.id, post.topic_id, post.post_number) == (77, 9, 3)
        assert post.content == "I support this"
        assert post.username == "alice"
        params = route.calls.last.request.url.params
        assert params["filter"] == "4,5"
        assert params["limit"] == "5"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rationale_search_filters_author(self, api):
        route = respx.get(f"{BASE}/search.json").mock(
            return_value=httpx.Response(
                200,
                json={
                    "posts": [
                        {"id": 1, "topic_id": 9, "username": "Alice", "blurb": "My rationale"},
                        {"id": 2, "topic_id": 9, "username": "bob", "blurb": "Quoting alice"},
                    ],
                    "topics": [{"id": 9, "title": "Vote 12", "slug": "vote-12"}],
                },
            )
        )

        result = await api.search_rationales(
            "alice", pattern="rationale", category_ids=[14, 15], tags=["votes", "q1"]
        )

        assert result.value.count == 1
        assert result.value.posts[0].topic_title == "Vote 12"
        assert result.value.posts[0].content == "My rationale"
        assert (
            route.calls.last.request.url.params["q"]
            == "@alice rationale category:14 tags:votes,q1"
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_rationale_search_failure_is_zero(self, api):
        respx.get(f"{BASE}/search.json").mock(return_value=httpx.Response(403))

        result = await api.search_rationales("alice")

        assert not result.ok
        assert result.value.count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_search_users(self, api):
        respx.get(f"{BASE}/users/search/users.json").mock(
            return_value=httpx.Response(
                200, json={"users": [{"username": "alice", "name": "Alice"}, {"name": "anon"}]}
            )
        )

        result = await api.search_users("ali")

        assert [u.username for u in result.value] == ["alice"]

    @pytest.mark.asyncio
    async def test_search_users_short_term(self, api):
        result = await api.search_users("a")
        assert result.ok
        assert result.value == []


class TestCapabilities:
    @pytest.mark.asyncio
    @respx.mock
    async def test_detect_capabilities(self, api):
        respx.get(f"{BASE}/posts.json").mock(return_value=httpx.Response(403))
        respx.get(f"{BASE}/user_actions.json").mock(
            return_value=httpx.Response(200, json={"user_actions": []})
        )
        respx.get(f"{BASE}/admin/users/list/active.json").mock(return_value=httpx.Response(403))
        respx.get(f"{BASE}/users/system.json").mock(
            return_value=httpx.Response(200, json={"user": {"username": "system"}})
        )
        respx.get(f"{BASE}/search.json").mock(
            return_value=httpx.Response(200, json={"posts": []})
        )

        capabilities = await api.detect_capabilities()

        assert capabilities.can_list_users is False
        assert capabilities.can_view_user_stats is True
        assert capabilities.can_view_user_posts is True
        assert capabilities.can_search_posts is True
        assert capabilities.tested_at is not None
