"""
Authenticated forum API client for the tenant pipeline.

Sends ``Api-Key`` and, for per-user keys, ``Api-Username`` headers. Shares
the process-wide ForumHTTPClient, so calls count against the same
per-domain rate limit as the public topic fetches.

Every method returns a FetchResult with a documented fallback value, so
callers decide explicitly how to degrade.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import structlog

from forum_tracker.ingestion.http_client import ForumHTTPClient
from forum_tracker.ingestion.schemas import FetchError, FetchErrorKind, FetchResult
from forum_tracker.members.schemas import (
    DEFAULT_RATIONALE_PATTERN,
    DirectoryItem,
    DirectoryPage,
    RationaleSearch,
    TenantCapabilities,
    UserPost,
    UserRef,
    UserStats,
)

logger = structlog.get_logger(__name__)

# user_actions filters: 4 = reply, 5 = new topic
POST_ACTION_FILTER = "4,5"


def _int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return default


def _first_int(*values: Any) -> int:
    """First value that is a number, else 0."""
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return 0


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _malformed(message: str) -> FetchError:
    return FetchError(FetchErrorKind.MALFORMED, message)


@dataclass(frozen=True)
class ForumCredentials:
    base_url: str
    api_key: str
    api_username: str = ""


def parse_directory_item(raw: dict[str, Any]) -> DirectoryItem | None:
    user = raw.get("user") if isinstance(raw.get("user"), dict) else {}
    username = _str(user.get("username")) or _str(raw.get("username"))
    if not username:
        return None
    return DirectoryItem(
        username=username,
        name=_str(user.get("name")) or None,
        avatar_template=_str(user.get("avatar_template")),
        post_count=_int(raw.get("post_count")),
        topic_count=_int(raw.get("topic_count")),
        likes_received=_int(raw.get("likes_received")),
        likes_given=_int(raw.get("likes_given")),
        days_visited=_int(raw.get("days_visited")),
        posts_read=_int(raw.get("posts_read")),
        topics_entered=_int(raw.get("topics_entered")),
    )


class ForumAPIClient:
    """
    Client for one tenant's forum, bound to its decrypted credential.

    Example:
        client = ForumAPIClient(http, ForumCredentials(url, api_key, "system"))
        stats = await client.get_user_stats("alice")
        if stats.ok:
            print(stats.value.post_count)
    """

    def __init__(self, http: ForumHTTPClient, credentials: ForumCredentials):
        self._http = http
        self._credentials = credentials
        self._base_url = credentials.base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Api-Key": self._credentials.api_key}
        # "All Users" keys are rejected when a username is sent
        if self._credentials.api_username:
            headers["Api-Username"] = self._credentials.api_username
        return headers

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> FetchResult[Any]:
        return await self._http.get_json(
            f"{self._base_url}{path}",
            params=params,
            headers=self._headers(),
        )

    # Directory

    async def fetch_directory_page(
        self,
        period: str = "all",
        page: int = 0,
        order: str = "post_count",
    ) -> FetchResult[DirectoryPage]:
        """
        Fetch one page of ``directory_items.json``.

        Fallback: an empty page.
        """
        result = await self._get(
            "/directory_items.json",
            params={"period": period, "order": order, "page": page},
        )
        empty = DirectoryPage(items=[], total_count=0)
        if not result.ok:
            return FetchResult.failure(result.error, empty)

        data = result.value
        if not isinstance(data, dict) or not isinstance(data.get("directory_items"), list):
            return FetchResult.failure(_malformed("Missing directory_items"), empty)

        items = [
            item
            for item in (
                parse_directory_item(raw)
                for raw in data["directory_items"]
                if isinstance(raw, dict)
            )
            if item is not None
        ]
        meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
        total = _int(meta.get("total_rows_directory_items"), default=len(items))
        return FetchResult.success(DirectoryPage(items=items, total_count=total))

    # Users

    async def get_user_summary(self, username: str) -> FetchResult[dict[str, Any] | None]:
        """Fetch ``/users/{username}/summary.json``. Fallback: None."""
        result = await self._get(f"/users/{quote(username)}/summary.json")
        if not result.ok:
            return FetchResult.failure(result.error, None)
        summary = result.value.get("user_summary") if isinstance(result.value, dict) else None
        if not isinstance(summary, dict):
            return FetchResult.failure(_malformed("Missing user_summary"), None)
        return FetchResult.success(summary)

    async def get_user_stats(self, username: str) -> FetchResult[UserStats | None]:
        """
        Fetch a user's profile and merge in the summary counters.

        The summary sub-fetch is best-effort: when it fails the profile's
        own counters are used. Fallback: None.
        """
        result = await self._get(f"/users/{quote(username)}.json")
        if not result.ok:
            return FetchResult.failure(result.error, None)
        user = result.value.get("user") if isinstance(result.value, dict) else None
        if not isinstance(user, dict):
            return FetchResult.failure(_malformed("Missing user"), None)

        summary_result = await self.get_user_summary(username)
        if not summary_result.ok:
            logger.debug(
                "User summary unavailable, using profile counters",
                username=username,
                error=str(summary_result.error),
            )
        summary = summary_result.unwrap_or(None) or {}

        stats = UserStats(
            username=_str(user.get("username")) or username,
            name=_str(user.get("name")) or None,
            avatar_template=_str(user.get("avatar_template")),
            trust_level=_int(user.get("trust_level")),
            topic_count=_first_int(summary.get("topic_count"), user.get("topic_count")),
            post_count=_first_int(summary.get("post_count"), user.get("post_count")),
            topics_entered=_first_int(summary.get("topics_entered"), user.get("topics_entered")),
            posts_read=_first_int(summary.get("posts_read_count"), user.get("posts_read")),
            days_visited=_first_int(summary.get("days_visited"), user.get("days_visited")),
            likes_given=_first_int(summary.get("likes_given"), user.get("likes_given")),
            likes_received=_first_int(summary.get("likes_received"), user.get("likes_received")),
            last_seen_at=_str(user.get("last_seen_at")) or None,
            last_posted_at=_str(user.get("last_posted_at")) or None,
            created_at=_str(user.get("created_at")) or None,
        )
        return FetchResult.success(stats)

    async def get_user_posts(self, username: str, limit: int = 15) -> FetchResult[list[UserPost]]:
        """Recent replies and topics of a user. Fallback: []."""
        result = await self._get(
            "/user_actions.json",
            params={"username": username, "filter": POST_ACTION_FILTER, "limit": limit},
        )
        if not result.ok:
            return FetchResult.failure(result.error, [])
        actions = result.value.get("user_actions") if isinstance(result.value, dict) else None
        if not isinstance(actions, list):
            return FetchResult.failure(_malformed("Missing user_actions"), [])

        posts = [
            UserPost(
                id=_int(action.get("post_id")) or _int(action.get("id")),
                topic_id=_int(action.get("topic_id")),
                topic_title=_str(action.get("title")),
                topic_slug=_str(action.get("slug")),
                category_id=_int(action.get("category_id")),
                post_number=_int(action.get("post_number"), default=1) or 1,
                content=_str(action.get("excerpt")) or _str(action.get("cooked")),
                created_at=_str(action.get("created_at")),
                like_count=_int(action.get("like_count")),
                reply_count=_int(action.get("reply_count")),
                username=username,
            )
            for action in actions[:limit]
            if isinstance(action, dict)
        ]
        return FetchResult.success(posts)

    async def search_rationales(
        self,
        username: str,
        pattern: str | None = None,
        category_ids: list[int] | None = None,
        tags: list[str] | None = None,
    ) -> FetchResult[RationaleSearch]:
        """
        Search for rationale posts written by ``username``.

        Query: ``@user pattern [category:X] [tags:a,b]``; only posts by the
        user are counted. Fallback: zero matches.
        """
        query = f"@{username} {pattern or DEFAULT_RATIONALE_PATTERN}"
        if category_ids:
            query += f" category:{category_ids[0]}"
        if tags:
            query += f" tags:{','.join(tags)}"

        result = await self._get("/search.json", params={"q": query})
        if not result.ok:
            return FetchResult.failure(result.error, RationaleSearch())
        data = result.value
        if not isinstance(data, dict):
            return FetchResult.failure(_malformed("Invalid search response"), RationaleSearch())

        topics = {
            t.get("id"): t for t in data.get("topics") or [] if isinstance(t, dict)
        }
        posts = []
        for raw in data.get("posts") or []:
            if not isinstance(raw, dict):
                continue
            author = _str(raw.get("username")) or username
            if author.lower() != username.lower():
                continue
            topic = topics.get(raw.get("topic_id"), {})
            posts.append(
                UserPost(
                    id=_int(raw.get("id")),
                    topic_id=_int(raw.get("topic_id")),
                    topic_title=_str(topic.get("title")),
                    topic_slug=_str(topic.get("slug")),
                    category_id=_int(raw.get("category_id")),
                    post_number=_int(raw.get("post_number"), default=1) or 1,
                    content=_str(raw.get("blurb")) or _str(raw.get("cooked")),
                    created_at=_str(raw.get("created_at")),
                    like_count=_int(raw.get("like_count")),
                    reply_count=_int(raw.get("reply_count")),
                    username=author,
                )
            )
        return FetchResult.success(RationaleSearch(count=len(posts), posts=posts))

    async def lookup_username(self, username: str) -> FetchResult[UserRef | None]:
        """Resolve a username to its canonical form. Fallback: None."""
        result = await self._get(f"/users/{quote(username)}.json")
        if not result.ok:
            return FetchResult.failure(result.error, None)
        user = result.value.get("user") if isinstance(result.value, dict) else None
        if not isinstance(user, dict) or not _str(user.get("username")):
            return FetchResult.failure(_malformed("Missing user"), None)
        return FetchResult.success(
            UserRef(
                username=user["username"],
                name=_str(user.get("name")) or None,
                avatar_template=_str(user.get("avatar_template")),
            )
        )

    async def search_users(self, term: str, limit: int = 10) -> FetchResult[list[UserRef]]:
        """User autocomplete. Terms shorter than 2 characters return []."""
        if len(term) < 2:
            return FetchResult.success([])
        result = await self._get("/users/search/users.json", params={"term": term, "limit": limit})
        if not result.ok:
            return FetchResult.failure(result.error, [])
        users = result.value.get("users") if isinstance(result.value, dict) else None
        if not isinstance(users, list):
            return FetchResult.failure(_malformed("Missing users"), [])
        return FetchResult.success(
            [
                UserRef(
                    username=u["username"],
                    name=_str(u.get("name")) or None,
                    avatar_template=_str(u.get("avatar_template")),
                )
                for u in users
                if isinstance(u, dict) and _str(u.get("username"))
            ]
        )

    # Capabilities

    async def _probe(self, path: str, params: dict[str, Any] | None = None) -> bool:
        return (await self._get(path, params)).ok

    async def detect_capabilities(self) -> TenantCapabilities:
        """
        Probe which authenticated operations this credential may perform.

        Each probe is independent; a failure only clears its own flag.
        """
        test_user = self._credentials.api_username or "system"

        can_view_posts = await self._probe("/posts.json", {"username": test_user, "limit": 1})
        if not can_view_posts:
            can_view_posts = await self._probe(
                "/user_actions.json",
                {"username": test_user, "filter": POST_ACTION_FILTER, "limit": 1},
            )

        capabilities = TenantCapabilities(
            can_list_users=await self._probe(
                "/admin/users/list/active.json", {"page": 0, "per_page": 1}
            ),
            can_view_user_stats=await self._probe(f"/users/{quote(test_user)}.json"),
            can_view_user_posts=can_view_posts,
            can_search_posts=await self._probe("/search.json", {"q": "test", "page": 1}),
            tested_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Capabilities detected",
            forum=self._base_url,
            **capabilities.model_dump(exclude={"tested_at"}),
        )
        return capabilities
