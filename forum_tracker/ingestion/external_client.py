"""
Topic fetchers for non-forum sources.

Every source is one GraphQL POST through the shared ForumHTTPClient, so
the per-domain rate limit and 429 handling apply. Responses are mapped
onto Topic so the cache and the topics endpoint treat them like forum
topics. As with OriginClient, failures come back as a FetchResult with
an empty list.
"""

import time
import zlib
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from forum_tracker.config.external_sources import ExternalSource, SourceType
from forum_tracker.ingestion.http_client import ForumHTTPClient
from forum_tracker.ingestion.schemas import (
    EXCERPT_MAX_LENGTH,
    FetchError,
    FetchErrorKind,
    FetchResult,
    Topic,
)
from forum_tracker.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

GRAPHQL_ENDPOINTS = {
    SourceType.EA_FORUM: "https://forum.effectivealtruism.org/graphql",
    SourceType.LESSWRONG: "https://www.lesswrong.com/graphql",
    SourceType.GITHUB: "https://api.github.com/graphql",
    SourceType.SNAPSHOT: "https://hub.snapshot.org/graphql",
}

FORUM_MAGNUM_QUERY = """
query RecentPosts($limit: Int) {
  posts(input: {terms: {view: "new", limit: $limit}}) {
    results {
      _id title slug postedAt modifiedAt baseScore voteCount commentCount url
      tags { name }
      user { displayName slug }
      contents { plaintextMainText }
    }
  }
}
"""

GITHUB_QUERY = """
query RecentDiscussions($owner: String!, $name: String!, $first: Int!) {
  repository(owner: $owner, name: $name) {
    discussions(first: $first, orderBy: {field: UPDATED_AT, direction: DESC}) {
      nodes {
        id databaseId number title url createdAt updatedAt
        author { login }
        category { name }
        comments { totalCount }
        reactions { totalCount }
        upvoteCount bodyText
        labels(first: 5) { nodes { name } }
        locked closed isAnswered
      }
    }
  }
}
"""

SNAPSHOT_QUERY = """
query Proposals($space: String!, $first: Int!) {
  proposals(
    first: $first, skip: 0,
    where: {space: $space, state: "all"},
    orderBy: "created", orderDirection: desc
  ) {
    id title body choices start end state author
    scores scores_total votes
    space { id name }
  }
}
"""


def stable_id(value: str) -> int:
    """Positive 31-bit topic id for sources whose ids are strings."""
    return zlib.crc32(value.encode("utf-8")) & 0x7FFFFFFF


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _truncate(text: str, limit: int = EXCERPT_MAX_LENGTH) -> str | None:
    text = " ".join(text.split())
    if not text:
        return None
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def _from_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def short_address(address: str) -> str:
    """``0x1234…abcd`` form of a wallet address."""
    if len(address) <= 12:
        return address
    return f"{address[:6]}…{address[-4:]}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExternalSourceClient:
    """
    Fetches recent items from an ExternalSource.

    GitHub sources need a token; without one ``can_fetch`` is False and
    the refresh loop skips them. Snapshot accepts an optional API key.

    Example:
        client = ExternalSourceClient(http, github_token=settings.github_token)
        result = await client.fetch(source)
    """

    def __init__(
        self,
        http: ForumHTTPClient,
        github_token: str | None = None,
        snapshot_api_key: str | None = None,
        limit: int = 30,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._http = http
        self._github_token = github_token
        self._snapshot_api_key = snapshot_api_key
        self.limit = limit
        self.clock = clock

    def can_fetch(self, source: ExternalSource) -> bool:
        if source.source_type == SourceType.GITHUB:
            return bool(self._github_token) and bool(source.repo_ref)
        if source.source_type == SourceType.SNAPSHOT:
            return bool(source.space)
        return True

    async def fetch(self, source: ExternalSource) -> FetchResult[list[Topic]]:
        """
        Fetch the most recent items of ``source``.

        Returns:
            FetchResult whose value is the mapped topics, or an empty list
            with the error when the request, the GraphQL call or the parse
            failed
        """
        start = time.monotonic()
        if not self.can_fetch(source):
            result: FetchResult[list[Topic]] = FetchResult.failure(
                FetchError(FetchErrorKind.MALFORMED, f"Source {source.id} is not configured"),
                [],
            )
        elif source.source_type == SourceType.GITHUB:
            result = await self._fetch_github(source)
        elif source.source_type == SourceType.SNAPSHOT:
            result = await self._fetch_snapshot(source)
        else:
            result = await self._fetch_forum_magnum(source)
        latency = time.monotonic() - start

        metrics = get_metrics()
        if result.error is not None:
            logger.warning(
                "External source fetch failed",
                source=source.key,
                kind=result.error.kind.value,
                error=str(result.error),
            )
            metrics.record_fetch(source.key, result.error.kind.value, latency)
        else:
            metrics.record_fetch(source.key, "ok", latency)
            logger.debug("External source fetched", source=source.key, topics=len(result.value))
        return result

    async def _graphql(
        self,
        source: ExternalSource,
        query: str,
        variables: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> FetchResult[dict[str, Any]]:
        endpoint = GRAPHQL_ENDPOINTS[source.source_type]
        response = await self._http.post_json(
            endpoint,
            {"query": query, "variables": variables},
            headers=headers,
        )
        if response.error is not None:
            return FetchResult.failure(response.error, {})

        payload = response.value
        if not isinstance(payload, dict):
            return FetchResult.failure(
                FetchError(FetchErrorKind.MALFORMED, "GraphQL response is not an object"), {}
            )
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            message = _str(first.get("message")) if isinstance(first, dict) else ""
            return FetchResult.failure(
                FetchError(FetchErrorKind.MALFORMED, message or "GraphQL error"), {}
            )
        data = payload.get("data")
        if not isinstance(data, dict):
            return FetchResult.failure(
                FetchError(FetchErrorKind.MALFORMED, "GraphQL response has no data"), {}
            )
        return FetchResult.success(data)

    async def _fetch_forum_magnum(self, source: ExternalSource) -> FetchResult[list[Topic]]:
        response = await self._graphql(source, FORUM_MAGNUM_QUERY, {"limit": self.limit})
        if response.error is not None:
            return FetchResult.failure(response.error, [])
        topics = parse_forum_magnum_posts(response.value, source)
        if topics is None:
            return FetchResult.failure(
                FetchError(FetchErrorKind.MALFORMED, "Missing posts.results"), []
            )
        return FetchResult.success(topics)

    async def _fetch_github(self, source: ExternalSource) -> FetchResult[list[Topic]]:
        owner, _, name = (source.repo_ref or "").partition("/")
        response = await self._graphql(
            source,
            GITHUB_QUERY,
            {"owner": owner, "name": name, "first": self.limit},
            headers={"Authorization": f"Bearer {self._github_token}"},
        )
        error = response.error
        if error is not None:
            if error.status_code == 401:
                error = FetchError(error.kind, "Invalid GITHUB_TOKEN", 401)
            elif error.status_code == 403:
                error = FetchError(error.kind, "GitHub rate limit exceeded or access forbidden", 403)
            return FetchResult.failure(error, [])
        topics = parse_github_discussions(response.value, source)
        if topics is None:
            return FetchResult.failure(
                FetchError(
                    FetchErrorKind.MALFORMED,
                    "Repository not found or discussions not enabled",
                ),
                [],
            )
        return FetchResult.success(topics)

    async def _fetch_snapshot(self, source: ExternalSource) -> FetchResult[list[Topic]]:
        headers = {"x-api-key": self._snapshot_api_key} if self._snapshot_api_key else None
        response = await self._graphql(
            source,
            SNAPSHOT_QUERY,
            {"space": source.space, "first": self.limit},
            headers=headers,
        )
        if response.error is not None:
            return FetchResult.failure(response.error, [])
        topics = parse_snapshot_proposals(response.value, source, self.clock())
        if topics is None:
            return FetchResult.failure(
                FetchError(FetchErrorKind.MALFORMED, "Missing proposals"), []
            )
        return FetchResult.success(topics)


def parse_forum_magnum_posts(data: dict[str, Any], source: ExternalSource) -> list[Topic] | None:
    """
    Map a ForumMagnum ``posts`` result onto topics.

    Comments plus the post itself make up ``posts_count``; votes stand in
    for likes.
    """
    posts = data.get("posts")
    results = posts.get("results") if isinstance(posts, dict) else None
    if not isinstance(results, list):
        return None

    topics: list[Topic] = []
    for raw in results:
        if not isinstance(raw, dict) or not _str(raw.get("_id")):
            continue
        post_id = raw["_id"]
        slug = _str(raw.get("slug"))
        comments = max(0, _int(raw.get("commentCount")))
        user = raw.get("user") if isinstance(raw.get("user"), dict) else {}
        contents = raw.get("contents") if isinstance(raw.get("contents"), dict) else {}
        tags = [_str(t.get("name")) for t in raw.get("tags") or [] if isinstance(t, dict)]
        topics.append(
            Topic(
                id=stable_id(post_id),
                origin_url=source.url,
                origin_name=source.name,
                title=_str(raw.get("title")),
                slug=slug,
                tags=[t for t in tags if t],
                posts_count=comments + 1,
                reply_count=comments,
                like_count=max(0, _int(raw.get("voteCount"))),
                created_at=raw.get("postedAt") or None,
                bumped_at=raw.get("modifiedAt") or raw.get("postedAt") or None,
                excerpt=_truncate(_str(contents.get("plaintextMainText"))),
                source_type=source.source_type.value,
                author_name=_str(user.get("displayName")) or "Anonymous",
                external_url=f"{source.url}/posts/{post_id}/{slug}",
            )
        )
    return topics


def parse_github_discussions(data: dict[str, Any], source: ExternalSource) -> list[Topic] | None:
    """
    Map ``repository.discussions`` onto topics.

    Returns None when the repository is missing, which GitHub reports as
    a null ``repository`` rather than an error.
    """
    repository = data.get("repository")
    if not isinstance(repository, dict):
        return None
    discussions = repository.get("discussions")
    nodes = discussions.get("nodes") if isinstance(discussions, dict) else None
    if not isinstance(nodes, list):
        return None

    topics: list[Topic] = []
    for raw in nodes:
        if not isinstance(raw, dict):
            continue
        topic_id = _int(raw.get("databaseId")) or stable_id(_str(raw.get("id")))
        if not topic_id:
            continue

        tags: list[str] = []
        category = raw.get("category")
        if isinstance(category, dict) and _str(category.get("name")):
            tags.append(category["name"])
        labels = raw.get("labels")
        for label in (labels.get("nodes") if isinstance(labels, dict) else None) or []:
            if isinstance(label, dict) and _str(label.get("name")):
                tags.append(label["name"])
        if raw.get("isAnswered"):
            tags.append("answered")

        comments = raw.get("comments")
        reactions = raw.get("reactions")
        comment_count = _int(comments.get("totalCount")) if isinstance(comments, dict) else 0
        reaction_count = _int(reactions.get("totalCount")) if isinstance(reactions, dict) else 0
        author = raw.get("author")
        topics.append(
            Topic(
                id=topic_id,
                origin_url=source.url,
                origin_name=source.name,
                title=_str(raw.get("title")),
                slug=str(_int(raw.get("number"))),
                tags=tags,
                posts_count=max(0, comment_count) + 1,
                reply_count=max(0, comment_count),
                like_count=max(0, _int(raw.get("upvoteCount")) + reaction_count),
                closed=bool(raw.get("closed")),
                archived=bool(raw.get("locked")),
                created_at=raw.get("createdAt") or None,
                bumped_at=raw.get("updatedAt") or raw.get("createdAt") or None,
                excerpt=_truncate(_str(raw.get("bodyText"))),
                source_type=source.source_type.value,
                author_name=(_str(author.get("login")) if isinstance(author, dict) else "") or "ghost",
                external_url=_str(raw.get("url")) or None,
            )
        )
    return topics


def _proposal_state(start: datetime | None, end: datetime | None, now: datetime) -> str:
    if start is not None and now < start:
        return "pending"
    if end is not None and now > end:
        return "closed"
    return "active"


def _vote_summary(choices: Any, scores: Any, total: float) -> str:
    if not isinstance(choices, list) or not isinstance(scores, list) or total <= 0:
        return ""
    parts = []
    for choice, score in zip(choices, scores):
        if isinstance(choice, str) and isinstance(score, (int, float)):
            parts.append(f"{choice}: {round(score / total * 100)}%")
    return " · ".join(parts)


def parse_snapshot_proposals(
    data: dict[str, Any],
    source: ExternalSource,
    now: datetime,
) -> list[Topic] | None:
    """
    Map Snapshot proposals onto topics.

    The voting window drives the state tag: pending before ``start``,
    closed after ``end``, active in between. Active proposals are pinned.
    """
    proposals = data.get("proposals")
    if not isinstance(proposals, list):
        return None

    topics: list[Topic] = []
    for raw in proposals:
        if not isinstance(raw, dict) or not _str(raw.get("id")):
            continue
        proposal_id = raw["id"]
        start = _from_timestamp(raw.get("start"))
        end = _from_timestamp(raw.get("end"))
        state = _proposal_state(start, end, now)
        total = raw.get("scores_total")
        total = float(total) if isinstance(total, (int, float)) else 0.0

        prefix = f"[{state.upper()}]"
        votes = _vote_summary(raw.get("choices"), raw.get("scores"), total)
        if votes:
            prefix = f"{prefix} {votes}"
        body = _truncate(_str(raw.get("body")), max(40, EXCERPT_MAX_LENGTH - len(prefix) - 1))
        space = source.space or ""
        topics.append(
            Topic(
                id=stable_id(proposal_id),
                origin_url=source.url,
                origin_name=source.name,
                title=_str(raw.get("title")),
                slug=proposal_id,
                tags=[state],
                posts_count=max(0, _int(raw.get("votes"))),
                reply_count=max(0, _int(raw.get("votes"))),
                like_count=max(0, round(total)),
                pinned=state == "active",
                closed=state == "closed",
                created_at=start,
                bumped_at=end,
                excerpt=f"{prefix} {body}" if body else prefix,
                source_type=source.source_type.value,
                author_name=short_address(_str(raw.get("author"))) or None,
                external_url=f"https://snapshot.org/#/{space}/proposal/{proposal_id}",
            )
        )
    return topics
