"""
Contributor directory sync.

Pages through a tenant forum's ranked directory, ranks each member within
the synced cohort and merges the counters into the member table as
directory-only rows.

Percentiles are relative to the synced cohort (at most ``max_members``
users), not to the forum's whole population. ``total_forum`` on the result
carries the origin-reported member count so consumers can see how far the
two diverge.
"""

import time
from bisect import bisect_left
from collections.abc import Sequence

import structlog

from forum_tracker.members.client import ForumAPIClient
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.schemas import (
    ContributorSyncResult,
    DirectoryItem,
    MemberError,
    MemberPercentiles,
    MemberUpdate,
    Tenant,
)
from forum_tracker.observability.metrics import get_metrics
from forum_tracker.storage.database import DB_ERRORS

logger = structlog.get_logger(__name__)

# Directory fields that get a cohort percentile
METRICS = ("post_count", "likes_received", "days_visited", "topics_entered")

# Directory pages are 50 rows; guards against an origin that ignores `page`
MAX_PAGES = 50


def compute_percentiles(items: Sequence[DirectoryItem]) -> dict[str, MemberPercentiles]:
    """
    Cohort percentile per member and metric.

    A member's rank is the number of cohort members with a strictly lower
    value, so ties share the lowest rank. Percentile is
    ``min(99, floor(100 * rank / N))``.

    Example:
        post counts [0, 2, 5, 5, 10] -> [0, 20, 40, 40, 80]
    """
    size = len(items)
    if size == 0:
        return {}

    sorted_values = {
        metric: sorted(getattr(item, metric) for item in items) for metric in METRICS
    }
    result = {}
    for item in items:
        ranks = {
            metric: min(99, 100 * bisect_left(sorted_values[metric], getattr(item, metric)) // size)
            for metric in METRICS
        }
        result[item.username] = MemberPercentiles(**ranks)
    return result


class ContributorSync:
    """
    Bulk sync of a tenant's forum directory into the member table.

    Members created here are directory-only (``is_tracked=False``); an
    already tracked member stays tracked.
    """

    def __init__(self, repository: MemberRepository, max_members: int = 200):
        self._repository = repository
        self._max_members = max_members

    async def _fetch_cohort(
        self,
        client: ForumAPIClient,
        period: str,
        limit: int,
    ) -> tuple[list[DirectoryItem], int, str | None]:
        """
        Page the directory for one period.

        Returns (items, origin-reported total, first error). Items fetched
        before an error are kept.
        """
        items: dict[str, DirectoryItem] = {}
        total = 0
        for page in range(MAX_PAGES):
            result = await client.fetch_directory_page(period=period, page=page)
            if not result.ok:
                return list(items.values()), total, str(result.error)

            directory = result.value
            total = max(total, directory.total_count)
            before = len(items)
            for item in directory.items:
                items.setdefault(item.username, item)
            if len(items) == before:
                break
            if len(items) >= limit or (total and len(items) >= total):
                break

        return list(items.values())[:limit], total, None

    async def sync(self, tenant: Tenant, client: ForumAPIClient) -> ContributorSyncResult:
        """
        Sync the all-time directory (plus monthly counters when available).

        An all-time page failure ends paging with what was fetched so far; a
        monthly failure only leaves the monthly columns untouched. Per-member
        write failures are collected, not raised.
        """
        start = time.monotonic()
        log = logger.bind(tenant=tenant.slug)
        limit = tenant.config.max_contributors or self._max_members

        all_time, total_forum, error = await self._fetch_cohort(client, "all", limit)
        result = ContributorSyncResult(
            tenant_slug=tenant.slug,
            fetched=len(all_time),
            total_forum=total_forum,
        )
        if error:
            log.warning("Directory fetch incomplete", error=error, fetched=len(all_time))
            result.errors.append(MemberError(username="*", error=error, stage="directory"))
        if not all_time:
            result.elapsed_seconds = time.monotonic() - start
            return result

        monthly_items, _, monthly_error = await self._fetch_cohort(client, "monthly", limit)
        if monthly_error:
            log.info("Monthly directory unavailable", error=monthly_error)
        monthly = {item.username: item for item in monthly_items}
        result.monthly_available = monthly_error is None and bool(monthly)

        percentiles = compute_percentiles(all_time)
        metrics = get_metrics()

        for item in all_time:
            month = monthly.get(item.username)
            rank = percentiles[item.username]
            update = MemberUpdate(
                username=item.username,
                display_name=item.name or item.username,
                is_tracked=False,
                avatar_template=item.avatar_template or None,
                directory_post_count=item.post_count,
                directory_topic_count=item.topic_count,
                directory_likes_received=item.likes_received,
                directory_likes_given=item.likes_given,
                directory_days_visited=item.days_visited,
                directory_posts_read=item.posts_read,
                directory_topics_entered=item.topics_entered,
                monthly_post_count=month.post_count if month else None,
                monthly_likes_received=month.likes_received if month else None,
                monthly_days_visited=month.days_visited if month else None,
                monthly_topics_entered=month.topics_entered if month else None,
                post_count_percentile=rank.post_count,
                likes_received_percentile=rank.likes_received,
                days_visited_percentile=rank.days_visited,
                topics_entered_percentile=rank.topics_entered,
            )
            try:
                await self._repository.upsert_member(tenant.id, update)
                result.synced += 1
            except DB_ERRORS as e:
                log.warning("Member upsert failed", username=item.username, error=str(e))
                metrics.record_member_error("upsert")
                result.errors.append(
                    MemberError(username=item.username, error=str(e), stage="upsert")
                )

        result.elapsed_seconds = time.monotonic() - start
        log.info(
            "Contributor sync complete",
            synced=result.synced,
            fetched=result.fetched,
            total_forum=result.total_forum,
            monthly=result.monthly_available,
            errors=len(result.errors),
        )
        return result
