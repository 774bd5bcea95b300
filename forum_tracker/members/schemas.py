"""
Data models for tenants, members and snapshots.

A tenant is an organization tracking one forum with its own API
credential. Members belong to a tenant and are either tracked (curated,
refreshed in detail) or directory-only (bulk synced summary counters).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_RATIONALE_PATTERN = "rationale"


class TenantConfig(BaseModel):
    """Per-tenant pipeline settings, stored as JSONB."""

    model_config = {"extra": "ignore"}

    rationale_search_pattern: str | None = None
    rationale_category_ids: list[int] = Field(default_factory=list)
    rationale_tags: list[str] = Field(default_factory=list)
    program_labels: list[str] = Field(default_factory=list)
    refresh_interval_hours: float | None = Field(default=None, gt=0)
    sync_contributors: bool = False
    max_contributors: int | None = Field(default=None, ge=1)


class TenantCapabilities(BaseModel):
    """Which authenticated API operations succeeded during the last probe."""

    model_config = {"extra": "ignore"}

    can_list_users: bool | None = None
    can_view_user_stats: bool | None = None
    can_view_user_posts: bool | None = None
    can_search_posts: bool | None = None
    tested_at: datetime | None = None


@dataclass
class Tenant:
    """A consumer organization tracking one origin."""

    id: int
    slug: str
    name: str
    forum_url: str
    api_username: str
    encrypted_api_key: str
    config: TenantConfig = field(default_factory=TenantConfig)
    capabilities: TenantCapabilities = field(default_factory=TenantCapabilities)
    is_active: bool = True
    last_refresh_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Member:
    """A forum user known to a tenant (one row of ``delegates``)."""

    tenant_id: int
    username: str
    display_name: str = ""
    id: int | None = None
    is_tracked: bool = False

    # Admin-curated
    wallet_address: str | None = None
    kyc_status: str | None = None
    verified_status: bool | None = None
    programs: list[str] = field(default_factory=list)
    role: str | None = None
    notes: str | None = None
    is_active: bool | None = True

    # On-chain (entered manually)
    votes_cast: int | None = None
    votes_total: int | None = None
    voting_power: str | None = None

    avatar_template: str | None = None

    # All-time directory counters
    directory_post_count: int | None = None
    directory_topic_count: int | None = None
    directory_likes_received: int | None = None
    directory_likes_given: int | None = None
    directory_days_visited: int | None = None
    directory_posts_read: int | None = None
    directory_topics_entered: int | None = None

    # Trailing-month directory counters
    monthly_post_count: int | None = None
    monthly_likes_received: int | None = None
    monthly_days_visited: int | None = None
    monthly_topics_entered: int | None = None

    # Cohort-relative percentiles (0-99)
    post_count_percentile: int | None = None
    likes_received_percentile: int | None = None
    days_visited_percentile: int | None = None
    topics_entered_percentile: int | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MemberUpdate:
    """
    Incoming facts about a member.

    ``None`` (or an empty string/list) means "not provided"; merging never
    lets such a value erase what is stored.
    """

    username: str
    display_name: str | None = None
    is_tracked: bool = False

    wallet_address: str | None = None
    kyc_status: str | None = None
    verified_status: bool | None = None
    programs: list[str] | None = None
    role: str | None = None
    notes: str | None = None
    is_active: bool | None = None

    votes_cast: int | None = None
    votes_total: int | None = None
    voting_power: str | None = None

    avatar_template: str | None = None

    directory_post_count: int | None = None
    directory_topic_count: int | None = None
    directory_likes_received: int | None = None
    directory_likes_given: int | None = None
    directory_days_visited: int | None = None
    directory_posts_read: int | None = None
    directory_topics_entered: int | None = None

    monthly_post_count: int | None = None
    monthly_likes_received: int | None = None
    monthly_days_visited: int | None = None
    monthly_topics_entered: int | None = None

    post_count_percentile: int | None = None
    likes_received_percentile: int | None = None
    days_visited_percentile: int | None = None
    topics_entered_percentile: int | None = None


@dataclass
class UserRef:
    """Lightweight user identity returned by lookups and user search."""

    username: str
    name: str | None = None
    avatar_template: str = ""


@dataclass
class DirectoryItem:
    """One ranked entry of ``directory_items.json``."""

    username: str
    name: str | None = None
    avatar_template: str = ""
    post_count: int = 0
    topic_count: int = 0
    likes_received: int = 0
    likes_given: int = 0
    days_visited: int = 0
    posts_read: int = 0
    topics_entered: int = 0


@dataclass
class DirectoryPage:
    items: list[DirectoryItem]
    total_count: int = 0


@dataclass
class UserStats:
    """Detailed user statistics (profile merged with the summary endpoint)."""

    username: str
    name: str | None = None
    avatar_template: str = ""
    trust_level: int = 0
    topic_count: int = 0
    post_count: int = 0
    topics_entered: int = 0
    posts_read: int = 0
    days_visited: int = 0
    likes_given: int = 0
    likes_received: int = 0
    last_seen_at: str | None = None
    last_posted_at: str | None = None
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UserPost:
    """A post or topic created by a user."""

    id: int
    topic_id: int
    topic_title: str = ""
    topic_slug: str = ""
    category_id: int = 0
    post_number: int = 1
    content: str = ""
    created_at: str = ""
    like_count: int = 0
    reply_count: int = 0
    username: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RationaleSearch:
    """Posts by a user that match the tenant's rationale query."""

    count: int = 0
    posts: list[UserPost] = field(default_factory=list)


@dataclass
class Snapshot:
    """Immutable capture of one member's stats at one refresh."""

    id: int
    member_id: int
    tenant_id: int
    stats: dict[str, Any]
    rationale_count: int = 0
    recent_posts: list[dict[str, Any]] = field(default_factory=list)
    captured_at: datetime | None = None


@dataclass
class MemberPercentiles:
    """Cohort-relative percentile per directory metric."""

    post_count: int = 0
    likes_received: int = 0
    days_visited: int = 0
    topics_entered: int = 0


@dataclass
class MemberError:
    """A per-member failure collected during sync or refresh."""

    username: str
    error: str
    stage: str = "stats"


@dataclass
class ContributorSyncResult:
    """Summary of one directory sync."""

    tenant_slug: str
    synced: int = 0
    fetched: int = 0
    # Reported by the origin; percentiles are relative to ``fetched`` instead
    total_forum: int = 0
    monthly_available: bool = False
    errors: list[MemberError] = field(default_factory=list)
    elapsed_seconds: float = 0.0


@dataclass
class TenantRefreshResult:
    """Summary of one tenant refresh."""

    tenant_slug: str
    members_refreshed: int = 0
    snapshots_created: int = 0
    errors: list[MemberError] = field(default_factory=list)
    contributor_sync: ContributorSyncResult | None = None
    elapsed_seconds: float = 0.0
    timestamp: datetime | None = None
