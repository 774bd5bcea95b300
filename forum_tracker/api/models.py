"""
Request and response models for the forum-tracker API.

Most responses are validated straight from the service dataclasses
(``from_attributes``), so field names match the Python types.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class _FromAttributes(BaseModel):
    model_config = {"from_attributes": True}


class ComponentHealth(BaseModel):
    """Health of one infrastructure component."""

    status: str = Field(..., description="healthy, unhealthy or not_configured")
    latency_ms: float | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = Field(..., description="Overall status: healthy, degraded, or unhealthy")
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    refresh_in_progress: bool = False
    version: str


class OriginHealthModel(_FromAttributes):
    name: str
    url: str
    status: str
    topic_count: int = 0
    last_fetched: datetime | None = None
    error: str | None = None


class CacheStatsModel(_FromAttributes):
    total_origins: int
    successful: int
    failed: int
    total_topics: int


class RefreshSummaryModel(_FromAttributes):
    outcome: str
    origins: int = 0
    successful: int = 0
    failed: int = 0
    total_topics: int = 0
    errors: dict[str, str] = Field(default_factory=dict)
    started_at: datetime | None = None
    duration_seconds: float = 0.0
    external_sources: int = 0
    external_failed: int = 0


class RefreshStatusModel(_FromAttributes):
    in_progress: bool
    started_at: datetime | None = None
    last_refresh: datetime | None = None
    last_summary: RefreshSummaryModel | None = None


class CacheStatusResponse(BaseModel):
    stats: CacheStatsModel
    refresh: RefreshStatusModel
    origins: list[OriginHealthModel] | None = Field(
        default=None,
        description="Per-origin health (only with details=true)",
    )


class RefreshTriggerResponse(BaseModel):
    status: str = Field(..., description="started, in_progress, or the refresh outcome")
    summary: RefreshSummaryModel | None = None


class CacheClearResponse(BaseModel):
    cleared: bool = True


class TopicsResponse(BaseModel):
    topics: list[dict[str, Any]]
    count: int
    origins: list[str]


# Tenant pipeline


class MemberErrorModel(_FromAttributes):
    username: str
    error: str
    stage: str


class ContributorSyncResponse(_FromAttributes):
    tenant_slug: str
    synced: int
    fetched: int
    total_forum: int
    monthly_available: bool
    errors: list[MemberErrorModel] = Field(default_factory=list)
    elapsed_seconds: float


class TenantRefreshResponse(_FromAttributes):
    tenant_slug: str
    members_refreshed: int
    snapshots_created: int
    errors: list[MemberErrorModel] = Field(default_factory=list)
    contributor_sync: ContributorSyncResponse | None = None
    elapsed_seconds: float
    timestamp: datetime | None = None


class TenantSweepResponse(BaseModel):
    checked: int
    refreshed: list[TenantRefreshResponse]
    skipped: list[str]
    failed: dict[str, str]


class CapabilitiesResponse(_FromAttributes):
    can_list_users: bool | None = None
    can_view_user_stats: bool | None = None
    can_view_user_posts: bool | None = None
    can_search_posts: bool | None = None
    tested_at: datetime | None = None


class MemberModel(_FromAttributes):
    id: int | None
    username: str
    display_name: str
    is_tracked: bool
    wallet_address: str | None = None
    kyc_status: str | None = None
    verified_status: bool | None = None
    programs: list[str] = Field(default_factory=list)
    role: str | None = None
    avatar_template: str | None = None
    directory_post_count: int | None = None
    directory_likes_received: int | None = None
    directory_days_visited: int | None = None
    directory_topics_entered: int | None = None
    monthly_post_count: int | None = None
    post_count_percentile: int | None = None
    likes_received_percentile: int | None = None
    days_visited_percentile: int | None = None
    topics_entered_percentile: int | None = None
    updated_at: datetime | None = None


class TrackMemberRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=60)


class SnapshotModel(_FromAttributes):
    id: int
    member_id: int
    stats: dict[str, Any]
    rationale_count: int
    recent_posts: list[dict[str, Any]]
    captured_at: datetime | None = None


class SnapshotHistoryResponse(BaseModel):
    username: str
    snapshots: list[SnapshotModel]


class MembersResponse(BaseModel):
    members: list[MemberModel]
    total: int
    latest_snapshots: list[SnapshotModel] = Field(default_factory=list)


class UserRefModel(_FromAttributes):
    username: str
    name: str | None = None
    avatar_template: str = ""


class UserSearchResponse(BaseModel):
    users: list[UserRefModel]
