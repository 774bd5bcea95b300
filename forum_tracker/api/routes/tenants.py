"""
Tenant pipeline endpoints: refresh triggers, capability probe and member
management. All routes require the refresh secret.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from forum_tracker.api.auth import verify_refresh_secret
from forum_tracker.api.dependencies import (
    get_member_repository,
    get_tenant_refresher,
    get_tenant_sweep,
)
from forum_tracker.api.models import (
    CapabilitiesResponse,
    ContributorSyncResponse,
    MemberModel,
    MembersResponse,
    SnapshotHistoryResponse,
    SnapshotModel,
    TenantRefreshResponse,
    TenantSweepResponse,
    TrackMemberRequest,
    UserRefModel,
    UserSearchResponse,
)
from forum_tracker.members.credentials import CredentialError
from forum_tracker.members.refresh import TenantNotFoundError, TenantRefresher
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.schemas import Tenant
from forum_tracker.scheduler.tenants import TenantSweep

router = APIRouter(dependencies=[Depends(verify_refresh_secret)])
logger = structlog.get_logger(__name__)


def _credential_failure(slug: str, error: CredentialError) -> HTTPException:
    logger.error("Tenant credential unusable", tenant=slug, error=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Credential error: {error}",
    )


async def _get_tenant(slug: str, repository: MemberRepository) -> Tenant:
    tenant = await repository.get_tenant_by_slug(slug)
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant not found: {slug}")
    return tenant


@router.post(
    "/tenants/{slug}/refresh",
    response_model=TenantRefreshResponse,
    summary="Refresh one tenant now",
)
async def refresh_tenant(
    slug: str,
    refresher: TenantRefresher = Depends(get_tenant_refresher),
) -> TenantRefreshResponse:
    try:
        result = await refresher.refresh_tenant(slug)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CredentialError as e:
        raise _credential_failure(slug, e) from e
    return TenantRefreshResponse.model_validate(result)


@router.post(
    "/tenants/{slug}/sync-contributors",
    response_model=ContributorSyncResponse,
    summary="Sync the tenant forum's contributor directory",
)
async def sync_contributors(
    slug: str,
    refresher: TenantRefresher = Depends(get_tenant_refresher),
) -> ContributorSyncResponse:
    try:
        result = await refresher.sync_contributors(slug)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CredentialError as e:
        raise _credential_failure(slug, e) from e
    return ContributorSyncResponse.model_validate(result)


@router.post(
    "/tenants/{slug}/probe",
    response_model=CapabilitiesResponse,
    summary="Probe which API operations the tenant credential allows",
)
async def probe_tenant(
    slug: str,
    refresher: TenantRefresher = Depends(get_tenant_refresher),
) -> CapabilitiesResponse:
    try:
        capabilities = await refresher.probe_capabilities(slug)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CredentialError as e:
        raise _credential_failure(slug, e) from e
    return CapabilitiesResponse.model_validate(capabilities)


@router.get(
    "/cron/tenants",
    response_model=TenantSweepResponse,
    summary="Refresh every tenant that is due (cron entry point)",
)
async def cron_tenants(sweep: TenantSweep = Depends(get_tenant_sweep)) -> TenantSweepResponse:
    result = await sweep.run()
    return TenantSweepResponse(
        checked=result.checked,
        refreshed=[TenantRefreshResponse.model_validate(r) for r in result.refreshed],
        skipped=result.skipped,
        failed=result.failed,
    )


# Members


@router.get(
    "/tenants/{slug}/members",
    response_model=MembersResponse,
    summary="List a tenant's members",
)
async def list_members(
    slug: str,
    tracked: bool = Query(default=False, description="Only tracked members"),
    snapshots: bool = Query(default=False, description="Include each member's latest snapshot"),
    repository: MemberRepository = Depends(get_member_repository),
) -> MembersResponse:
    tenant = await _get_tenant(slug, repository)
    members = await repository.list_members(tenant.id, tracked_only=tracked)
    latest = await repository.get_latest_snapshots(tenant.id) if snapshots else {}
    return MembersResponse(
        members=[MemberModel.model_validate(m) for m in members],
        total=len(members),
        latest_snapshots=[
            SnapshotModel.model_validate(latest[m.id]) for m in members if m.id in latest
        ],
    )


@router.post(
    "/tenants/{slug}/members",
    response_model=MemberModel,
    status_code=status.HTTP_201_CREATED,
    summary="Start tracking a forum user",
)
async def track_member(
    slug: str,
    request: TrackMemberRequest,
    refresher: TenantRefresher = Depends(get_tenant_refresher),
) -> MemberModel:
    try:
        member = await refresher.track_member(slug, request.username)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CredentialError as e:
        raise _credential_failure(slug, e) from e
    if member is None:
        raise HTTPException(
            status_code=404,
            detail=f"User not found on forum: {request.username}",
        )
    return MemberModel.model_validate(member)


@router.delete(
    "/tenants/{slug}/members/{username}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Stop tracking a member",
)
async def untrack_member(
    slug: str,
    username: str,
    purge: bool = Query(default=False, description="Delete the member and its snapshots"),
    repository: MemberRepository = Depends(get_member_repository),
) -> None:
    tenant = await _get_tenant(slug, repository)
    remove = repository.delete_member if purge else repository.untrack_member
    if not await remove(tenant.id, username):
        raise HTTPException(status_code=404, detail=f"Member not found: {username}")


@router.get(
    "/tenants/{slug}/members/{username}/snapshots",
    response_model=SnapshotHistoryResponse,
    summary="Snapshot history of a member, newest first",
)
async def snapshot_history(
    slug: str,
    username: str,
    limit: int = Query(default=30, ge=1, le=365),
    repository: MemberRepository = Depends(get_member_repository),
) -> SnapshotHistoryResponse:
    tenant = await _get_tenant(slug, repository)
    member = await repository.get_member(tenant.id, username)
    if member is None or member.id is None:
        raise HTTPException(status_code=404, detail=f"Member not found: {username}")
    snapshots = await repository.get_snapshot_history(member.id, limit=limit)
    return SnapshotHistoryResponse(
        username=member.username,
        snapshots=[SnapshotModel.model_validate(s) for s in snapshots],
    )


@router.get(
    "/tenants/{slug}/users",
    response_model=UserSearchResponse,
    summary="Search forum users (autocomplete)",
)
async def search_users(
    slug: str,
    term: str = Query(..., max_length=60),
    limit: int = Query(default=10, ge=1, le=50),
    refresher: TenantRefresher = Depends(get_tenant_refresher),
) -> UserSearchResponse:
    try:
        users = await refresher.search_users(slug, term, limit=limit)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CredentialError as e:
        raise _credential_failure(slug, e) from e
    return UserSearchResponse(users=[UserRefModel.model_validate(u) for u in users])
