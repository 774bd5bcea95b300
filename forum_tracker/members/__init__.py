"""Tenant pipeline: directory sync, member merge and snapshots."""

from forum_tracker.members.client import ForumAPIClient, ForumCredentials
from forum_tracker.members.credentials import CredentialCipher, CredentialError
from forum_tracker.members.merge import coalesce, merge_member
from forum_tracker.members.refresh import TenantNotFoundError, TenantRefresher
from forum_tracker.members.repository import MemberRepository
from forum_tracker.members.schemas import (
    ContributorSyncResult,
    Member,
    MemberUpdate,
    Snapshot,
    Tenant,
    TenantCapabilities,
    TenantConfig,
    TenantRefreshResult,
)
from forum_tracker.members.sync import ContributorSync, compute_percentiles

__all__ = [
    "ContributorSync",
    "ContributorSyncResult",
    "CredentialCipher",
    "CredentialError",
    "ForumAPIClient",
    "ForumCredentials",
    "Member",
    "MemberRepository",
    "MemberUpdate",
    "Snapshot",
    "Tenant",
    "TenantCapabilities",
    "TenantConfig",
    "TenantNotFoundError",
    "TenantRefreshResult",
    "TenantRefresher",
    "coalesce",
    "compute_percentiles",
    "merge_member",
]
