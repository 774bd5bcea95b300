"""
Field-level merge of incoming member facts into a stored member.

Rules:
- ``is_tracked`` is a logical OR: automated syncs never clear it.
- Every other column coalesces to the stored value: an incoming ``None``,
  empty string or empty list never erases what is there. Admin-curated
  columns (``CURATED_FIELDS``) follow the same rule, so only a non-empty
  value overwrites them.

Merging is pure and independent of the storage layer.
"""

from dataclasses import fields, replace
from typing import Any, TypeVar

from forum_tracker.members.schemas import Member, MemberUpdate

T = TypeVar("T")

CURATED_FIELDS = ("wallet_address", "kyc_status", "notes", "role", "programs")

# Columns written from MemberUpdate, in table order
MERGED_FIELDS = tuple(
    f.name for f in fields(MemberUpdate) if f.name not in ("username", "is_tracked")
)


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == ()


def coalesce(incoming: T | None, existing: T) -> T:
    """Return ``incoming`` unless it is empty, else ``existing``."""
    return existing if is_empty(incoming) else incoming  # type: ignore[return-value]


def merge_member(existing: Member, incoming: MemberUpdate) -> Member:
    """
    Merge ``incoming`` into ``existing`` and return the merged member.

    Identity columns (id, tenant, username, timestamps) are kept from
    ``existing``.
    """
    changes: dict[str, Any] = {
        name: coalesce(getattr(incoming, name), getattr(existing, name))
        for name in MERGED_FIELDS
    }
    changes["is_tracked"] = existing.is_tracked or incoming.is_tracked
    return replace(existing, **changes)


def new_member(tenant_id: int, incoming: MemberUpdate) -> Member:
    """Build the first stored version of a member from incoming facts."""
    member = Member(tenant_id=tenant_id, username=incoming.username)
    member = merge_member(member, incoming)
    if not member.display_name:
        member.display_name = incoming.username
    return member
