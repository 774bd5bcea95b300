"""Tests for the member merge rules."""

import pytest

from forum_tracker.members.merge import (
    CURATED_FIELDS,
    MERGED_FIELDS,
    coalesce,
    is_empty,
    merge_member,
    new_member,
)
from forum_tracker.members.schemas import MemberUpdate


class TestCoalesce:
    @pytest.mark.parametrize("value", [None, "", [], ()])
    def test_empty_values_keep_existing(self, value):
        assert is_empty(value)
        assert coalesce(value, "kept") == "kept"

    @pytest.mark.parametrize("value", [0, False, "x", ["a"]])
    def test_non_empty_values_win(self, value):
        assert not is_empty(value)
        assert coalesce(value, "old") == value


class TestMergeMember:
    """Tests for merge_member."""

    def test_is_tracked_never_cleared(self, make_member):
        stored = make_member(is_tracked=True)

        merged = merge_member(stored, MemberUpdate(username="alice", is_tracked=False))

        assert merged.is_tracked is True

    def test_is_tracked_can_be_set(self, make_member):
        stored = make_member(is_tracked=False)

        merged = merge_member(stored, MemberUpdate(username="alice", is_tracked=True))

        assert merged.is_tracked is True

    def test_directory_sync_keeps_curated_fields(self, make_member):
        stored = make_member(
            wallet_address="0xabc",
            kyc_status="verified",
            notes="Council member",
            role="delegate",
            programs=["grants"],
            directory_post_count=10,
        )
        incoming = MemberUpdate(
            username="alice",
            directory_post_count=12,
            post_count_percentile=80,
        )

        merged = merge_member(stored, incoming)

        assert merged.wallet_address == "0xabc"
        assert merged.kyc_status == "verified"
        assert merged.notes == "Council member"
        assert merged.role == "delegate"
        assert merged.programs == ["grants"]
        assert merged.directory_post_count == 12
        assert merged.post_count_percentile == 80

    def test_curated_overwritten_by_non_empty(self, make_member):
        stored = make_member(wallet_address="0xabc", programs=["grants"])
        incoming = MemberUpdate(username="alice", wallet_address="0xdef", programs=["council"])

        merged = merge_member(stored, incoming)

        assert merged.wallet_address == "0xdef"
        assert merged.programs == ["council"]

    def test_empty_string_and_list_do_not_erase(self, make_member):
        stored = make_member(display_name="Alice A.", notes="keep", programs=["grants"])
        incoming = MemberUpdate(username="alice", display_name="", notes="", programs=[])

        merged = merge_member(stored, incoming)

        assert merged.display_name == "Alice A."
        assert merged.notes == "keep"
        assert merged.programs == ["grants"]

    def test_zero_counters_overwrite(self, make_member):
        stored = make_member(monthly_post_count=7)

        merged = merge_member(stored, MemberUpdate(username="alice", monthly_post_count=0))

        assert merged.monthly_post_count == 0

    def test_identity_preserved(self, make_member):
        stored = make_member(member_id=42)

        merged = merge_member(stored, MemberUpdate(username="alice", display_name="New"))

        assert merged.id == 42
        assert merged.tenant_id == 7
        assert merged.username == "alice"
        assert merged.display_name == "New"

    def test_input_not_mutated(self, make_member):
        stored = make_member(notes="before")

        merge_member(stored, MemberUpdate(username="alice", notes="after"))

        assert stored.notes == "before"


class TestNewMember:
    def test_defaults_display_name_to_username(self):
        member = new_member(7, MemberUpdate(username="bob"))

        assert member.display_name == "bob"
        assert member.is_tracked is False
        assert member.id is None

    def test_keeps_provided_fields(self):
        member = new_member(
            7, MemberUpdate(username="bob", display_name="Bob", is_tracked=True, votes_cast=3)
        )

        assert member.display_name == "Bob"
        assert member.is_tracked is True
        assert member.votes_cast == 3


def test_field_sets():
    assert "username" not in MERGED_FIELDS
    assert "is_tracked" not in MERGED_FIELDS
    assert set(CURATED_FIELDS) <= set(MERGED_FIELDS)
