"""
Tests for sync planning. No I/O: snapshots in, plans out.
"""

from __future__ import annotations

import pytest

from dotvault.files import fingerprint
from dotvault.models import SecretItem, SyncPolicy
from dotvault.plan import (
    Direction,
    ItemSnapshot,
    Operation,
    Resolution,
    SyncStatus,
    compute_sync_plan,
    derive_status,
)


def _item(name: str = "Git-Config", sync: SyncPolicy = SyncPolicy.ALWAYS, required: bool = False) -> SecretItem:
    return SecretItem(name=name, path=f"~/.{name.lower()}", sync=sync, required=required)


def _snap(local, remote, last=None, **item_kwargs) -> ItemSnapshot:
    last_hash = fingerprint(last) if last is not None else None
    return ItemSnapshot(_item(**item_kwargs), local, remote, last_hash)


def _only(plan):
    assert len(plan.actions) == 1
    return plan.actions[0]


class TestDeriveStatus:
    """Status from local/remote/last-synced hashes."""

    @pytest.mark.parametrize(
        "local, remote, last, expected",
        [
            ("a", "a", None, SyncStatus.IN_SYNC),
            ("a", "a", "z", SyncStatus.IN_SYNC),
            ("b", "a", "a", SyncStatus.LOCAL_NEWER),
            ("a", "b", "a", SyncStatus.REMOTE_NEWER),
            ("b", "c", "a", SyncStatus.CONFLICT),
            ("b", "c", None, SyncStatus.CONFLICT),
            (None, "a", "a", SyncStatus.MISSING),
            ("a", None, "a", SyncStatus.MISSING),
        ],
    )
    def test_table(self, local, remote, last, expected):
        assert derive_status(local, remote, last) == expected


class TestPullPlan:
    """Remote -> local decisions."""

    def test_in_sync_skips(self):
        action = _only(compute_sync_plan([_snap("A\n", "A")], Direction.PULL))
        assert action.operation == Operation.SKIP
        assert action.status == SyncStatus.IN_SYNC

    def test_local_missing_creates(self):
        action = _only(compute_sync_plan([_snap(None, "Host x\n")], Direction.PULL))
        assert action.operation == Operation.CREATE
        assert action.content == "Host x\n"
        assert not action.requires_confirmation

    def test_remote_missing_skips_and_notes_required(self):
        action = _only(compute_sync_plan([_snap("A", None, required=True)], Direction.PULL))
        assert action.operation == Operation.SKIP
        assert "required" in action.reason

    def test_remote_newer_needs_confirmation(self):
        action = _only(compute_sync_plan([_snap("A", "B", last="A")], Direction.PULL))
        assert action.operation == Operation.UPDATE
        assert action.requires_confirmation

    def test_remote_newer_forced_needs_no_confirmation(self):
        action = _only(compute_sync_plan([_snap("A", "B", last="A")], Direction.PULL, force=True))
        assert action.operation == Operation.UPDATE
        assert not action.requires_confirmation

    def test_local_newer_protected_unless_forced(self):
        snap = _snap("B", "A", last="A")
        assert _only(compute_sync_plan([snap], Direction.PULL)).operation == Operation.SKIP
        assert _only(compute_sync_plan([snap], Direction.PULL, force=True)).operation == Operation.UPDATE

    def test_conflict_never_auto_resolved(self):
        action = _only(compute_sync_plan([_snap("B", "C", last="A")], Direction.PULL))
        assert action.operation == Operation.CONFLICT
        assert action.content is None

    @pytest.mark.parametrize(
        "resolution, operation",
        [
            (Resolution.REMOTE, Operation.UPDATE),
            (Resolution.LOCAL, Operation.SKIP),
            (Resolution.SKIP, Operation.SKIP),
        ],
    )
    def test_conflict_resolutions(self, resolution, operation):
        plan = compute_sync_plan(
            [_snap("B", "C", last="A")], Direction.PULL, resolutions={"Git-Config": resolution}
        )
        assert _only(plan).operation == operation

    def test_force_chooses_remote_on_conflict(self):
        action = _only(compute_sync_plan([_snap("B", "C")], Direction.PULL, force=True))
        assert action.operation == Operation.UPDATE
        assert action.content == "C"


class TestPushPlan:
    """Local -> remote decisions and eligibility."""

    def test_remote_missing_creates(self):
        action = _only(compute_sync_plan([_snap("[default]\n", None)], Direction.PUSH))
        assert action.operation == Operation.CREATE
        assert action.content == "[default]\n"

    def test_local_missing_skips(self):
        assert _only(compute_sync_plan([_snap(None, "A")], Direction.PUSH)).operation == Operation.SKIP

    def test_local_newer_updates(self):
        action = _only(compute_sync_plan([_snap("B", "A", last="A")], Direction.PUSH))
        assert action.operation == Operation.UPDATE

    def test_remote_newer_protected_unless_forced(self):
        snap = _snap("A", "B", last="A")
        assert _only(compute_sync_plan([snap], Direction.PUSH)).operation == Operation.SKIP
        assert _only(compute_sync_plan([snap], Direction.PUSH, force=True)).operation == Operation.UPDATE

    def test_force_chooses_local_on_conflict(self):
        action = _only(compute_sync_plan([_snap("B", "C")], Direction.PUSH, force=True))
        assert action.operation == Operation.UPDATE
        assert action.content == "B"

    def test_manual_excluded_from_all(self):
        plan = compute_sync_plan([_snap("A", None, sync=SyncPolicy.MANUAL)], Direction.PUSH)
        assert plan.actions == ()

    def test_manual_included_when_named(self):
        plan = compute_sync_plan(
            [_snap("A", None, sync=SyncPolicy.MANUAL)], Direction.PUSH, selected=["Git-Config"]
        )
        assert _only(plan).operation == Operation.CREATE

    def test_never_excluded_even_when_named(self):
        plan = compute_sync_plan(
            [_snap("A", None, sync=SyncPolicy.NEVER)], Direction.PUSH, selected=["Git-Config"]
        )
        action = _only(plan)
        assert action.operation == Operation.SKIP
        assert "never" in action.reason

    def test_unselected_items_left_out(self):
        snaps = [_snap("A", None, name="One"), _snap("A", None, name="Two")]
        plan = compute_sync_plan(snaps, Direction.PUSH, selected=["Two"])
        assert [a.name for a in plan.actions] == ["Two"]


class TestPlanShape:
    def test_sorted_and_immutable(self):
        snaps = [_snap(None, "x", name="Zeta"), _snap(None, "x", name="Alpha")]
        plan = compute_sync_plan(snaps, Direction.PULL)
        assert [a.name for a in plan.actions] == ["Alpha", "Zeta"]
        with pytest.raises(AttributeError):
            plan.actions = ()

    def test_inputs_untouched(self):
        snap = _snap("B", "C", last="A")
        before = (snap.local_content, snap.remote_content, snap.last_synced_hash)
        compute_sync_plan([snap], Direction.PULL, force=True)
        assert (snap.local_content, snap.remote_content, snap.last_synced_hash) == before

    def test_content_hidden_from_repr(self):
        action = _only(compute_sync_plan([_snap(None, "hunter2")], Direction.PULL))
        assert "hunter2" not in repr(action)

    def test_noop_plan(self):
        plan = compute_sync_plan([_snap("A", "A")], Direction.PULL)
        assert plan.is_noop
        assert plan.get("Git-Config").reason == "in sync"
