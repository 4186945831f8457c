"""
Sync planning -- decide what pull/push would do, without doing it.

Everything here is pure: snapshots in, an immutable SyncPlan out.
The engine applies plans; front ends can show them, ask about
conflicts, and recompute with the user's resolutions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional

from .files import fingerprint
from .models import SecretItem, SyncPolicy


class SyncStatus(str, Enum):
    """Relationship between local, remote and last-synced content."""

    IN_SYNC = "in_sync"
    LOCAL_NEWER = "local_newer"
    REMOTE_NEWER = "remote_newer"
    CONFLICT = "conflict"
    MISSING = "missing"


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    CONFLICT = "conflict"


class Direction(str, Enum):
    PULL = "pull"
    PUSH = "push"


class Resolution(str, Enum):
    """A human decision on a conflicted item."""

    LOCAL = "local"
    REMOTE = "remote"
    SKIP = "skip"


def derive_status(
    local_hash: Optional[str],
    remote_hash: Optional[str],
    last_synced_hash: Optional[str],
) -> SyncStatus:
    """Classify one item from its three fingerprints.

    With no recorded sync hash, differing content cannot be ordered and
    counts as a conflict.
    """
    if local_hash is None or remote_hash is None:
        return SyncStatus.MISSING
    if local_hash == remote_hash:
        return SyncStatus.IN_SYNC
    if last_synced_hash is None:
        return SyncStatus.CONFLICT
    if local_hash == last_synced_hash:
        return SyncStatus.REMOTE_NEWER
    if remote_hash == last_synced_hash:
        return SyncStatus.LOCAL_NEWER
    return SyncStatus.CONFLICT


@dataclass(frozen=True)
class ItemSnapshot:
    """Local and remote content of one item at a point in time."""

    item: SecretItem
    local_content: Optional[str]
    remote_content: Optional[str]
    last_synced_hash: Optional[str] = None

    @property
    def local_hash(self) -> Optional[str]:
        return fingerprint(self.local_content, self.item.kind)

    @property
    def remote_hash(self) -> Optional[str]:
        return fingerprint(self.remote_content, self.item.kind)

    @property
    def status(self) -> SyncStatus:
        return derive_status(self.local_hash, self.remote_hash, self.last_synced_hash)


@dataclass(frozen=True)
class SyncAction:
    """One planned step. ``content`` is what would be written."""

    item: SecretItem
    operation: Operation
    direction: Direction
    status: SyncStatus
    reason: str = ""
    requires_confirmation: bool = False
    local_hash: Optional[str] = None
    remote_hash: Optional[str] = None
    content: Optional[str] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def is_change(self) -> bool:
        return self.operation in (Operation.CREATE, Operation.UPDATE)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "operation": self.operation.value,
            "direction": self.direction.value,
            "status": self.status.value,
            "reason": self.reason,
            "requires_confirmation": self.requires_confirmation,
            "local_hash": self.local_hash,
            "remote_hash": self.remote_hash,
        }


@dataclass(frozen=True)
class SyncPlan:
    """Ordered, immutable list of actions for one direction."""

    direction: Direction
    actions: tuple[SyncAction, ...] = ()

    def by_operation(self, operation: Operation) -> list[SyncAction]:
        return [a for a in self.actions if a.operation == operation]

    @property
    def changes(self) -> list[SyncAction]:
        return [a for a in self.actions if a.is_change]

    @property
    def conflicts(self) -> list[SyncAction]:
        return self.by_operation(Operation.CONFLICT)

    @property
    def is_noop(self) -> bool:
        return not self.changes

    def get(self, name: str) -> Optional[SyncAction]:
        for action in self.actions:
            if action.name == name:
                return action
        return None

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "actions": [a.to_dict() for a in self.actions],
        }


def _push_eligible(item: SecretItem, selected: Optional[set[str]]) -> tuple[bool, str]:
    if item.sync == SyncPolicy.NEVER:
        return False, "sync policy is 'never'"
    if selected is None:
        if item.sync == SyncPolicy.MANUAL:
            return False, "sync policy is 'manual'; name it explicitly"
        return True, ""
    return item.name in selected, ""


def _plan_pull(
    snap: ItemSnapshot, force: bool, resolution: Optional[Resolution]
) -> SyncAction:
    status = snap.status
    base = dict(
        item=snap.item,
        direction=Direction.PULL,
        status=status,
        local_hash=snap.local_hash,
        remote_hash=snap.remote_hash,
    )

    if snap.remote_content is None:
        reason = "missing in vault"
        if snap.item.required:
            reason += " (required)"
        return SyncAction(operation=Operation.SKIP, reason=reason, **base)
    if snap.local_content is None:
        return SyncAction(
            operation=Operation.CREATE, reason="missing locally",
            content=snap.remote_content, **base,
        )
    if status == SyncStatus.IN_SYNC:
        return SyncAction(operation=Operation.SKIP, reason="in sync", **base)
    if status == SyncStatus.REMOTE_NEWER:
        return SyncAction(
            operation=Operation.UPDATE, reason="vault is newer",
            requires_confirmation=not force, content=snap.remote_content, **base,
        )
    if status == SyncStatus.LOCAL_NEWER:
        if force:
            return SyncAction(
                operation=Operation.UPDATE, reason="local is newer; overwritten by --force",
                content=snap.remote_content, **base,
            )
        return SyncAction(
            operation=Operation.SKIP, reason="local is newer; push it or use --force", **base
        )

    # Conflict
    if resolution == Resolution.REMOTE or (resolution is None and force):
        return SyncAction(
            operation=Operation.UPDATE, reason="conflict resolved: keep vault copy",
            content=snap.remote_content, **base,
        )
    if resolution == Resolution.LOCAL:
        return SyncAction(operation=Operation.SKIP, reason="conflict resolved: keep local copy", **base)
    if resolution == Resolution.SKIP:
        return SyncAction(operation=Operation.SKIP, reason="conflict skipped", **base)
    return SyncAction(
        operation=Operation.CONFLICT, reason="both sides changed since last sync", **base
    )


def _plan_push(
    snap: ItemSnapshot, force: bool, resolution: Optional[Resolution]
) -> SyncAction:
    status = snap.status
    base = dict(
        item=snap.item,
        direction=Direction.PUSH,
        status=status,
        local_hash=snap.local_hash,
        remote_hash=snap.remote_hash,
    )

    if snap.local_content is None:
        return SyncAction(operation=Operation.SKIP, reason="missing locally", **base)
    if snap.remote_content is None:
        return SyncAction(
            operation=Operation.CREATE, reason="missing in vault",
            content=snap.local_content, **base,
        )
    if status == SyncStatus.IN_SYNC:
        return SyncAction(operation=Operation.SKIP, reason="in sync", **base)
    if status == SyncStatus.LOCAL_NEWER:
        return SyncAction(
            operation=Operation.UPDATE, reason="local is newer",
            content=snap.local_content, **base,
        )
    if status == SyncStatus.REMOTE_NEWER:
        if force:
            return SyncAction(
                operation=Operation.UPDATE, reason="vault is newer; overwritten by --force",
                content=snap.local_content, **base,
            )
        return SyncAction(
            operation=Operation.SKIP, reason="vault is newer; pull it or use --force", **base
        )

    if resolution == Resolution.LOCAL or (resolution is None and force):
        return SyncAction(
            operation=Operation.UPDATE, reason="conflict resolved: keep local copy",
            content=snap.local_content, **base,
        )
    if resolution == Resolution.REMOTE:
        return SyncAction(operation=Operation.SKIP, reason="conflict resolved: keep vault copy", **base)
    if resolution == Resolution.SKIP:
        return SyncAction(operation=Operation.SKIP, reason="conflict skipped", **base)
    return SyncAction(
        operation=Operation.CONFLICT, reason="both sides changed since last sync", **base
    )


def compute_sync_plan(
    snapshots: Iterable[ItemSnapshot],
    direction: Direction,
    *,
    force: bool = False,
    resolutions: Optional[Mapping[str, Resolution]] = None,
    selected: Optional[Iterable[str]] = None,
) -> SyncPlan:
    """Build the plan for ``direction`` from item snapshots.

    Args:
        snapshots: One snapshot per candidate item.
        direction: Pull (vault to disk) or push (disk to vault).
        force: Overwrite newer content on the target side; on a
            conflict it picks the source side.
        resolutions: Per-item human decisions for conflicts.
        selected: Names the caller asked for explicitly. None means all.

    Returns:
        A SyncPlan ordered by item name.
    """
    resolutions = resolutions or {}
    chosen = set(selected) if selected is not None else None
    actions: list[SyncAction] = []

    for snap in sorted(snapshots, key=lambda s: s.item.name):
        name = snap.item.name
        if chosen is not None and name not in chosen:
            continue
        resolution = resolutions.get(name)

        if direction == Direction.PULL:
            actions.append(_plan_pull(snap, force, resolution))
            continue

        eligible, why = _push_eligible(snap.item, chosen)
        if not eligible:
            if chosen is not None:
                actions.append(SyncAction(
                    item=snap.item,
                    operation=Operation.SKIP,
                    direction=Direction.PUSH,
                    status=snap.status,
                    reason=why,
                    local_hash=snap.local_hash,
                    remote_hash=snap.remote_hash,
                ))
            continue
        actions.append(_plan_push(snap, force, resolution))

    return SyncPlan(direction=direction, actions=tuple(actions))
