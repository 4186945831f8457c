"""
Sync Engine -- snapshots, applies plans, reports drift.

    dotvault pull   ->  snapshot -> plan (pure) -> confirm -> backup -> write
    dotvault push   ->  snapshot -> plan (pure) -> create/update in vault
    dotvault status ->  snapshot -> compare, write nothing

Remote reads fan out to a bounded thread pool. Every worker shares
the one Session resolved before dispatch.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Sequence

from .backends.base import Capability, VaultBackend
from .config import Settings
from .errors import (
    AuthRequired,
    BackendUnavailable,
    ItemNotFound,
    SessionExpired,
    VaultError,
)
from .files import read_local, write_item
from .ledger import SyncLedger
from .models import ConfigurationDocument, Location, SecretItem, Session
from .plan import (
    Direction,
    ItemSnapshot,
    Operation,
    Resolution,
    SyncAction,
    SyncPlan,
    SyncStatus,
    compute_sync_plan,
)
from .session import SessionManager

logger = logging.getLogger("dotvault.engine")

ConfirmCallback = Callable[[SyncAction], bool]


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    DECLINED = "declined"
    CONFLICT = "conflict"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ItemOutcome:
    name: str
    operation: Operation
    status: OutcomeStatus
    detail: str = ""
    error: Optional[VaultError] = None


@dataclass
class SyncResult:
    """What ``apply`` actually did."""

    plan: SyncPlan
    outcomes: list[ItemOutcome] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    def _with(self, status: OutcomeStatus) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def applied(self) -> list[ItemOutcome]:
        return self._with(OutcomeStatus.APPLIED)

    @property
    def failed(self) -> list[ItemOutcome]:
        return self._with(OutcomeStatus.FAILED)

    @property
    def conflicts(self) -> list[ItemOutcome]:
        return self._with(OutcomeStatus.CONFLICT)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.conflicts and not self.cancelled


@dataclass
class DriftEntry:
    name: str
    local_hash: Optional[str]
    remote_hash: Optional[str]
    local_path: Path
    status: SyncStatus


@dataclass
class DriftReport:
    """Read-only comparison of every tracked item."""

    in_sync_count: int = 0
    entries: list[DriftEntry] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return bool(self.entries)

    def to_dict(self) -> dict:
        return {
            "in_sync_count": self.in_sync_count,
            "entries": [
                {
                    "name": e.name,
                    "local_hash": e.local_hash,
                    "remote_hash": e.remote_hash,
                    "local_path": str(e.local_path),
                    "status": e.status.value,
                }
                for e in self.entries
            ],
        }


def select_items(
    document: ConfigurationDocument, names: Optional[Sequence[str]] = None
) -> list[SecretItem]:
    """Items named by the caller, or all of them.

    Raises:
        ItemNotFound: A name is not tracked in the document.
    """
    if not names:
        return list(document.items)
    selected = []
    for name in names:
        item = document.get(name)
        if item is None:
            raise ItemNotFound(
                f"'{name}' is not tracked",
                "no item with that name in the configuration document",
                "dotvault scan",
            )
        selected.append(item)
    return selected


class SyncEngine:
    """Runs pull, push and drift against one backend.

    Args:
        backend: The active vault backend.
        sessions: Process-wide session manager.
        ledger: Last-synced hash store.
        settings: Runtime settings (worker pool size).
    """

    def __init__(
        self,
        backend: VaultBackend,
        sessions: SessionManager,
        ledger: SyncLedger,
        settings: Optional[Settings] = None,
    ):
        self.backend = backend
        self.sessions = sessions
        self.ledger = ledger
        self.settings = settings or sessions.settings
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Remote calls
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop issuing remote calls. In-flight writes still finish."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _session(self) -> Session:
        return self.backend.get_session(self.sessions)

    def _remote(self, fn: Callable, *args, **kwargs):
        """Call ``fn(*args, session, **kwargs)``, re-authenticating once on expiry."""
        if self.cancelled:
            raise KeyboardInterrupt
        session = self._session()
        try:
            return fn(*args, session, **kwargs)
        except SessionExpired as exc:
            session = self.sessions.reauthenticate(self.backend, exc, session)
            return fn(*args, session, **kwargs)

    def _where(self, location: Optional[Location]) -> dict:
        """Location keyword for item lookups, when the backend places items."""
        if location is not None and self.backend.supports(Capability.LOCATIONS):
            return {"location": location}
        return {}

    def read_remote(self, name: str, location: Optional[Location] = None) -> Optional[str]:
        """Note body of ``name`` in the vault, or None if it is absent."""
        return self._remote(self.backend.get_notes, name, **self._where(location))

    def read_attachment(self, name: str, attachment: str) -> bytes:
        return self._remote(self.backend.get_attachment, name, attachment)

    def delete_remote(self, name: str, location: Optional[Location] = None) -> None:
        """Delete ``name`` from the vault. Raises ItemNotFound if absent."""
        self._remote(self.backend.delete_item, name, **self._where(location))
        logger.info("Deleted %s from %s", name, self.backend.display_name)

    def refresh(self) -> None:
        """Ask the backend to sync its local cache."""
        self._remote(self.backend.sync)

    # ------------------------------------------------------------------
    # Snapshots and plans
    # ------------------------------------------------------------------

    def snapshot(self, items: Iterable[SecretItem]) -> list[ItemSnapshot]:
        """Read local files and fetch remote notes for ``items``."""
        items = list(items)
        if not items:
            return []
        # Resolve once, before any worker starts.
        self._session()

        workers = min(self.settings.max_workers, len(items))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dotvault")
        try:
            futures = [
                executor.submit(
                    self._remote, self.backend.get_notes, item.name, **self._where(item.location)
                )
                for item in items
            ]
            snapshots = []
            for item, future in zip(items, futures):
                snapshots.append(ItemSnapshot(
                    item=item,
                    local_content=read_local(item),
                    remote_content=future.result(),
                    last_synced_hash=self.ledger.last_hash(item.name),
                ))
            return snapshots
        except KeyboardInterrupt:
            self.cancel()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def plan_pull(
        self,
        items: Iterable[SecretItem],
        *,
        force: bool = False,
        resolutions: Optional[Mapping[str, Resolution]] = None,
    ) -> SyncPlan:
        return compute_sync_plan(
            self.snapshot(items), Direction.PULL, force=force, resolutions=resolutions
        )

    def plan_push(
        self,
        items: Iterable[SecretItem],
        *,
        selected: Optional[Iterable[str]] = None,
        force: bool = False,
        resolutions: Optional[Mapping[str, Resolution]] = None,
    ) -> SyncPlan:
        return compute_sync_plan(
            self.snapshot(items),
            Direction.PUSH,
            force=force,
            resolutions=resolutions,
            selected=selected,
        )

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(
        self,
        plan: SyncPlan,
        *,
        confirm: Optional[ConfirmCallback] = None,
        force: bool = False,
    ) -> SyncResult:
        """Execute a plan.

        Args:
            plan: Plan from ``plan_pull``/``plan_push``.
            confirm: Asked before overwriting a local file that needs
                confirmation. Without it such overwrites are declined.
            force: Overwrite without asking.

        Returns:
            Per-item outcomes. The ledger is saved before returning.

        Raises:
            AuthRequired: Surfaced immediately; nothing further runs.
            BackendUnavailable: Likewise (includes timeouts and offline).
        """
        result = SyncResult(plan=plan)
        try:
            for action in plan.actions:
                if self.cancelled:
                    result.outcomes.append(
                        ItemOutcome(action.name, action.operation, OutcomeStatus.CANCELLED)
                    )
                    continue
                try:
                    result.outcomes.append(self._apply_one(action, confirm, force))
                except KeyboardInterrupt:
                    self.cancel()
                    result.cancelled = True
                    logger.warning("Interrupted; no further vault calls will be made")
                    result.outcomes.append(
                        ItemOutcome(action.name, action.operation, OutcomeStatus.CANCELLED)
                    )
                except (AuthRequired, BackendUnavailable):
                    raise
                except VaultError as exc:
                    logger.error("%s %s failed: %s", plan.direction.value, action.name, exc)
                    result.outcomes.append(ItemOutcome(
                        action.name, action.operation, OutcomeStatus.FAILED, str(exc), exc
                    ))
        finally:
            self.ledger.save()
        if self.cancelled:
            result.cancelled = True
        return result

    def _apply_one(
        self,
        action: SyncAction,
        confirm: Optional[ConfirmCallback],
        force: bool,
    ) -> ItemOutcome:
        if action.operation == Operation.SKIP:
            if (
                action.status == SyncStatus.IN_SYNC
                and action.local_hash is not None
                and self.ledger.last_hash(action.name) != action.local_hash
            ):
                self.ledger.record(action.name, action.local_hash, action.direction.value)
                logger.debug("Marked %s in sync", action.name)
            return ItemOutcome(action.name, action.operation, OutcomeStatus.SKIPPED, action.reason)
        if action.operation == Operation.CONFLICT:
            return ItemOutcome(action.name, action.operation, OutcomeStatus.CONFLICT, action.reason)

        if action.direction == Direction.PULL:
            if action.requires_confirmation and not force:
                if confirm is None or not confirm(action):
                    logger.info("Declined overwrite of %s", action.name)
                    return ItemOutcome(
                        action.name, action.operation, OutcomeStatus.DECLINED, "not confirmed"
                    )
            paths = write_item(action.item, action.content or "")
            self.ledger.record(action.name, action.remote_hash, Direction.PULL.value)
            logger.info("Pulled %s -> %s", action.name, ", ".join(str(p) for p in paths))
            return ItemOutcome(
                action.name, action.operation, OutcomeStatus.APPLIED,
                ", ".join(str(p) for p in paths),
            )

        content = action.content or ""
        if action.operation == Operation.CREATE:
            self._create(action.item, content)
        else:
            try:
                where = self._where(action.item.location)
                self._remote(self.backend.update_item, action.name, content, **where)
            except ItemNotFound:
                logger.info("%s vanished from the vault; creating it", action.name)
                self._create(action.item, content)
        self.ledger.record(action.name, action.local_hash, Direction.PUSH.value)
        logger.info("Pushed %s (%s)", action.name, action.operation.value)
        return ItemOutcome(action.name, action.operation, OutcomeStatus.APPLIED)

    def _create(self, item: SecretItem, content: str) -> None:
        if item.location is not None and self.backend.supports(Capability.LOCATIONS):
            self._remote(self.backend.create_item_in_location, item.name, content, item.location)
        else:
            self._remote(self.backend.create_item, item.name, content)

    # ------------------------------------------------------------------
    # Convenience operations
    # ------------------------------------------------------------------

    def pull(
        self,
        items: Iterable[SecretItem],
        *,
        force: bool = False,
        confirm: Optional[ConfirmCallback] = None,
        resolutions: Optional[Mapping[str, Resolution]] = None,
        dry_run: bool = False,
        refresh: bool = True,
    ) -> SyncResult:
        """Vault -> disk for ``items``."""
        if refresh and not dry_run:
            self.refresh()
        plan = self.plan_pull(items, force=force, resolutions=resolutions)
        if dry_run:
            return SyncResult(plan=plan, dry_run=True)
        return self.apply(plan, confirm=confirm, force=force)

    def push(
        self,
        items: Iterable[SecretItem],
        *,
        selected: Optional[Iterable[str]] = None,
        force: bool = False,
        resolutions: Optional[Mapping[str, Resolution]] = None,
        dry_run: bool = False,
    ) -> SyncResult:
        """Disk -> vault for eligible ``items``."""
        plan = self.plan_push(items, selected=selected, force=force, resolutions=resolutions)
        if dry_run:
            return SyncResult(plan=plan, dry_run=True)
        return self.apply(plan, force=force)

    def drift(self, items: Iterable[SecretItem]) -> DriftReport:
        """Compare every item without writing anything."""
        report = DriftReport()
        for snap in self.snapshot(items):
            status = snap.status
            if status == SyncStatus.IN_SYNC:
                report.in_sync_count += 1
                continue
            if (
                snap.local_content is None
                and snap.remote_content is None
                and not snap.item.required
            ):
                continue
            report.entries.append(DriftEntry(
                name=snap.item.name,
                local_hash=snap.local_hash,
                remote_hash=snap.remote_hash,
                local_path=snap.item.local_path,
                status=status,
            ))
        return report
