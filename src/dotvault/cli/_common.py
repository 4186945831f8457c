"""Shared utilities for all CLI command modules.

Provides the Rich console, the per-invocation application context,
error rendering, and the plan/result tables used by pull and push.
"""

from __future__ import annotations

import functools
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..backends import VaultBackend, create_backend
from ..config import Settings
from ..document import load_document
from ..engine import OutcomeStatus, SyncEngine, SyncResult
from ..errors import SchemaInvalid, VaultError
from ..ledger import SyncLedger
from ..models import ConfigurationDocument
from ..plan import Operation, SyncPlan, SyncStatus
from ..session import SessionManager

console = Console()
logger = logging.getLogger("dotvault.cli")

DRIFT_EXIT_CODE = 3
INTERRUPTED_EXIT_CODE = 130


class AppContext:
    """Everything one invocation shares. Built lazily, once."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._backend: Optional[VaultBackend] = None
        self._sessions: Optional[SessionManager] = None
        self._ledger: Optional[SyncLedger] = None
        self._engine: Optional[SyncEngine] = None

    @property
    def backend(self) -> VaultBackend:
        if self._backend is None:
            self._backend = create_backend(self.settings.backend, self.settings)
            self._backend.init()
        return self._backend

    @property
    def sessions(self) -> SessionManager:
        if self._sessions is None:
            self._sessions = SessionManager(self.settings)
        return self._sessions

    @property
    def ledger(self) -> SyncLedger:
        if self._ledger is None:
            self._ledger = SyncLedger.load(self.settings.ledger_path)
        return self._ledger

    @property
    def engine(self) -> SyncEngine:
        if self._engine is None:
            self._engine = SyncEngine(self.backend, self.sessions, self.ledger, self.settings)
        return self._engine

    def document(self, missing_ok: bool = False) -> ConfigurationDocument:
        return load_document(self.settings.document_path, missing_ok=missing_ok)


def print_error(exc: VaultError) -> None:
    """Render what failed, why, and the one command that fixes it."""
    body = f"[bold]{exc.what}[/]"
    if exc.why:
        body += f"\n[dim]{exc.why}[/]"
    if isinstance(exc, SchemaInvalid) and exc.problems:
        body += "\n" + "\n".join(f"  [red]•[/] {p}" for p in exc.problems)
    if exc.remediation:
        body += f"\n\n[yellow]Fix:[/] {exc.remediation}"
    console.print(Panel(body, title=type(exc).__name__, border_style="red"))


def handle_errors(func):
    """Turn VaultError into a rendered panel and its exit code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except VaultError as exc:
            logger.debug("Command failed", exc_info=True)
            print_error(exc)
            sys.exit(exc.exit_code)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted.[/]")
            sys.exit(INTERRUPTED_EXIT_CODE)

    return wrapper


def status_icon(status: SyncStatus) -> str:
    """Rich markup for a sync status."""
    return {
        SyncStatus.IN_SYNC: "[green]in sync[/]",
        SyncStatus.LOCAL_NEWER: "[cyan]local newer[/]",
        SyncStatus.REMOTE_NEWER: "[magenta]vault newer[/]",
        SyncStatus.CONFLICT: "[bold red]conflict[/]",
        SyncStatus.MISSING: "[yellow]missing[/]",
    }.get(status, "[dim]unknown[/]")


def operation_icon(operation: Operation) -> str:
    return {
        Operation.CREATE: "[bold green]create[/]",
        Operation.UPDATE: "[bold cyan]update[/]",
        Operation.SKIP: "[dim]skip[/]",
        Operation.CONFLICT: "[bold red]conflict[/]",
    }.get(operation, "[dim]?[/]")


def short_hash(digest: Optional[str]) -> str:
    return digest[:12] if digest else "[dim]-[/]"


def render_plan(plan: SyncPlan) -> None:
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Item", style="bold")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Reason", style="dim")
    for action in plan.actions:
        table.add_row(
            action.name,
            operation_icon(action.operation),
            status_icon(action.status),
            action.reason,
        )
    console.print()
    console.print(table)
    console.print()


_OUTCOME_STYLE = {
    OutcomeStatus.APPLIED: "[green]✓[/]",
    OutcomeStatus.SKIPPED: "[dim]-[/]",
    OutcomeStatus.DECLINED: "[yellow]-[/]",
    OutcomeStatus.CONFLICT: "[red]![/]",
    OutcomeStatus.FAILED: "[red]✗[/]",
    OutcomeStatus.CANCELLED: "[yellow]✗[/]",
}


def render_result(result: SyncResult) -> None:
    for outcome in result.outcomes:
        if outcome.status == OutcomeStatus.SKIPPED:
            continue
        icon = _OUTCOME_STYLE[outcome.status]
        detail = f" [dim]({outcome.detail})[/]" if outcome.detail else ""
        console.print(f"  {icon} {outcome.name} {outcome.status.value}{detail}")

    applied = len(result.applied)
    console.print()
    if result.ok:
        console.print(f"  [bold green]{applied} item(s) {result.plan.direction.value}ed.[/]")
    else:
        console.print(
            f"  [bold green]{applied}[/] applied, "
            f"[bold red]{len(result.failed)}[/] failed, "
            f"[bold red]{len(result.conflicts)}[/] conflicted"
            + (", [yellow]cancelled[/]" if result.cancelled else "")
        )
    console.print()
