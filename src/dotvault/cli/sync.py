"""Sync commands: pull, push, status."""

from __future__ import annotations

import json
import sys

import click
from rich.table import Table

from ..engine import SyncResult, select_items
from ..errors import SyncConflict
from ..plan import Direction, Resolution, SyncAction, SyncPlan, compute_sync_plan
from ._common import (
    DRIFT_EXIT_CODE,
    AppContext,
    console,
    handle_errors,
    render_plan,
    render_result,
    short_hash,
    status_icon,
)


def _confirm_overwrite(action: SyncAction) -> bool:
    return click.confirm(
        f"  Overwrite {action.item.path} with the vault copy of {action.name}?",
        default=False,
    )


def _ask_resolutions(plan: SyncPlan) -> dict[str, Resolution]:
    """Ask the user how to settle each conflicted item."""
    resolutions = {}
    for action in plan.conflicts:
        console.print(
            f"  [bold red]Conflict:[/] {action.name} "
            f"[dim](local {short_hash(action.local_hash)}, vault {short_hash(action.remote_hash)})[/]"
        )
        choice = click.prompt(
            "  Keep which copy?",
            type=click.Choice([r.value for r in Resolution]),
            default=Resolution.SKIP.value,
        )
        resolutions[action.name] = Resolution(choice)
    return resolutions


def _check_result(result: SyncResult, direction: Direction) -> None:
    """Turn unresolved conflicts and failures into an exit status."""
    names = [o.name for o in result.conflicts]
    if names:
        raise SyncConflict(
            f"{len(names)} item(s) changed on both sides since the last sync",
            ", ".join(names),
            f"dotvault {direction.value} --force {names[0]}",
        )
    if not result.ok:
        sys.exit(1)


def register_sync_commands(main: click.Group) -> None:
    """Register pull, push and status."""

    @main.command()
    @click.argument("names", nargs=-1)
    @click.option("--force", is_flag=True, help="Overwrite local files without asking.")
    @click.option("--dry-run", is_flag=True, help="Show the plan; write nothing.")
    @click.pass_obj
    @handle_errors
    def pull(app: AppContext, names, force, dry_run):
        """Restore secrets from the vault to disk."""
        items = select_items(app.document(), names)
        engine = app.engine
        if not dry_run:
            engine.refresh()
        snapshots = engine.snapshot(items)
        plan = compute_sync_plan(snapshots, Direction.PULL, force=force)

        if plan.conflicts and not dry_run and sys.stdin.isatty():
            plan = compute_sync_plan(
                snapshots, Direction.PULL, force=force, resolutions=_ask_resolutions(plan)
            )

        render_plan(plan)
        if dry_run:
            console.print(f"  [dim]Dry run: {len(plan.changes)} change(s) planned.[/]\n")
            return
        if plan.is_noop and not plan.conflicts:
            console.print("  [green]Everything is up to date.[/]\n")
            return

        result = engine.apply(plan, confirm=_confirm_overwrite, force=force)
        render_result(result)
        _check_result(result, Direction.PULL)

    @main.command()
    @click.argument("names", nargs=-1)
    @click.option("--all", "push_all", is_flag=True, help="Push every item whose sync policy is 'always'.")
    @click.option("--force", is_flag=True, help="Overwrite newer vault content.")
    @click.option("--dry-run", is_flag=True, help="Show the plan; change nothing.")
    @click.pass_obj
    @handle_errors
    def push(app: AppContext, names, push_all, force, dry_run):
        """Save local secrets to the vault."""
        if not names and not push_all:
            raise click.UsageError("Name the items to push, or pass --all.")
        document = app.document()
        items = select_items(document, names)
        selected = list(names) if names else None

        engine = app.engine
        snapshots = engine.snapshot(items)
        plan = compute_sync_plan(snapshots, Direction.PUSH, force=force, selected=selected)

        if plan.conflicts and not dry_run and sys.stdin.isatty():
            plan = compute_sync_plan(
                snapshots, Direction.PUSH, force=force, selected=selected,
                resolutions=_ask_resolutions(plan),
            )

        render_plan(plan)
        if dry_run:
            console.print(f"  [dim]Dry run: {len(plan.changes)} change(s) planned.[/]\n")
            return
        if plan.is_noop and not plan.conflicts:
            console.print("  [green]Vault is up to date.[/]\n")
            return

        result = engine.apply(plan, force=force)
        render_result(result)
        _check_result(result, Direction.PUSH)

    @main.command()
    @click.argument("names", nargs=-1)
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    @click.pass_obj
    @handle_errors
    def status(app: AppContext, names, json_out):
        """Compare disk with the vault. Exit code 3 means drift."""
        items = select_items(app.document(), names)
        report = app.engine.drift(items)

        if json_out:
            click.echo(json.dumps(report.to_dict(), indent=2))
        else:
            console.print()
            if report.entries:
                table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
                table.add_column("Item", style="bold")
                table.add_column("Status")
                table.add_column("Local", style="dim")
                table.add_column("Vault", style="dim")
                table.add_column("Path", style="dim")
                for entry in report.entries:
                    table.add_row(
                        entry.name,
                        status_icon(entry.status),
                        short_hash(entry.local_hash),
                        short_hash(entry.remote_hash),
                        str(entry.local_path),
                    )
                console.print(table)
                console.print()
            console.print(
                f"  [bold green]{report.in_sync_count}[/] in sync, "
                f"[bold yellow]{len(report.entries)}[/] drifted\n"
            )

        if report.has_drift:
            sys.exit(DRIFT_EXIT_CODE)
