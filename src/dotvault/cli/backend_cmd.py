"""Backend commands: backend, health, list, lock."""

from __future__ import annotations

import json
import sys
from dataclasses import asdict
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ..backends import Capability, available_backends, create_backend
from ..discovery import TrackingState, tracking_state
from ..models import Location, LocationType
from ._common import AppContext, console, handle_errors


def register_backend_commands(main: click.Group) -> None:
    """Register backend, health, list and lock."""

    @main.command()
    @click.pass_obj
    @handle_errors
    def backend(app: AppContext):
        """Show the active backend and settings."""
        settings = app.settings
        lines = [f"Active: [cyan]{settings.backend}[/]"]
        lines.append(f"Available: {', '.join(available_backends())}")
        for key, value in settings.to_dict().items():
            if key != "backend":
                lines.append(f"{key}: [dim]{value}[/]")
        console.print()
        console.print(Panel("\n".join(lines), title="dotvault", border_style="cyan"))
        console.print("  [dim]Switch with: export DOTVAULT_BACKEND=<name>[/]\n")

    @main.command()
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    @click.pass_obj
    @handle_errors
    def health(app: AppContext, json_out):
        """Check that the backend tool is installed and signed in."""
        # Not app.backend: init() would fail before we can report why.
        vault = create_backend(app.settings.backend, app.settings)
        if not vault.supports(Capability.HEALTH):
            console.print(f"[yellow]{vault.display_name} has no health check.[/]")
            return
        checks = vault.health_check()

        if json_out:
            click.echo(json.dumps([asdict(c) for c in checks], indent=2))
        else:
            console.print(f"\n  [bold]{vault.display_name}[/]")
            for c in checks:
                icon = "[green]✓[/]" if c.passed else "[red]✗[/]"
                detail = f" [dim]({c.detail})[/]" if c.detail else ""
                console.print(f"    {icon} {c.description}{detail}")
                if not c.passed and c.fix:
                    console.print(f"      [yellow]Fix: {c.fix}[/]")
            console.print()

        if not all(c.passed for c in checks):
            sys.exit(1)

    @main.command("list")
    @click.option(
        "--location", default=None,
        help="Only items in this location, as TYPE:VALUE (e.g. folder:dotfiles).",
    )
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    @click.pass_obj
    @handle_errors
    def list_items(app: AppContext, location: Optional[str], json_out):
        """List items stored in the vault."""
        vault = app.backend
        session = vault.get_session(app.sessions)
        if location:
            kind, _, value = location.partition(":")
            try:
                where = Location(type=LocationType(kind), value=value)
            except ValueError as exc:
                raise click.BadParameter(
                    f"expected TYPE:VALUE with TYPE one of {', '.join(t.value for t in LocationType)}",
                    param_hint="--location",
                ) from exc
            records = vault.list_items_in_location(where, session)
        else:
            records = vault.list_items(session)

        document = app.document(missing_ok=True)
        tracked = {
            r.name for r in records
            if tracking_state(r.name, document) == TrackingState.TRACKED
        }

        if json_out:
            click.echo(json.dumps(
                [dict(r.model_dump(exclude={"notes"}), tracked=r.name in tracked) for r in records],
                indent=2,
            ))
            return

        console.print()
        if not records:
            console.print("  [yellow]No items.[/]\n")
            return
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Name", style="bold")
        table.add_column("Type", style="dim")
        table.add_column("Location", style="dim")
        table.add_column("Tracked")
        for record in sorted(records, key=lambda r: r.name):
            table.add_row(
                record.name,
                record.item_type,
                record.location or "",
                "[green]yes[/]" if record.name in tracked else "[dim]no[/]",
            )
        console.print(table)
        console.print()

    @main.command()
    @click.pass_obj
    @handle_errors
    def lock(app: AppContext):
        """Forget the cached session for the active backend."""
        vault = create_backend(app.settings.backend, app.settings)
        if app.sessions.clear(vault):
            console.print(f"  [green]Locked.[/] Cached {vault.display_name} session removed.")
        else:
            console.print(f"  [dim]No cached {vault.display_name} session.[/]")
