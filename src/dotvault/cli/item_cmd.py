"""Item commands: get, delete, unlock."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from ..errors import ItemNotFound
from ..files import MODE_SECRET_FILE, atomic_write, ensure_directory
from ..models import Location
from ._common import AppContext, console, handle_errors

# Items a restore depends on. Deleting one always needs the name typed back.
PROTECTED_PREFIXES = ("SSH-", "AWS-")
PROTECTED_NAMES = frozenset({"Git-Config", "Environment-Secrets"})


def is_protected(name: str) -> bool:
    return name in PROTECTED_NAMES or name.startswith(PROTECTED_PREFIXES)


def _location_of(app: AppContext, name: str) -> Optional[Location]:
    """Where a tracked item was placed; None for untracked names."""
    item = app.document(missing_ok=True).get(name)
    return item.location if item is not None else None


def _confirm_delete(name: str, yes: bool) -> bool:
    if is_protected(name):
        console.print(f"  [bold red]{name} is a protected item;[/] restores depend on it.")
        typed = click.prompt("  Type the item name to confirm deletion", default="", show_default=False)
        return typed.strip() == name
    if yes:
        return True
    return click.confirm(f"  Delete {name}?", default=False)


def register_item_commands(main: click.Group) -> None:
    """Register get, delete and unlock."""

    @main.command("get")
    @click.argument("name")
    @click.option("--attachment", default=None, help="Fetch this attachment instead of the note.")
    @click.option(
        "-o", "--output", default=None, type=click.Path(dir_okay=False, path_type=Path),
        help="Write to this file (mode 0600) instead of stdout.",
    )
    @click.pass_obj
    @handle_errors
    def get_item(app: AppContext, name: str, attachment: Optional[str], output: Optional[Path]):
        """Print an item's note, or save one of its attachments."""
        engine = app.engine
        if attachment:
            data = engine.read_attachment(name, attachment)
        else:
            notes = engine.read_remote(name, _location_of(app, name))
            if notes is None:
                raise ItemNotFound(
                    f"Item '{name}' not found in {app.backend.display_name}",
                    "no item with that name in the vault",
                    "dotvault list",
                )
            data = notes.encode("utf-8")

        if output is None:
            click.echo(data, nl=False)
            return
        output = output.expanduser()
        ensure_directory(output.parent)
        atomic_write(output, data, MODE_SECRET_FILE)
        console.print(f"  [green]Saved[/] {name} to {output}", highlight=False)

    @main.command()
    @click.argument("names", nargs=-1, required=True)
    @click.option("--dry-run", is_flag=True, help="Show what would be deleted.")
    @click.option("-y", "--yes", is_flag=True, help="Skip confirmation for unprotected items.")
    @click.pass_obj
    @handle_errors
    def delete(app: AppContext, names, dry_run: bool, yes: bool):
        """Delete items from the vault."""
        if dry_run:
            console.print("\n  [bold]Dry run[/] [dim](nothing will be deleted)[/]")
            for name in names:
                note = " [yellow](protected; needs the name typed to confirm)[/]" if is_protected(name) else ""
                console.print(f"    would delete {name}{note}")
            console.print()
            return

        engine = app.engine
        deleted, skipped, failed = 0, 0, 0
        for name in names:
            location = _location_of(app, name)
            if engine.read_remote(name, location) is None:
                console.print(f"  [yellow]{name} not found; skipping.[/]")
                skipped += 1
                continue
            if not _confirm_delete(name, yes):
                console.print(f"  [dim]Kept {name}.[/]")
                skipped += 1
                continue
            try:
                engine.delete_remote(name, location)
            except ItemNotFound as exc:
                console.print(f"  [red]✗[/] {name}: {exc.what}")
                failed += 1
                continue
            console.print(f"  [green]✓[/] Deleted {name}")
            deleted += 1

        console.print(f"\n  {deleted} deleted, {skipped} skipped, {failed} failed\n")
        if failed:
            sys.exit(1)

    @main.command()
    @click.pass_obj
    @handle_errors
    def unlock(app: AppContext):
        """Unlock the vault and cache the session for later commands."""
        vault = app.backend
        session = vault.get_session(app.sessions)
        state = app.sessions.state(vault)
        console.print(
            f"  [green]{vault.display_name} {state.value}[/] [dim](session from {session.source.value})[/]"
        )
