"""Document commands: validate, migrate."""

from __future__ import annotations

import json
import sys

import click

from ..document import read_raw, validate_raw
from ..migrations import CURRENT_VERSION, migrate as run_migration
from ._common import AppContext, console, handle_errors


def register_document_commands(main: click.Group) -> None:
    """Register validate and migrate."""

    @main.command()
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    @click.pass_obj
    @handle_errors
    def validate(app: AppContext, json_out):
        """Check the configuration document against the schema."""
        path = app.settings.document_path
        problems = validate_raw(read_raw(path))

        if json_out:
            click.echo(json.dumps({"path": str(path), "valid": not problems, "problems": problems}, indent=2))
        elif problems:
            console.print(f"\n  [bold red]✗ {path}[/]")
            for problem in problems:
                console.print(f"    [red]•[/] {problem}")
            console.print()
        else:
            console.print(f"\n  [bold green]✓ {path}[/] is valid (version {CURRENT_VERSION})\n")

        if problems:
            sys.exit(1)

    @main.command()
    @click.option("--dry-run", is_flag=True, help="Show the result without writing it.")
    @click.pass_obj
    @handle_errors
    def migrate(app: AppContext, dry_run):
        """Upgrade the configuration document to the current schema."""
        path = app.settings.document_path
        result = run_migration(path, dry_run=dry_run)

        if not result.changed:
            console.print(f"\n  [green]Already at version {CURRENT_VERSION}.[/] Nothing to do.\n")
            return

        console.print(
            f"\n  Version [cyan]{result.from_version}[/] -> [cyan]{result.to_version}[/]"
            f" ({len(result.document.get('items', []))} items)"
        )
        if dry_run:
            click.echo(json.dumps(result.document, indent=2))
            console.print("  [dim]Dry run: nothing written.[/]\n")
            return
        if result.backup:
            console.print(f"  [dim]Backup: {result.backup}[/]")
        console.print(f"  [bold green]✓ Migrated[/] {path}\n")
