"""Discovery command: scan."""

from __future__ import annotations

import json

import click
from rich.table import Table

from ..discovery import DiscoveryScanner, merge_new
from ..document import save_document
from ._common import AppContext, console, handle_errors

_BUCKETS = (
    ("new", "New", "green"),
    ("changed", "Changed", "cyan"),
    ("unchanged", "Unchanged", "dim"),
    ("existing_not_found", "Tracked but not found", "yellow"),
)


def register_scan_commands(main: click.Group) -> None:
    """Register the scan command."""

    @main.command()
    @click.option("--dry-run", is_flag=True, help="Report only; never update the document.")
    @click.option(
        "--ssh-path", "ssh_paths", multiple=True, type=click.Path(),
        help="Extra directory to search for SSH keys (repeatable).",
    )
    @click.option(
        "--config-path", "config_paths", multiple=True,
        help="Extra config file to track (repeatable).",
    )
    @click.option("-y", "--yes", is_flag=True, help="Add new items without asking.")
    @click.option("--json-out", is_flag=True, help="Output the report as JSON.")
    @click.pass_obj
    @handle_errors
    def scan(app: AppContext, dry_run, ssh_paths, config_paths, yes, json_out):
        """Find secrets on disk and compare them with what is tracked."""
        document = app.document(missing_ok=True)
        scanner = DiscoveryScanner(ssh_dirs=ssh_paths, extra_files=config_paths)
        report = scanner.scan(document, app.ledger.hashes())

        if json_out:
            click.echo(json.dumps(report.to_dict(), indent=2))
            return

        console.print()
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Item", style="bold")
        table.add_column("Path")
        table.add_column("Kind", style="dim")
        table.add_column("State")
        for bucket, label, colour in _BUCKETS:
            for item in getattr(report, bucket):
                table.add_row(item.name, item.path, item.kind.value, f"[{colour}]{label}[/]")
        if report.total:
            console.print(table)
        else:
            console.print("  [yellow]Nothing found.[/]")
        console.print()

        if report.existing_not_found:
            console.print(
                "  [yellow]Tracked items missing on disk may have been moved or removed.[/] "
                "Edit the document to decide."
            )
        if not report.new:
            console.print("  [dim]No new items.[/]\n")
            return
        if dry_run:
            console.print(f"  [dim]Dry run: {len(report.new)} new item(s) not added.[/]\n")
            return
        if not yes and not click.confirm(f"  Track {len(report.new)} new item(s)?", default=True):
            console.print("  [dim]Nothing changed.[/]\n")
            return

        merged = merge_new(document, report)
        path = app.settings.document_path
        save_document(path, merged)
        console.print(f"  [green]Added {len(report.new)} item(s) to[/] {path}\n")
