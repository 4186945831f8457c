"""
dotvault CLI -- keep local secrets in step with your password manager.

Each command group lives in its own module and is registered on the
main group through its ``register_*_commands`` function.

Entry point: dotvault.cli:main
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ..config import Settings
from ._common import AppContext


@click.group()
@click.version_option(version=__version__, prog_name="dotvault")
@click.option("-v", "--verbose", is_flag=True, help="Log what dotvault is doing.")
@click.option("--backend", default=None, help="Override DOTVAULT_BACKEND for this run.")
@click.option(
    "--config", "config_path", default=None, type=click.Path(path_type=Path),
    help="Configuration document to use.",
)
@click.option("--offline", is_flag=True, default=None, help="Never contact the vault service.")
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    backend: Optional[str],
    config_path: Optional[Path],
    offline: Optional[bool],
):
    """dotvault -- sync SSH keys and dotfile secrets with your vault.

    Works with Bitwarden, 1Password and pass.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
    settings = Settings.from_env()
    updates: dict = {}
    if backend:
        updates["backend"] = backend.lower()
    if config_path is not None:
        updates["config_path"] = config_path
    if offline:
        updates["offline"] = True
    if updates:
        settings = settings.model_copy(update=updates)
    ctx.obj = AppContext(settings)


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .scan import register_scan_commands
from .sync import register_sync_commands
from .document_cmd import register_document_commands
from .backend_cmd import register_backend_commands
from .item_cmd import register_item_commands

register_scan_commands(main)
register_sync_commands(main)
register_document_commands(main)
register_backend_commands(main)
register_item_commands(main)
