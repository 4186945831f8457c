"""
Configuration document I/O -- read, validate, write.

YAML by default; a ``.json`` suffix switches the writer to JSON.
``yaml.safe_load`` reads both.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .errors import MigrationFailed, PermissionDenied, SchemaInvalid
from .files import MODE_SECRET_FILE, atomic_write, backup_file
from .migrations import CURRENT_VERSION, detect_version
from .models import ConfigurationDocument, SecretItem

logger = logging.getLogger("dotvault.document")

_ITEM_FIELDS = frozenset(SecretItem.model_fields)
_TOP_LEVEL_FIELDS = frozenset({"version", "items"})


def read_raw(path: Path) -> dict:
    """Parse the document into a plain mapping.

    Raises:
        SchemaInvalid: Missing, unparseable, or not a mapping.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise SchemaInvalid(
            f"No configuration document at {path}",
            "file does not exist",
            "dotvault scan",
        ) from exc
    except PermissionError as exc:
        raise PermissionDenied(f"Cannot read {path}", str(exc), f"chmod u+r {path}") from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SchemaInvalid(
            f"Cannot parse {path}", str(exc), f"$EDITOR {path}", problems=[str(exc)]
        ) from exc
    if not isinstance(data, dict):
        raise SchemaInvalid(
            f"Cannot parse {path}",
            "top level must be a mapping",
            f"$EDITOR {path}",
            problems=["top level must be a mapping"],
        )
    return data


def dump_raw(path: Path, data: dict) -> str:
    """Serialize for ``path``: JSON for ``.json``, YAML otherwise."""
    if path.suffix.lower() == ".json":
        return json.dumps(data, indent=2) + "\n"
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def _format_error(error: dict) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    return f"{loc}: {error.get('msg', 'invalid')}" if loc else error.get("msg", "invalid")


def validate_raw(data: dict) -> list[str]:
    """Every schema problem in a raw document. Empty means valid."""
    problems: list[str] = []

    try:
        version = detect_version(data)
    except MigrationFailed as exc:
        return [str(exc)]
    if version < CURRENT_VERSION:
        problems.append(
            f"version {version} is older than {CURRENT_VERSION}; run 'dotvault migrate'"
        )
        return problems
    if version > CURRENT_VERSION:
        return [f"version {version} is newer than {CURRENT_VERSION}"]

    for key in sorted(set(data) - _TOP_LEVEL_FIELDS):
        problems.append(f"{key}: unknown top-level field")

    items = data.get("items")
    if not isinstance(items, list):
        problems.append("items: must be a list")
        return problems

    seen: set[str] = set()
    for index, entry in enumerate(items):
        if not isinstance(entry, dict):
            problems.append(f"items.{index}: must be a mapping")
            continue
        for key in sorted(set(entry) - _ITEM_FIELDS):
            problems.append(f"items.{index}.{key}: unknown field")
        name = entry.get("name")
        if isinstance(name, str):
            if name in seen:
                problems.append(f"items.{index}.name: duplicate item name '{name}'")
            seen.add(name)

    try:
        ConfigurationDocument.model_validate(data)
    except ValidationError as exc:
        problems.extend(_format_error(err) for err in exc.errors())
    return problems


def load_document(path: Path, missing_ok: bool = False) -> ConfigurationDocument:
    """Load and validate the document.

    Args:
        path: Document location.
        missing_ok: Return an empty current-version document if absent.

    Raises:
        SchemaInvalid: Invalid, or an older version that needs migrating.
    """
    if missing_ok and not path.exists():
        logger.debug("No document at %s; starting empty", path)
        return new_document()
    data = read_raw(path)
    problems = validate_raw(data)
    if problems:
        needs_migration = any("dotvault migrate" in p for p in problems)
        raise SchemaInvalid(
            f"{path} is not a valid configuration document",
            f"{len(problems)} problem(s)",
            "dotvault migrate" if needs_migration else f"dotvault validate  # then edit {path}",
            problems=problems,
        )
    return ConfigurationDocument.model_validate(data)


def document_to_raw(document: ConfigurationDocument) -> dict:
    return {
        "version": document.version,
        "items": [item.model_dump(mode="json") for item in document.items],
    }


def save_document(path: Path, document: ConfigurationDocument) -> Optional[Path]:
    """Write the document atomically, backing up any previous version.

    Returns:
        The backup path, if there was a previous file.
    """
    backup = backup_file(path)
    atomic_write(path, dump_raw(path, document_to_raw(document)), MODE_SECRET_FILE)
    logger.info("Saved configuration document %s (%d items)", path, len(document.items))
    return backup


def new_document() -> ConfigurationDocument:
    return ConfigurationDocument(version=CURRENT_VERSION, items=[])
