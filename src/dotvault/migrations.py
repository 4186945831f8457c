"""
Schema migrations for the configuration document.

One pure transform per version step. Each transform is idempotent:
feeding it a document already in its target shape returns an equal
document, so re-running a migration is a no-op.

    v1  {vault_items: {...}, syncable_items: {...}, ssh_keys: {...}}
    v2  {version: 2, items: [{name, path, kind, required, sync}]}
    v3  every item has an explicit location; items sorted by name
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .errors import MigrationFailed, SchemaInvalid, VaultError
from .files import MODE_SECRET_FILE, atomic_write, backup_file

logger = logging.getLogger("dotvault.migrations")

CURRENT_VERSION = 3

_LEGACY_KEYS = ("$schema", "$comment")


def detect_version(data: dict) -> int:
    """Schema version of a raw document."""
    if "version" in data:
        try:
            return int(data["version"])
        except (TypeError, ValueError) as exc:
            raise MigrationFailed(
                "Unreadable schema version",
                f"version is {data['version']!r}",
                "set 'version' to an integer and rerun dotvault migrate",
            ) from exc
    if "vault_items" in data or "ssh_keys" in data or "syncable_items" in data:
        return 1
    if "items" in data:
        return 2
    raise MigrationFailed(
        "Cannot tell which schema this document uses",
        "no 'version', 'items' or 'vault_items' key",
        "dotvault validate",
    )


def _v1_kind(name: str, entry: dict, ssh_keys: dict, syncable: dict) -> str:
    path = str(entry.get("path", ""))
    if entry.get("type") == "sshkey" and (name in ssh_keys or name not in syncable):
        return "ssh-key-pair"
    if path.endswith("env.secrets") or entry.get("type") == "env":
        return "key-value-file"
    return "file"


def v1_to_v2(data: dict) -> dict:
    """Legacy name-keyed maps -> a flat ``items`` list."""
    if detect_version(data) >= 2:
        return copy.deepcopy(data)

    vault_items = dict(data.get("vault_items") or {})
    ssh_keys = data.get("ssh_keys") or {}
    syncable = data.get("syncable_items") or {}

    # ssh_keys entries missing from vault_items are still keys.
    for name, path in ssh_keys.items():
        vault_items.setdefault(name, {"path": path, "required": True, "type": "sshkey"})

    items = []
    for name, entry in vault_items.items():
        if isinstance(entry, str):
            entry = {"path": entry}
        kind = _v1_kind(name, entry, ssh_keys, syncable)
        if kind == "ssh-key-pair":
            sync = "manual"
        elif name in syncable:
            sync = "always"
        else:
            sync = "manual"
        items.append({
            "name": name,
            "path": entry.get("path") or syncable.get(name) or ssh_keys.get(name, ""),
            "kind": kind,
            "required": bool(entry.get("required", False)),
            "sync": sync,
        })

    result = {k: v for k, v in data.items() if k in _LEGACY_KEYS}
    result["version"] = 2
    result["items"] = items
    return result


def v2_to_v3(data: dict) -> dict:
    """Explicit ``location`` on every item, legacy keys dropped, sorted."""
    items = []
    for entry in data.get("items") or []:
        entry = dict(entry)
        entry.setdefault("location", None)
        items.append(entry)
    items.sort(key=lambda e: str(e.get("name", "")))
    return {"version": 3, "items": items}


TRANSFORMS: dict[int, Callable[[dict], dict]] = {
    1: v1_to_v2,
    2: v2_to_v3,
}


def upgrade(data: dict, target: int = CURRENT_VERSION) -> dict:
    """Apply transforms in order until ``target``. Pure."""
    version = detect_version(data)
    if version > target:
        raise MigrationFailed(
            f"Document version {version} is newer than this dotvault understands",
            f"latest known version is {target}",
            "pip install --upgrade dotvault",
        )
    current = copy.deepcopy(data)
    while version < target:
        transform = TRANSFORMS.get(version)
        if transform is None:
            raise MigrationFailed(
                f"No migration from version {version}",
                f"known steps: {sorted(TRANSFORMS)}",
                "dotvault validate",
            )
        current = transform(current)
        logger.debug("Migrated document v%d -> v%d", version, version + 1)
        version += 1
    return current


@dataclass
class MigrationResult:
    path: Path
    from_version: int
    to_version: int
    changed: bool
    dry_run: bool = False
    backup: Optional[Path] = None
    document: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "from_version": self.from_version,
            "to_version": self.to_version,
            "changed": self.changed,
            "dry_run": self.dry_run,
            "backup": str(self.backup) if self.backup else None,
        }


def migrate(path: Path, dry_run: bool = False, now: Optional[datetime] = None) -> MigrationResult:
    """Upgrade the document at ``path`` to the current version.

    Already-current documents are not touched. Otherwise the original
    is backed up, transformed, validated and written atomically.

    Args:
        path: Configuration document.
        dry_run: Compute and validate, but write nothing.
        now: Timestamp for the backup name.

    Raises:
        MigrationFailed: Anything goes wrong. The original is untouched.
    """
    from .document import dump_raw, read_raw, validate_raw

    try:
        data = read_raw(path)
    except SchemaInvalid as exc:
        raise MigrationFailed(f"Cannot migrate {path}", exc.why, exc.remediation) from exc

    from_version = detect_version(data)
    if from_version == CURRENT_VERSION:
        logger.info("%s is already at version %d", path, CURRENT_VERSION)
        return MigrationResult(path, from_version, CURRENT_VERSION, changed=False, dry_run=dry_run, document=data)

    upgraded = upgrade(data)
    problems = validate_raw(upgraded)
    if problems:
        raise MigrationFailed(
            f"Migrated document for {path} is invalid",
            "; ".join(problems),
            "fix the listed entries by hand, then rerun dotvault migrate",
        )

    result = MigrationResult(
        path, from_version, CURRENT_VERSION, changed=True, dry_run=dry_run, document=upgraded
    )
    if dry_run:
        return result

    try:
        result.backup = backup_file(path, now)
        atomic_write(path, dump_raw(path, upgraded), MODE_SECRET_FILE)
    except (OSError, VaultError) as exc:
        raise MigrationFailed(
            f"Cannot write migrated {path}", str(exc), f"chmod u+w {path.parent}"
        ) from exc
    logger.info("Migrated %s v%d -> v%d", path, from_version, CURRENT_VERSION)
    return result
