"""
Discovery -- find secrets on disk and classify them against the document.

Every item lands in exactly one of four buckets:

    new                 found on disk, not in the document
    existing_not_found  in the document, not on disk (renamed? moved? stale?)
    unchanged           on disk, fingerprint matches the last sync
    changed             on disk, fingerprint differs (or never synced)

``existing_not_found`` is left ambiguous on purpose: a human decides.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .files import fingerprint, read_local
from .models import ConfigurationDocument, SecretItem, SecretKind, SyncPolicy, expand_path

logger = logging.getLogger("dotvault.discovery")

SSH_SKIP_NAMES = frozenset({"known_hosts", "config", "authorized_keys"})

# (name, path, kind, required)
KNOWN_FILES: tuple[tuple[str, str, SecretKind, bool], ...] = (
    ("SSH-Config", "~/.ssh/config", SecretKind.FILE, True),
    ("AWS-Config", "~/.aws/config", SecretKind.FILE, True),
    ("AWS-Credentials", "~/.aws/credentials", SecretKind.FILE, True),
    ("Git-Config", "~/.gitconfig", SecretKind.FILE, True),
    ("NPM-Config", "~/.npmrc", SecretKind.FILE, False),
    ("PyPI-Config", "~/.pypirc", SecretKind.FILE, False),
    ("Docker-Config", "~/.docker/config.json", SecretKind.FILE, False),
    ("Claude-Profiles", "~/.claude/profiles.json", SecretKind.FILE, False),
    ("Environment-Secrets", "~/.local/env.secrets", SecretKind.KEY_VALUE_FILE, False),
)

_KEY_WITH_LABEL = re.compile(r"^id_[^_]+_(.+)$")
_KEY_PLAIN = re.compile(r"^id_(ed25519|rsa|ecdsa|dsa)$")
_WORD = re.compile(r"[A-Za-z0-9]+")


class TrackingState(str, Enum):
    """NotTracked -> Discovered -> (confirmed) -> Tracked."""

    NOT_TRACKED = "not_tracked"
    DISCOVERED = "discovered"
    TRACKED = "tracked"


def _capitalize_words(text: str) -> str:
    return _WORD.sub(lambda m: m.group(0).capitalize(), text)


def ssh_key_name(filename: str) -> str:
    """Vault item name for an SSH private key file.

    >>> ssh_key_name("id_ed25519_github")
    'SSH-Github'
    >>> ssh_key_name("id_rsa")
    'SSH-Personal'
    """
    match = _KEY_WITH_LABEL.match(filename)
    if match:
        return f"SSH-{_capitalize_words(match.group(1))}"
    if _KEY_PLAIN.match(filename):
        return "SSH-Personal"
    return f"SSH-{_capitalize_words(filename)}"


def file_item_name(path: str) -> str:
    """Item name for an extra config file, from its filename."""
    return _capitalize_words(Path(path).name.lstrip("."))


def _looks_like_private_key(path: Path) -> bool:
    try:
        with path.open("r", encoding="utf-8", errors="replace") as fh:
            head = fh.read(4096)
    except OSError:
        return False
    return head.lstrip().startswith("-----BEGIN") and "PRIVATE KEY" in head


@dataclass
class ScanReport:
    """Four-way classification. Each list is sorted by name."""

    new: list[SecretItem] = field(default_factory=list)
    existing_not_found: list[SecretItem] = field(default_factory=list)
    unchanged: list[SecretItem] = field(default_factory=list)
    changed: list[SecretItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            bucket: [item.model_dump(mode="json", exclude_none=True) for item in getattr(self, bucket)]
            for bucket in ("new", "existing_not_found", "unchanged", "changed")
        }

    @property
    def total(self) -> int:
        return len(self.new) + len(self.existing_not_found) + len(self.unchanged) + len(self.changed)


class DiscoveryScanner:
    """Walks the candidate locations for secrets.

    Args:
        home: Home directory to scan. Defaults to ``~``.
        ssh_dirs: Extra directories to search for SSH keys.
        extra_files: Extra config files to track as plain files.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        ssh_dirs: Sequence[Path] = (),
        extra_files: Sequence[str] = (),
    ):
        self.home = (home or Path(os.path.expanduser("~"))).resolve()
        self.ssh_dirs = [Path(p).expanduser() for p in ssh_dirs]
        self.extra_files = list(extra_files)

    def _display_path(self, path: Path) -> str:
        """``~/...`` for paths under home, absolute otherwise."""
        try:
            return "~/" + str(path.resolve().relative_to(self.home))
        except ValueError:
            return str(path)

    def _local(self, path: str) -> Path:
        if path.startswith("~/"):
            return self.home / path[2:]
        return expand_path(path)

    def discover_ssh_keys(self) -> list[SecretItem]:
        drafts: dict[str, SecretItem] = {}
        for directory in [self.home / ".ssh", *self.ssh_dirs]:
            if not directory.is_dir():
                continue
            for keyfile in sorted(directory.iterdir()):
                if not keyfile.is_file() or keyfile.name.endswith(".pub"):
                    continue
                if keyfile.name in SSH_SKIP_NAMES or keyfile.name.startswith("known_hosts"):
                    continue
                if not _looks_like_private_key(keyfile):
                    continue
                name = ssh_key_name(keyfile.name)
                if name in drafts:
                    logger.warning("Skipping %s: name %s already used", keyfile, name)
                    continue
                logger.info("Found SSH key: %s -> %s", keyfile.name, name)
                drafts[name] = SecretItem(
                    name=name,
                    path=self._display_path(keyfile),
                    kind=SecretKind.SSH_KEY_PAIR,
                    required=True,
                    sync=SyncPolicy.MANUAL,
                )
        return list(drafts.values())

    def discover_files(self) -> list[SecretItem]:
        drafts = []
        for name, path, kind, required in KNOWN_FILES:
            if self._local(path).is_file():
                drafts.append(SecretItem(name=name, path=path, kind=kind, required=required))
        for path in self.extra_files:
            local = expand_path(path)
            if local.is_file():
                drafts.append(SecretItem(
                    name=file_item_name(path), path=self._display_path(local),
                ))
            else:
                logger.warning("Extra config file %s does not exist", path)
        return drafts

    def discover(self) -> list[SecretItem]:
        """All draft items found on disk, sorted by name."""
        drafts: dict[str, SecretItem] = {}
        for item in self.discover_ssh_keys() + self.discover_files():
            drafts.setdefault(item.name, item)
        return sorted(drafts.values(), key=lambda i: i.name)

    def _content(self, item: SecretItem) -> Optional[str]:
        if item.path.startswith("~/"):
            item = item.model_copy(update={"path": str(self._local(item.path))})
        return read_local(item)

    def scan(
        self,
        document: ConfigurationDocument,
        synced_hashes: Mapping[str, str],
    ) -> ScanReport:
        """Classify disk contents against ``document`` and the ledger.

        Args:
            document: The current configuration document.
            synced_hashes: Item name -> last synced fingerprint.

        Returns:
            A ScanReport. Nothing is written.
        """
        report = ScanReport()
        tracked_paths = {self._local(item.path) for item in document.items}

        for draft in self.discover():
            if document.get(draft.name) is not None:
                continue
            if self._local(draft.path) in tracked_paths:
                continue
            report.new.append(draft)

        for item in document.items:
            content = self._content(item)
            if content is None:
                report.existing_not_found.append(item)
                continue
            last = synced_hashes.get(item.name)
            if last is not None and fingerprint(content, item.kind) == last:
                report.unchanged.append(item)
            else:
                report.changed.append(item)

        for bucket in (report.new, report.existing_not_found, report.unchanged, report.changed):
            bucket.sort(key=lambda i: i.name)
        return report


def merge_new(document: ConfigurationDocument, report: ScanReport) -> ConfigurationDocument:
    """A new document with the report's ``new`` drafts appended.

    Never removes or rewrites an existing entry.
    """
    items = list(document.items)
    known = set(document.names)
    for draft in report.new:
        if draft.name not in known:
            items.append(draft)
            known.add(draft.name)
    return document.model_copy(update={"items": items})


def tracking_state(
    name: str, document: ConfigurationDocument, report: Optional[ScanReport] = None
) -> TrackingState:
    if document.get(name) is not None:
        return TrackingState.TRACKED
    if report is not None and any(d.name == name for d in report.new):
        return TrackingState.DISCOVERED
    return TrackingState.NOT_TRACKED
