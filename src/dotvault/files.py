"""
Local file primitives -- hashing, atomic writes, backups, key extraction.

Every write goes through a temp file in the destination directory,
gets its final mode before it becomes visible, and is then renamed
into place. A crash leaves either the old file or the new one.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import PermissionDenied
from .models import SecretItem, SecretKind

logger = logging.getLogger("dotvault.files")

MODE_PRIVATE_KEY = 0o600
MODE_PUBLIC_KEY = 0o644
MODE_SECRET_FILE = 0o600
MODE_DIRECTORY = 0o700

_PUBLIC_KEY_PREFIXES = (
    "ssh-ed25519 ",
    "ssh-rsa ",
    "ssh-dss ",
    "ssh-ecdsa ",
    "ecdsa-sha2-",
    "sk-ssh-ed25519@openssh.com ",
    "sk-ecdsa-sha2-",
)


def normalize_newlines(content: str) -> str:
    """Canonicalize line endings and trailing newlines.

    ``\\r\\n`` and ``\\r`` become ``\\n``; any run of trailing newlines
    collapses to exactly one. Empty content stays empty.
    """
    text = content.replace("\r\n", "\n").replace("\r", "\n")
    text = text.rstrip("\n")
    return text + "\n" if text else ""


def _is_begin_private(line: str) -> bool:
    line = line.strip()
    return line.startswith("-----BEGIN") and line.endswith("PRIVATE KEY-----")


def _is_end_private(line: str) -> bool:
    line = line.strip()
    return line.startswith("-----END") and line.endswith("PRIVATE KEY-----")


def extract_private_key(notes: str) -> str:
    """Pull the first private key block out of free-form notes."""
    result: list[str] = []
    in_key = False
    for line in normalize_newlines(notes).split("\n"):
        if not in_key and _is_begin_private(line):
            in_key = True
        if in_key:
            result.append(line.strip())
            if _is_end_private(line):
                break
    return "\n".join(result) + "\n" if result else ""


def extract_public_key(notes: str) -> str:
    """Pull the first public key line out of free-form notes."""
    for line in normalize_newlines(notes).split("\n"):
        line = line.strip()
        if line.startswith(_PUBLIC_KEY_PREFIXES):
            return line + "\n"
    return ""


def compose_key_pair(private_key: str, public_key: str = "") -> str:
    """Join a private key and its public line into one note body."""
    body = normalize_newlines(private_key)
    if public_key.strip():
        body += normalize_newlines(public_key)
    return body


def canonical_content(kind: SecretKind, content: str) -> str:
    """The form of ``content`` that fingerprints are computed over."""
    if kind == SecretKind.SSH_KEY_PAIR:
        return compose_key_pair(extract_private_key(content), extract_public_key(content))
    return normalize_newlines(content)


def fingerprint(content: Optional[str], kind: SecretKind = SecretKind.FILE) -> Optional[str]:
    """SHA-256 hex digest of canonical content, or None when absent."""
    if content is None:
        return None
    canonical = canonical_content(kind, content)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def read_text(path: Path) -> Optional[str]:
    """Read a local file, returning None if it does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except IsADirectoryError:
        return None
    except PermissionError as exc:
        raise PermissionDenied(
            f"Cannot read {path}",
            str(exc),
            f"chmod u+r {path}",
        ) from exc


def read_local(item: SecretItem) -> Optional[str]:
    """Read an item's local content in the same shape the vault stores.

    For ssh key pairs the private key and the ``.pub`` line are joined;
    a missing private key means the item is absent locally.
    """
    primary = read_text(item.local_path)
    if primary is None:
        return None
    if item.kind == SecretKind.SSH_KEY_PAIR:
        public = read_text(item.local_paths[1]) or ""
        return compose_key_pair(primary, public)
    return primary


def ensure_directory(path: Path) -> None:
    """Create ``path`` (and parents) with owner-only permissions."""
    missing = []
    current = path
    while not current.exists():
        missing.append(current)
        if current.parent == current:
            break
        current = current.parent
    for directory in reversed(missing):
        directory.mkdir(mode=MODE_DIRECTORY, exist_ok=True)
        os.chmod(directory, MODE_DIRECTORY)


def atomic_write(path: Path, content: str | bytes, mode: int = MODE_SECRET_FILE) -> Path:
    """Write ``content`` to ``path`` atomically with the given mode.

    The temp file lives in the destination directory so the final
    ``os.replace`` never crosses a filesystem boundary.

    Args:
        path: Destination file.
        content: Text (UTF-8 encoded) or bytes.
        mode: Permission bits applied before the rename.

    Returns:
        The destination path.
    """
    ensure_directory(path.parent)
    data = content.encode("utf-8") if isinstance(content, str) else content

    try:
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
    except PermissionError as exc:
        raise PermissionDenied(
            f"Cannot write {path}", str(exc), f"chmod u+w {path.parent}"
        ) from exc

    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.debug("Wrote %s (mode %o)", path, mode)
    return path


def backup_file(path: Path, now: Optional[datetime] = None) -> Optional[Path]:
    """Copy an existing file to ``<path>.bak-YYYYmmddHHMMSS`` (mode 0600).

    Returns:
        The backup path, or None if there was nothing to back up.
    """
    if not path.is_file():
        return None
    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    backup = path.with_name(f"{path.name}.bak-{stamp}")
    counter = 1
    while backup.exists():
        backup = path.with_name(f"{path.name}.bak-{stamp}-{counter}")
        counter += 1
    atomic_write(backup, path.read_bytes(), MODE_SECRET_FILE)
    logger.info("Backed up %s -> %s", path, backup.name)
    return backup


def write_item(item: SecretItem, notes: str) -> list[Path]:
    """Write vault notes to an item's local paths with its permission policy.

    Existing files are backed up first. Returns the paths written.
    """
    written: list[Path] = []

    if item.kind == SecretKind.SSH_KEY_PAIR:
        private_key = extract_private_key(notes)
        if not private_key:
            raise PermissionDenied(
                f"Cannot restore {item.name}",
                "vault item holds no private key block",
                f"dotvault push {item.name} --force",
            )
        private_path, public_path = item.local_paths
        backup_file(private_path)
        written.append(atomic_write(private_path, private_key, MODE_PRIVATE_KEY))

        public_key = extract_public_key(notes)
        if public_key:
            backup_file(public_path)
            written.append(atomic_write(public_path, public_key, MODE_PUBLIC_KEY))
        return written

    backup_file(item.local_path)
    written.append(atomic_write(item.local_path, notes, MODE_SECRET_FILE))
    return written
