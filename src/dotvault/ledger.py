"""
Sync ledger -- the last hash each item was synced at.

Stored as JSON in <home>/sync-state.json, mode 0600. Only a
successful pull or push moves an entry; discovery just reads it.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .files import MODE_SECRET_FILE, atomic_write

logger = logging.getLogger("dotvault.ledger")


class LedgerEntry(BaseModel):
    """Last successful sync of one item."""

    hash: str
    synced_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    direction: str = "pull"


class LedgerState(BaseModel):
    """On-disk ledger shape."""

    items: dict[str, LedgerEntry] = Field(default_factory=dict)


class SyncLedger:
    """Thread-safe wrapper around the ledger file."""

    def __init__(self, path: Path, state: Optional[LedgerState] = None):
        self.path = path
        self._state = state or LedgerState()
        self._lock = threading.Lock()
        self._dirty = False

    @classmethod
    def load(cls, path: Path) -> "SyncLedger":
        """Load the ledger. Missing or corrupt files give an empty ledger."""
        if not path.exists():
            return cls(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls(path, LedgerState.model_validate(data))
        except (json.JSONDecodeError, ValidationError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring corrupt sync ledger %s: %s", path, exc)
            return cls(path)

    def last_hash(self, name: str) -> Optional[str]:
        entry = self._state.items.get(name)
        return entry.hash if entry else None

    def hashes(self) -> dict[str, str]:
        return {name: entry.hash for name, entry in self._state.items.items()}

    def record(self, name: str, digest: str, direction: str) -> None:
        with self._lock:
            self._state.items[name] = LedgerEntry(hash=digest, direction=direction)
            self._dirty = True

    def save(self) -> None:
        """Write atomically if anything changed."""
        with self._lock:
            if not self._dirty:
                return
            atomic_write(self.path, self._state.model_dump_json(indent=2), MODE_SECRET_FILE)
            self._dirty = False
        logger.debug("Saved sync ledger %s", self.path)
