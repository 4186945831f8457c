"""
Data models -- what we track, where it lives, and how we talk to the vault.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class SecretKind(str, Enum):
    """Shape of a tracked secret on disk."""

    FILE = "file"
    SSH_KEY_PAIR = "ssh-key-pair"
    KEY_VALUE_FILE = "key-value-file"


class SyncPolicy(str, Enum):
    """When an item is eligible for push."""

    ALWAYS = "always"
    MANUAL = "manual"
    NEVER = "never"


class LocationType(str, Enum):
    """Backend-side grouping kinds."""

    FOLDER = "folder"
    PREFIX = "prefix"
    TAG = "tag"
    DIRECTORY = "directory"
    VAULT = "vault"


class Location(BaseModel):
    """Optional backend-side grouping (folder, tag, prefix...)."""

    type: LocationType
    value: str


def expand_path(path: str) -> Path:
    """Expand ``~`` and ``$HOME`` in a document path."""
    if path.startswith("$HOME/"):
        path = "~/" + path[len("$HOME/"):]
    return Path(os.path.expanduser(path))


class SecretItem(BaseModel):
    """A tracked secret unit as recorded in the configuration document."""

    name: str
    path: str
    kind: SecretKind = SecretKind.FILE
    required: bool = False
    sync: SyncPolicy = SyncPolicy.ALWAYS
    location: Optional[Location] = None

    @field_validator("name", "path")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @property
    def local_path(self) -> Path:
        """Primary local path with ``~`` expanded."""
        return expand_path(self.path)

    @property
    def local_paths(self) -> list[Path]:
        """All local files this item maps to."""
        primary = self.local_path
        if self.kind == SecretKind.SSH_KEY_PAIR:
            return [primary, primary.with_name(primary.name + ".pub")]
        return [primary]


class ConfigurationDocument(BaseModel):
    """The versioned record of tracked items."""

    version: int
    items: list[SecretItem] = Field(default_factory=list)

    def get(self, name: str) -> Optional[SecretItem]:
        """Look up an item by name."""
        for item in self.items:
            if item.name == name:
                return item
        return None

    @property
    def names(self) -> list[str]:
        return [item.name for item in self.items]


class ItemRecord(BaseModel):
    """An item as reported by a backend."""

    id: Optional[str] = None
    name: str
    notes: Optional[str] = None
    item_type: str = "secure_note"
    location: Optional[str] = None


class SessionState(str, Enum):
    """Lifecycle of a backend session."""

    UNAUTHENTICATED = "unauthenticated"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    EXPIRED = "expired"


class SessionSource(str, Enum):
    """Where a session token came from."""

    ENV = "env"
    CACHE = "cache"
    UNLOCK = "unlock"


class Session(BaseModel):
    """An authenticated, immutable handle on one backend.

    The token is a ``SecretStr`` so it never shows up in reprs,
    logs or CLI output.
    """

    model_config = ConfigDict(frozen=True)

    backend: str
    token: SecretStr = SecretStr("")
    state: SessionState = SessionState.UNLOCKED
    source: SessionSource = SessionSource.UNLOCK

    @property
    def secret(self) -> str:
        """The raw token, for handing to the backend tool only."""
        return self.token.get_secret_value()
