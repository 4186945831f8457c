"""
Error taxonomy for vault and sync operations.

Every surfaced error answers three questions: what failed, why, and
which single command fixes it for the active backend.
"""

from __future__ import annotations

from typing import Optional


class VaultError(Exception):
    """Base class for all dotvault errors.

    Attributes:
        what: Short description of the operation that failed.
        why: The underlying reason.
        remediation: One concrete command the user can run.
    """

    exit_code = 1

    def __init__(self, what: str, why: str = "", remediation: str = ""):
        self.what = what
        self.why = why
        self.remediation = remediation
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.why:
            return f"{self.what}: {self.why}"
        return self.what

    def to_dict(self) -> dict:
        """Serialize for JSON output."""
        return {
            "error": type(self).__name__,
            "what": self.what,
            "why": self.why,
            "remediation": self.remediation,
        }


class AuthRequired(VaultError):
    """The backend needs an interactive login before anything else."""


class SessionExpired(VaultError):
    """A previously valid session token was rejected mid-invocation."""


class BackendUnavailable(VaultError):
    """Backend tool is missing, misconfigured, or the service is unreachable."""


class BackendTimeout(BackendUnavailable):
    """A backend call exceeded its timeout. Never retried automatically."""


class OfflineUnavailable(BackendUnavailable):
    """Operation needs a live session but offline mode is on."""


class ItemNotFound(VaultError):
    """The named item does not exist in the backend."""


class ItemAlreadyExists(VaultError):
    """create was called for an item that already exists."""


class SchemaInvalid(VaultError):
    """The configuration document does not match the schema."""

    def __init__(
        self,
        what: str,
        why: str = "",
        remediation: str = "",
        problems: Optional[list[str]] = None,
    ):
        self.problems = list(problems or [])
        super().__init__(what, why, remediation)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["problems"] = self.problems
        return data


class MigrationFailed(VaultError):
    """A schema migration could not be completed."""


class PermissionDenied(VaultError):
    """A local file could not be read or written."""


class SyncConflict(VaultError):
    """Local and remote both changed since the last sync."""


class NotSupported(VaultError):
    """The backend does not implement an optional capability."""
