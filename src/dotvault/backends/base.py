"""
Backend contract -- what every password-manager adapter must do.

Adapters shell out to the provider's CLI (bw, op, pass). Every call
goes through ``_run`` so it gets a timeout, a clean error when the
tool is missing, and the session token in the child environment
rather than on the command line where possible.
"""

from __future__ import annotations

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Optional, Sequence

from ..config import Settings
from ..errors import (
    BackendTimeout,
    BackendUnavailable,
    ItemNotFound,
    NotSupported,
    SessionExpired,
)
from ..models import ItemRecord, Location, Session

if TYPE_CHECKING:
    from ..session import SessionManager

logger = logging.getLogger("dotvault.backends")


class Capability(str, Enum):
    """Optional capabilities an adapter may declare."""

    ITEM_ID = "item_id"
    HEALTH = "health"
    ATTACHMENTS = "attachments"
    LOCATIONS = "locations"


@dataclass
class Check:
    """A single health check result.

    Attributes:
        name: Short check identifier.
        description: Human-readable description.
        passed: Whether the check passed.
        detail: Extra info (version, path, count, etc.).
        fix: Suggested fix if the check failed.
    """

    name: str
    description: str
    passed: bool
    detail: str = ""
    fix: str = ""


class VaultBackend(ABC):
    """Abstract secret-manager adapter.

    Class attributes describe the provider so that errors can carry a
    remediation command that actually works for it.
    """

    backend_id: str = ""
    display_name: str = ""
    executable: str = ""
    login_command: str = ""
    unlock_command: str = ""
    install_hint: str = ""
    session_env_var: Optional[str] = None
    requires_network: bool = True
    capabilities: frozenset[Capability] = frozenset()

    # Lowercased stderr fragments used to classify failures.
    not_found_markers: tuple[str, ...] = ("not found",)
    expired_markers: tuple[str, ...] = ()

    def __init__(self, settings: Settings, env: Optional[Mapping[str, str]] = None):
        self.settings = settings
        self.env = os.environ if env is None else env

    def name(self) -> str:
        """Human-readable backend name."""
        return self.display_name

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    def _command_env(self, session: Optional[Session]) -> Optional[dict[str, str]]:
        """Environment for the child process. None inherits ours."""
        return None

    def _run(
        self,
        args: Sequence[str],
        *,
        session: Optional[Session] = None,
        input_text: Optional[str] = None,
        interactive: bool = False,
        binary: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a backend CLI command with a timeout.

        Args:
            args: Command and arguments.
            session: Session whose token the command needs, if any.
            input_text: Data for stdin (non-interactive only).
            interactive: Leave stdin/stderr on the terminal so the tool
                can prompt; only stdout is captured.
            binary: Capture stdout as bytes (attachments). stderr is
                still decoded.

        Returns:
            The completed process. Non-zero exit codes are not raised.

        Raises:
            BackendUnavailable: The executable is not installed.
            BackendTimeout: The call exceeded its timeout.
        """
        env = self._command_env(session)
        timeout = self.settings.unlock_timeout if interactive else self.settings.timeout
        logger.debug("%s: running %s", self.backend_id, " ".join(args[:3]))
        try:
            if interactive:
                return subprocess.run(
                    list(args), stdout=subprocess.PIPE, text=True,
                    check=False, env=env, timeout=timeout,
                )
            if binary:
                result = subprocess.run(
                    list(args), capture_output=True, check=False, env=env, timeout=timeout,
                )
                if isinstance(result.stderr, bytes):
                    result.stderr = result.stderr.decode("utf-8", errors="replace")
                return result
            return subprocess.run(
                list(args), input=input_text, capture_output=True, text=True,
                check=False, env=env, timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise BackendUnavailable(
                f"{self.display_name} CLI not found",
                f"'{args[0]}' is not on PATH",
                self.install_hint,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise BackendTimeout(
                f"{self.display_name} call timed out",
                f"'{' '.join(args[:3])}' took longer than {timeout:g}s",
                f"dotvault health  # then retry; check connectivity to {self.display_name}",
            ) from exc

    def _failure(
        self,
        result: subprocess.CompletedProcess,
        what: str,
        item: Optional[str] = None,
    ) -> Exception:
        """Map a failed command to the matching error type."""
        stderr = (result.stderr or "").strip()
        lowered = stderr.lower()
        if item is not None and any(m in lowered for m in self.not_found_markers):
            return ItemNotFound(
                f"Item '{item}' not found in {self.display_name}",
                stderr,
                f"dotvault push {item}",
            )
        if any(m in lowered for m in self.expired_markers):
            return SessionExpired(
                f"{what}: {self.display_name} session is no longer valid",
                stderr,
                self.unlock_command or self.login_command,
            )
        return BackendUnavailable(
            what,
            stderr or f"exit code {result.returncode}",
            f"dotvault health  # {self.display_name}",
        )

    def _not_supported(self, capability: Capability) -> NotSupported:
        return NotSupported(
            f"{self.display_name} does not support {capability.value}",
            "optional capability not implemented by this backend",
            "dotvault backend  # choose a backend that supports it",
        )

    # ------------------------------------------------------------------
    # Required contract
    # ------------------------------------------------------------------

    @abstractmethod
    def init(self) -> None:
        """Verify prerequisites (CLI present, minimum version).

        Raises:
            BackendUnavailable: When a prerequisite is missing.
        """

    @abstractmethod
    def login_check(self) -> bool:
        """Whether the user is logged in. Never prompts."""

    @abstractmethod
    def check_session(self, token: str) -> bool:
        """Whether ``token`` is currently valid. Never prompts."""

    @abstractmethod
    def unlock(self) -> str:
        """Interactively unlock and return a new token (may be empty)."""

    def get_session(self, sessions: "SessionManager") -> Session:
        """Resolve a session through the process-wide SessionManager."""
        return sessions.get_session(self)

    @abstractmethod
    def sync(self, session: Session) -> None:
        """Refresh the backend's local cache from its remote store."""

    @abstractmethod
    def get_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> Optional[ItemRecord]:
        """Fetch an item, or None if it does not exist.

        ``location`` is where ``create_item_in_location`` put the item;
        adapters that place items by location look there instead of in
        their default place.
        """

    def get_notes(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> Optional[str]:
        """Fetch an item's note body, or None if the item does not exist."""
        record = self.get_item(name, session, location=location)
        if record is None:
            return None
        return record.notes or ""

    def item_exists(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> bool:
        return self.get_item(name, session, location=location) is not None

    @abstractmethod
    def list_items(self, session: Session) -> list[ItemRecord]:
        """List items visible to this backend (without notes)."""

    @abstractmethod
    def create_item(self, name: str, content: str, session: Session) -> None:
        """Create an item. Raises ItemAlreadyExists if it is present."""

    @abstractmethod
    def update_item(
        self, name: str, content: str, session: Session, location: Optional[Location] = None
    ) -> None:
        """Replace an item's content. Raises ItemNotFound if absent."""

    @abstractmethod
    def delete_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> None:
        """Delete an item. Raises ItemNotFound if absent."""

    # ------------------------------------------------------------------
    # Optional contract
    # ------------------------------------------------------------------

    def get_item_id(self, name: str, session: Session) -> Optional[str]:
        if not self.supports(Capability.ITEM_ID):
            raise self._not_supported(Capability.ITEM_ID)
        record = self.get_item(name, session)
        return record.id if record else None

    def health_check(self) -> list[Check]:
        raise self._not_supported(Capability.HEALTH)

    def get_attachment(self, name: str, attachment: str, session: Session) -> bytes:
        raise self._not_supported(Capability.ATTACHMENTS)

    def list_locations(self, session: Session) -> list[str]:
        raise self._not_supported(Capability.LOCATIONS)

    def location_exists(self, location: str, session: Session) -> bool:
        return location in self.list_locations(session)

    def create_location(self, location: str, session: Session) -> None:
        raise self._not_supported(Capability.LOCATIONS)

    def list_items_in_location(
        self, location: Optional[Location], session: Session
    ) -> list[ItemRecord]:
        raise self._not_supported(Capability.LOCATIONS)

    def create_item_in_location(
        self,
        name: str,
        content: str,
        location: Optional[Location],
        session: Session,
    ) -> None:
        raise self._not_supported(Capability.LOCATIONS)


_REGISTRY: dict[str, type[VaultBackend]] = {}
_ALIASES = {
    "bw": "bitwarden",
    "op": "1password",
    "onepassword": "1password",
    "password-store": "pass",
}


def register_backend(cls: type[VaultBackend]) -> type[VaultBackend]:
    """Class decorator: make an adapter selectable by its ``backend_id``."""
    if not cls.backend_id:
        raise ValueError(f"{cls.__name__} has no backend_id")
    _REGISTRY[cls.backend_id] = cls
    return cls


def available_backends() -> list[str]:
    """Registered backend identifiers, sorted."""
    return sorted(_REGISTRY)


def create_backend(
    backend_id: str,
    settings: Settings,
    env: Optional[Mapping[str, str]] = None,
) -> VaultBackend:
    """Instantiate the adapter registered under ``backend_id``.

    Args:
        backend_id: Identifier such as ``bitwarden``, ``1password``, ``pass``.
        settings: Runtime settings.
        env: Environment for override variables and child processes.
            Defaults to ``os.environ``.

    Returns:
        A new backend instance.

    Raises:
        BackendUnavailable: If the identifier is unknown.
    """
    key = backend_id.strip().lower()
    key = _ALIASES.get(key, key)
    factory = _REGISTRY.get(key)
    if factory is None:
        known = ", ".join(available_backends())
        raise BackendUnavailable(
            f"Unknown backend '{backend_id}'",
            f"registered backends: {known}",
            f"export DOTVAULT_BACKEND=<{'|'.join(available_backends())}>",
        )
    return factory(settings, env)


def ensure_env(
    extra: dict[str, str], base: Optional[Mapping[str, str]] = None
) -> dict[str, str]:
    """Copy of ``base`` (default ``os.environ``) with ``extra`` applied."""
    env = dict(os.environ if base is None else base)
    env.update(extra)
    return env
