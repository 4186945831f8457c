"""
pass adapter -- the standard Unix password manager.

Items live at ``<prefix>/<name>`` inside the password store. There is
no session token: gpg-agent prompts when it needs to. Sync is a git
pull/push of the store when it is a git checkout.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from ..errors import BackendUnavailable, ItemAlreadyExists, ItemNotFound
from ..files import ensure_directory
from ..models import ItemRecord, Location, LocationType, Session
from .base import Capability, Check, VaultBackend, ensure_env, register_backend

logger = logging.getLogger("dotvault.backends.pass")


@register_backend
class PassBackend(VaultBackend):
    """Local GPG-encrypted store managed by ``pass``."""

    backend_id = "pass"
    display_name = "pass"
    executable = "pass"
    login_command = "pass init <gpg-id>"
    unlock_command = "gpg-connect-agent /bye"
    install_hint = "brew install pass  # or: apt install pass"
    session_env_var = None
    requires_network = False
    capabilities = frozenset({Capability.ITEM_ID, Capability.HEALTH, Capability.LOCATIONS})

    not_found_markers = ("is not in the password store",)

    @property
    def store_dir(self) -> Path:
        return self.settings.password_store_dir.expanduser()

    @property
    def prefix(self) -> str:
        return self.settings.pass_prefix.strip("/")

    def _command_env(self, session: Optional[Session]) -> Optional[dict[str, str]]:
        return ensure_env({"PASSWORD_STORE_DIR": str(self.store_dir)}, self.env)

    def _pass_path(self, name: str, prefix: Optional[str] = None) -> str:
        prefix = self.prefix if prefix is None else prefix.strip("/")
        return f"{prefix}/{name}" if prefix else name

    def _entry_file(self, pass_path: str) -> Path:
        return self.store_dir / f"{pass_path}.gpg"

    def _names_under(self, directory: Path) -> list[str]:
        if not directory.is_dir():
            return []
        return sorted(
            str(path.relative_to(directory))[: -len(".gpg")]
            for path in directory.rglob("*.gpg")
            if path.is_file()
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        result = self._run(["pass", "version"])
        if result.returncode != 0:
            raise BackendUnavailable(
                "pass is not working",
                (result.stderr or "").strip() or f"exit code {result.returncode}",
                self.install_hint,
            )
        if not self.store_dir.is_dir():
            raise BackendUnavailable(
                "Password store not initialized",
                f"{self.store_dir} does not exist",
                self.login_command,
            )

    def login_check(self) -> bool:
        if not self.store_dir.is_dir():
            return False
        return self._run(["pass", "ls"]).returncode == 0

    def check_session(self, token: str) -> bool:
        # No tokens; gpg-agent owns authentication.
        return True

    def unlock(self) -> str:
        return ""

    def sync(self, session: Session) -> None:
        if not (self.store_dir / ".git").exists():
            logger.debug("Password store is not a git checkout; nothing to sync")
            return
        for args in (["pull", "--rebase"], ["push"]):
            result = self._run(["git", "-C", str(self.store_dir), *args], session=session)
            if result.returncode != 0:
                logger.warning(
                    "git %s in password store failed: %s",
                    args[0], (result.stderr or "").strip(),
                )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _location_prefix(self, location: Optional[Location]) -> str:
        """Directory an item lives under; matches ``create_item_in_location``."""
        if location is not None and location.type == LocationType.DIRECTORY and location.value:
            return location.value.strip("/")
        return self.prefix

    def get_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> Optional[ItemRecord]:
        prefix = self._location_prefix(location)
        pass_path = self._pass_path(name, prefix)
        if not self._entry_file(pass_path).is_file():
            return None
        result = self._run(["pass", "show", pass_path], session=session)
        if result.returncode != 0:
            raise self._failure(result, f"Failed to decrypt '{name}'")
        return ItemRecord(id=pass_path, name=name, notes=result.stdout, location=prefix or None)

    def item_exists(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> bool:
        return self._entry_file(self._pass_path(name, self._location_prefix(location))).is_file()

    def list_items(self, session: Session) -> list[ItemRecord]:
        directory = self.store_dir / self.prefix if self.prefix else self.store_dir
        return [
            ItemRecord(id=self._pass_path(name), name=name, location=self.prefix or None)
            for name in self._names_under(directory)
        ]

    def _insert(self, pass_path: str, content: str, session: Session, force: bool) -> None:
        ensure_directory(self._entry_file(pass_path).parent)
        args = ["pass", "insert", "-m"]
        if force:
            args.append("-f")
        args.append(pass_path)
        result = self._run(args, session=session, input_text=content)
        if result.returncode != 0:
            raise self._failure(result, f"Failed to write '{pass_path}' to pass")

    def create_item(self, name: str, content: str, session: Session) -> None:
        self._create(name, content, session, self.prefix)

    def _create(self, name: str, content: str, session: Session, prefix: str) -> None:
        pass_path = self._pass_path(name, prefix)
        if self._entry_file(pass_path).exists():
            raise ItemAlreadyExists(
                f"Item '{name}' already exists in pass",
                f"{pass_path} is present",
                f"dotvault push {name}",
            )
        self._insert(pass_path, content, session, force=False)
        logger.info("Created pass entry %s", pass_path)

    def update_item(
        self, name: str, content: str, session: Session, location: Optional[Location] = None
    ) -> None:
        pass_path = self._pass_path(name, self._location_prefix(location))
        if not self._entry_file(pass_path).is_file():
            raise ItemNotFound(
                f"Item '{name}' not found in pass",
                f"{pass_path} does not exist",
                f"dotvault push {name}",
            )
        self._insert(pass_path, content, session, force=True)
        logger.info("Updated pass entry %s", pass_path)

    def delete_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> None:
        pass_path = self._pass_path(name, self._location_prefix(location))
        if not self._entry_file(pass_path).is_file():
            raise ItemNotFound(
                f"Item '{name}' not found in pass",
                f"{pass_path} does not exist",
                "dotvault list",
            )
        result = self._run(["pass", "rm", "-f", pass_path], session=session)
        if result.returncode != 0:
            raise self._failure(result, f"Failed to delete '{name}' from pass", item=name)
        logger.info("Deleted pass entry %s", pass_path)

    # ------------------------------------------------------------------
    # Optional capabilities
    # ------------------------------------------------------------------

    def health_check(self) -> list[Check]:
        installed = shutil.which("pass") is not None
        checks = [Check(
            name="pass:installed",
            description="pass installed",
            passed=installed,
            fix="" if installed else self.install_hint,
        )]
        has_gpg = shutil.which("gpg") is not None
        checks.append(Check(
            name="pass:gpg",
            description="gpg installed",
            passed=has_gpg,
            fix="" if has_gpg else "brew install gnupg  # or: apt install gnupg",
        ))
        store_ok = self.store_dir.is_dir()
        count = len(self._names_under(self.store_dir)) if store_ok else 0
        checks.append(Check(
            name="pass:store",
            description="Password store exists",
            passed=store_ok,
            detail=f"{count} entries" if store_ok else str(self.store_dir),
            fix="" if store_ok else self.login_command,
        ))
        return checks

    def list_locations(self, session: Session) -> list[str]:
        if not self.store_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.store_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        )

    def location_exists(self, location: str, session: Session) -> bool:
        return bool(location) and (self.store_dir / location).is_dir()

    def create_location(self, location: str, session: Session) -> None:
        if not location:
            raise BackendUnavailable("Directory name required", "", "dotvault list")
        ensure_directory(self.store_dir / location)
        logger.info("Created directory %s in password store", location)

    def list_items_in_location(
        self, location: Optional[Location], session: Session
    ) -> list[ItemRecord]:
        if location is None or location.type != LocationType.DIRECTORY:
            if location is not None:
                logger.warning("pass only understands 'directory' locations, got %s", location.type.value)
            return self.list_items(session)
        prefix = location.value or self.prefix
        return [
            ItemRecord(id=self._pass_path(name, prefix), name=name, location=prefix)
            for name in self._names_under(self.store_dir / prefix)
        ]

    def create_item_in_location(
        self,
        name: str,
        content: str,
        location: Optional[Location],
        session: Session,
    ) -> None:
        self._create(name, content, session, self._location_prefix(location))
