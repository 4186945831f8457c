"""
1Password adapter -- Secure Notes via the ``op`` v2 CLI.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from ..errors import BackendUnavailable, ItemAlreadyExists, ItemNotFound
from ..models import ItemRecord, Location, LocationType, Session, SessionSource
from .base import Capability, Check, VaultBackend, ensure_env, register_backend

logger = logging.getLogger("dotvault.backends.onepassword")

MIN_MAJOR_VERSION = 2
NOTES_FIELD = "notesPlain"
CATEGORY = "Secure Note"


@register_backend
class OnePasswordBackend(VaultBackend):
    """1Password through ``op``. Desktop integration or a service account."""

    backend_id = "1password"
    display_name = "1Password"
    executable = "op"
    login_command = "op signin"
    unlock_command = "eval $(op signin)"
    install_hint = "brew install 1password-cli  # https://developer.1password.com/docs/cli"
    session_env_var = "OP_SERVICE_ACCOUNT_TOKEN"
    requires_network = True
    capabilities = frozenset({Capability.ITEM_ID, Capability.HEALTH, Capability.LOCATIONS})

    not_found_markers = ("isn't an item", "not found", "no item")
    expired_markers = ("session expired", "not currently signed in", "you are not signed in")

    @property
    def vault(self) -> str:
        return self.settings.onepassword_vault

    def _vault_for(self, location: Optional[Location]) -> str:
        if location is not None and location.type == LocationType.VAULT and location.value:
            return location.value
        return self.vault

    def _command_env(self, session: Optional[Session]) -> Optional[dict[str, str]]:
        if session is not None and session.source == SessionSource.ENV and session.secret:
            return ensure_env({"OP_SERVICE_ACCOUNT_TOKEN": session.secret}, self.env)
        return None

    @staticmethod
    def _session_args(session: Optional[Session]) -> list[str]:
        if session is None or not session.secret or session.source == SessionSource.ENV:
            return []
        return ["--session", session.secret]

    def _op(self, args: list[str], session: Optional[Session], **kwargs):
        return self._run(["op", *args, *self._session_args(session)], session=session, **kwargs)

    def _json(self, args: list[str], session: Session, what: str, item: Optional[str] = None):
        result = self._op([*args, "--format", "json"], session)
        if result.returncode != 0:
            raise self._failure(result, what, item=item)
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as exc:
            raise BackendUnavailable(what, f"unparseable op output: {exc}") from exc

    @staticmethod
    def _record(data: dict, with_notes: bool = True) -> ItemRecord:
        notes = None
        if with_notes:
            for field in data.get("fields") or []:
                if field.get("id") == NOTES_FIELD or field.get("purpose") == "NOTES":
                    notes = field.get("value") or ""
                    break
        vault = (data.get("vault") or {}).get("name")
        return ItemRecord(
            id=data.get("id"),
            name=data.get("title", ""),
            notes=notes,
            item_type="secure_note" if data.get("category") == "SECURE_NOTE" else str(data.get("category", "")).lower(),
            location=vault,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _version(self) -> str:
        result = self._run(["op", "--version"])
        if result.returncode != 0:
            raise BackendUnavailable(
                "1Password CLI is not working",
                (result.stderr or "").strip() or f"exit code {result.returncode}",
                self.install_hint,
            )
        return (result.stdout or "").strip()

    def init(self) -> None:
        version = self._version()
        try:
            major = int(version.split(".")[0])
        except ValueError:
            major = 0
        if major < MIN_MAJOR_VERSION:
            raise BackendUnavailable(
                "1Password CLI is too old",
                f"found op {version or 'unknown'}, need {MIN_MAJOR_VERSION}.x or newer",
                self.install_hint,
            )

    def login_check(self) -> bool:
        if self.env.get(self.session_env_var or ""):
            return True
        return self._run(["op", "account", "list"]).returncode == 0

    def check_session(self, token: str) -> bool:
        if not token:
            return False
        source = (
            SessionSource.ENV
            if token == self.env.get(self.session_env_var or "")
            else SessionSource.CACHE
        )
        session = Session(backend=self.backend_id, token=token, source=source)
        return self._op(["vault", "list"], session).returncode == 0

    def unlock(self) -> str:
        # With desktop integration signin prints nothing and succeeds.
        result = self._run(["op", "signin", "--raw"], interactive=True)
        if result.returncode != 0:
            raise BackendUnavailable(
                "1Password sign-in failed",
                f"op signin exited with {result.returncode}",
                self.login_command,
            )
        return (result.stdout or "").strip()

    def sync(self, session: Session) -> None:
        # op syncs by itself; this only proves the vault is reachable.
        result = self._op(["vault", "get", self.vault], session)
        if result.returncode != 0:
            raise self._failure(result, f"Cannot reach 1Password vault '{self.vault}'")

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> Optional[ItemRecord]:
        return self._lookup(name, session, self._vault_for(location))

    def _lookup(self, name: str, session: Session, vault: str) -> Optional[ItemRecord]:
        result = self._op(["item", "get", name, "--vault", vault, "--format", "json"], session)
        if result.returncode != 0:
            error = self._failure(result, f"Failed to read '{name}' from 1Password", item=name)
            if isinstance(error, ItemNotFound):
                return None
            raise error
        try:
            return self._record(json.loads(result.stdout or "{}"))
        except json.JSONDecodeError as exc:
            raise BackendUnavailable(f"Failed to read '{name}'", f"unparseable op output: {exc}") from exc

    def list_items(self, session: Session) -> list[ItemRecord]:
        return self._list(["--vault", self.vault], session)

    def _list(self, filters: list[str], session: Session) -> list[ItemRecord]:
        items = self._json(["item", "list", *filters], session, "Failed to list 1Password items") or []
        return [self._record(data, with_notes=False) for data in items]

    def _create(self, name: str, content: str, session: Session, vault: str, tags: Optional[str] = None) -> None:
        if self._lookup(name, session, vault) is not None:
            raise ItemAlreadyExists(
                f"Item '{name}' already exists in 1Password",
                "create refuses to overwrite",
                f"dotvault push {name}",
            )
        args = ["item", "create", "--category", CATEGORY, "--title", name, "--vault", vault]
        if tags:
            args += ["--tags", tags]
        args.append(f"{NOTES_FIELD}={content}")
        result = self._op(args, session)
        if result.returncode != 0:
            raise self._failure(result, f"Failed to create '{name}' in 1Password")
        logger.info("Created 1Password item %s", name)

    def create_item(self, name: str, content: str, session: Session) -> None:
        self._create(name, content, session, self.vault)

    def update_item(
        self, name: str, content: str, session: Session, location: Optional[Location] = None
    ) -> None:
        vault = self._vault_for(location)
        if self.get_item(name, session, location=location) is None:
            raise ItemNotFound(
                f"Item '{name}' not found in 1Password",
                "update needs an existing item",
                f"dotvault push {name}",
            )
        result = self._op(
            ["item", "edit", name, "--vault", vault, f"{NOTES_FIELD}={content}"], session
        )
        if result.returncode != 0:
            raise self._failure(result, f"Failed to update '{name}' in 1Password", item=name)
        logger.info("Updated 1Password item %s", name)

    def delete_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> None:
        result = self._op(["item", "delete", name, "--vault", self._vault_for(location)], session)
        if result.returncode != 0:
            raise self._failure(result, f"Failed to delete '{name}' from 1Password", item=name)
        logger.info("Deleted 1Password item %s", name)

    # ------------------------------------------------------------------
    # Optional capabilities
    # ------------------------------------------------------------------

    def health_check(self) -> list[Check]:
        try:
            version = self._version()
            installed = True
        except BackendUnavailable:
            version, installed = "not found", False
        checks = [Check(
            name="op:installed",
            description="1Password CLI",
            passed=installed,
            detail=version,
            fix="" if installed else self.install_hint,
        )]
        if installed:
            signed_in = self.login_check()
            checks.append(Check(
                name="op:signin",
                description="Signed in to 1Password",
                passed=signed_in,
                fix="" if signed_in else self.login_command,
            ))
            if signed_in:
                reachable = self._run(["op", "vault", "get", self.vault]).returncode == 0
                checks.append(Check(
                    name="op:vault",
                    description=f"Vault '{self.vault}' accessible",
                    passed=reachable,
                    fix="" if reachable else "export ONEPASSWORD_VAULT=<vault name>",
                ))
        return checks

    def list_locations(self, session: Session) -> list[str]:
        vaults = self._json(["vault", "list"], session, "Failed to list 1Password vaults") or []
        return sorted(v["name"] for v in vaults if v.get("name"))

    def create_location(self, location: str, session: Session) -> None:
        if self.location_exists(location, session):
            return
        result = self._op(["vault", "create", location], session)
        if result.returncode != 0:
            raise self._failure(result, f"Failed to create vault '{location}'")
        logger.info("Created 1Password vault %s", location)

    def list_items_in_location(
        self, location: Optional[Location], session: Session
    ) -> list[ItemRecord]:
        if location is None or not location.value:
            return self.list_items(session)
        if location.type == LocationType.VAULT:
            return self._list(["--vault", location.value], session)
        if location.type == LocationType.TAG:
            return self._list(["--vault", self.vault, "--tags", location.value], session)
        logger.warning("1Password ignores location type %s", location.type.value)
        return self.list_items(session)

    def create_item_in_location(
        self,
        name: str,
        content: str,
        location: Optional[Location],
        session: Session,
    ) -> None:
        if location is not None and location.type == LocationType.VAULT and location.value:
            self._create(name, content, session, location.value)
        elif location is not None and location.type == LocationType.TAG and location.value:
            self._create(name, content, session, self.vault, tags=location.value)
        else:
            self._create(name, content, session, self.vault)
