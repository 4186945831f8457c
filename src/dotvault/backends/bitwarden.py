"""
Bitwarden adapter -- secure notes via the ``bw`` CLI.

The session token travels in ``BW_SESSION`` in the child environment,
never on argv. Create/edit payloads are base64-encoded JSON on stdin,
which is what ``bw encode`` would produce.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Optional

from ..errors import BackendUnavailable, ItemAlreadyExists, ItemNotFound
from ..models import ItemRecord, Location, LocationType, Session
from .base import Capability, Check, VaultBackend, ensure_env, register_backend

logger = logging.getLogger("dotvault.backends.bitwarden")

SECURE_NOTE_TYPE = 2


@register_backend
class BitwardenBackend(VaultBackend):
    """Bitwarden through the official ``bw`` CLI."""

    backend_id = "bitwarden"
    display_name = "Bitwarden"
    executable = "bw"
    login_command = "bw login"
    unlock_command = "export BW_SESSION=$(bw unlock --raw)"
    install_hint = "npm install -g @bitwarden/cli  # or: brew install bitwarden-cli"
    session_env_var = "BW_SESSION"
    requires_network = True
    capabilities = frozenset(
        {Capability.ITEM_ID, Capability.HEALTH, Capability.ATTACHMENTS, Capability.LOCATIONS}
    )

    not_found_markers = ("not found",)
    expired_markers = ("vault is locked", "you are not logged in", "invalid session")

    def _command_env(self, session: Optional[Session]) -> Optional[dict[str, str]]:
        if session is None or not session.secret:
            return None
        return ensure_env({"BW_SESSION": session.secret}, self.env)

    def _json(self, args: list[str], session: Session, what: str):
        result = self._run(args, session=session)
        if result.returncode != 0:
            raise self._failure(result, what)
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as exc:
            raise BackendUnavailable(what, f"unparseable bw output: {exc}") from exc

    @staticmethod
    def _encode(payload: dict) -> str:
        raw = json.dumps(payload).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    @staticmethod
    def _record(data: dict) -> ItemRecord:
        return ItemRecord(
            id=data.get("id"),
            name=data.get("name", ""),
            notes=data.get("notes"),
            item_type="secure_note" if data.get("type") == SECURE_NOTE_TYPE else str(data.get("type")),
            location=data.get("folderId"),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        result = self._run(["bw", "--version"])
        if result.returncode != 0:
            raise BackendUnavailable(
                "Bitwarden CLI is not working",
                (result.stderr or "").strip() or f"exit code {result.returncode}",
                self.install_hint,
            )

    def login_check(self) -> bool:
        return self._run(["bw", "login", "--check"]).returncode == 0

    def check_session(self, token: str) -> bool:
        if not token:
            return False
        result = self._run(
            ["bw", "unlock", "--check"],
            session=Session(backend=self.backend_id, token=token),
        )
        return result.returncode == 0

    def unlock(self) -> str:
        result = self._run(["bw", "unlock", "--raw"], interactive=True)
        token = (result.stdout or "").strip()
        if result.returncode != 0 or not token:
            raise BackendUnavailable(
                "Bitwarden unlock failed",
                f"bw unlock exited with {result.returncode}",
                self.unlock_command,
            )
        return token

    def sync(self, session: Session) -> None:
        result = self._run(["bw", "sync"], session=session)
        if result.returncode != 0:
            raise self._failure(result, "Bitwarden sync failed")
        logger.info("Bitwarden vault synced")

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _find(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> Optional[dict]:
        # bw get item does fuzzy matching; insist on an exact name.
        args = ["bw", "list", "items", "--search", name]
        if location is not None and location.type == LocationType.FOLDER and location.value:
            folder_id = self._folder_id(location.value, session)
            if folder_id is None:
                return None
            args += ["--folderid", folder_id]
        items = self._json(args, session, f"Failed to look up '{name}' in Bitwarden") or []
        for data in items:
            if data.get("name") == name:
                return data
        return None

    def get_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> Optional[ItemRecord]:
        data = self._find(name, session, location)
        return self._record(data) if data else None

    def list_items(self, session: Session) -> list[ItemRecord]:
        items = self._json(["bw", "list", "items"], session, "Failed to list Bitwarden items") or []
        return [
            self._record({**data, "notes": None})
            for data in items
            if data.get("type") == SECURE_NOTE_TYPE
        ]

    def _new_payload(self, name: str, content: str, folder_id: Optional[str] = None) -> dict:
        payload = {
            "type": SECURE_NOTE_TYPE,
            "secureNote": {"type": 0},
            "name": name,
            "notes": content,
            "favorite": False,
        }
        if folder_id:
            payload["folderId"] = folder_id
        return payload

    def _create(self, payload: dict, session: Session) -> None:
        name = payload["name"]
        if self._find(name, session) is not None:
            raise ItemAlreadyExists(
                f"Item '{name}' already exists in Bitwarden",
                "create refuses to overwrite",
                f"dotvault push {name}",
            )
        result = self._run(
            ["bw", "create", "item"], session=session, input_text=self._encode(payload)
        )
        if result.returncode != 0:
            raise self._failure(result, f"Failed to create '{name}' in Bitwarden")
        logger.info("Created Bitwarden item %s", name)

    def create_item(self, name: str, content: str, session: Session) -> None:
        self._create(self._new_payload(name, content), session)

    def update_item(
        self, name: str, content: str, session: Session, location: Optional[Location] = None
    ) -> None:
        current = self._find(name, session, location)
        if current is None:
            raise ItemNotFound(
                f"Item '{name}' not found in Bitwarden",
                "update needs an existing item",
                f"dotvault push {name}",
            )
        current["notes"] = content
        result = self._run(
            ["bw", "edit", "item", current["id"]],
            session=session,
            input_text=self._encode(current),
        )
        if result.returncode != 0:
            raise self._failure(result, f"Failed to update '{name}' in Bitwarden", item=name)
        logger.info("Updated Bitwarden item %s", name)

    def delete_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> None:
        current = self._find(name, session, location)
        if current is None:
            raise ItemNotFound(
                f"Item '{name}' not found in Bitwarden",
                "nothing to delete",
                "dotvault list",
            )
        result = self._run(["bw", "delete", "item", current["id"]], session=session)
        if result.returncode != 0:
            raise self._failure(result, f"Failed to delete '{name}' from Bitwarden", item=name)
        logger.info("Deleted Bitwarden item %s", name)

    # ------------------------------------------------------------------
    # Optional capabilities
    # ------------------------------------------------------------------

    def health_check(self) -> list[Check]:
        checks = []
        try:
            version = self._run(["bw", "--version"])
            installed = version.returncode == 0
            detail = (version.stdout or "").strip()
        except BackendUnavailable:
            installed, detail = False, "not found"
        checks.append(Check(
            name="bw:installed",
            description="Bitwarden CLI",
            passed=installed,
            detail=detail,
            fix="" if installed else self.install_hint,
        ))
        if installed:
            logged_in = self.login_check()
            checks.append(Check(
                name="bw:login",
                description="Logged in to Bitwarden",
                passed=logged_in,
                fix="" if logged_in else self.login_command,
            ))
        return checks

    def get_attachment(self, name: str, attachment: str, session: Session) -> bytes:
        current = self._find(name, session)
        if current is None:
            raise ItemNotFound(f"Item '{name}' not found in Bitwarden", "", "dotvault list")
        result = self._run(
            ["bw", "get", "attachment", attachment, "--itemid", current["id"], "--raw"],
            session=session,
            binary=True,
        )
        if result.returncode != 0:
            raise self._failure(result, f"Failed to fetch attachment '{attachment}'", item=name)
        return result.stdout or b""

    def _folders(self, session: Session) -> list[dict]:
        return self._json(["bw", "list", "folders"], session, "Failed to list Bitwarden folders") or []

    def _folder_id(self, folder: str, session: Session) -> Optional[str]:
        for data in self._folders(session):
            if data.get("name") == folder:
                return data.get("id")
        return None

    def list_locations(self, session: Session) -> list[str]:
        return sorted(d["name"] for d in self._folders(session) if d.get("name"))

    def create_location(self, location: str, session: Session) -> None:
        if self._folder_id(location, session) is not None:
            return
        result = self._run(
            ["bw", "create", "folder"],
            session=session,
            input_text=self._encode({"name": location}),
        )
        if result.returncode != 0:
            raise self._failure(result, f"Failed to create folder '{location}'")
        logger.info("Created Bitwarden folder %s", location)

    def list_items_in_location(
        self, location: Optional[Location], session: Session
    ) -> list[ItemRecord]:
        if location is None or not location.value:
            return self.list_items(session)
        if location.type == LocationType.PREFIX:
            return [r for r in self.list_items(session) if r.name.startswith(location.value)]
        if location.type == LocationType.FOLDER:
            folder_id = self._folder_id(location.value, session)
            if folder_id is None:
                logger.warning("Folder '%s' not found", location.value)
                return []
            items = self._json(
                ["bw", "list", "items", "--folderid", folder_id],
                session,
                f"Failed to list folder '{location.value}'",
            ) or []
            return [self._record({**d, "notes": None}) for d in items]
        logger.warning("Bitwarden ignores location type %s", location.type.value)
        return self.list_items(session)

    def create_item_in_location(
        self,
        name: str,
        content: str,
        location: Optional[Location],
        session: Session,
    ) -> None:
        folder_id = None
        if location is not None and location.type == LocationType.FOLDER and location.value:
            self.create_location(location.value, session)
            folder_id = self._folder_id(location.value, session)
        self._create(self._new_payload(name, content, folder_id), session)
