"""Shared test fixtures for dotvault."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

import pytest

from dotvault.backends.base import Capability, Check, VaultBackend, register_backend
from dotvault.config import Settings
from dotvault.engine import SyncEngine
from dotvault.errors import ItemAlreadyExists, ItemNotFound, SessionExpired
from dotvault.ledger import SyncLedger
from dotvault.models import ItemRecord, Location, Session
from dotvault.session import SessionManager


class FakeVaultState:
    """Everything the fake backend remembers between instances."""

    def __init__(self):
        self.items: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.logged_in = True
        self.valid_tokens = {"tok-1"}
        self.next_token = "tok-1"
        self.expire_next: set[str] = set()
        # Tokens item operations reject; on_revoked runs before each rejection.
        self.revoked: set[str] = set()
        self.on_revoked: Optional[Callable[[], None]] = None
        self.lock = threading.Lock()

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)


@register_backend
class FakeBackend(VaultBackend):
    """In-memory backend. State lives on the class so CLI runs can see it."""

    backend_id = "fake"
    display_name = "Fake Vault"
    login_command = "fake login"
    unlock_command = "fake unlock"
    install_hint = "nothing to install"
    session_env_var = "FAKE_SESSION"
    requires_network = True
    capabilities = frozenset({Capability.ITEM_ID, Capability.HEALTH})

    state = FakeVaultState()

    def _call(self, operation: str, session: Optional[Session], *args) -> None:
        with self.state.lock:
            self.state.calls.append((operation, *args))
            expire = operation in self.state.expire_next
            self.state.expire_next.discard(operation)
        if session is not None and session.secret in self.state.revoked:
            if self.state.on_revoked is not None:
                self.state.on_revoked()
            expire = True
        if expire:
            raise SessionExpired(f"{operation} failed", "token expired", self.unlock_command)

    def init(self) -> None:
        self.state.calls.append(("init",))

    def login_check(self) -> bool:
        self.state.calls.append(("login_check",))
        return self.state.logged_in

    def check_session(self, token: str) -> bool:
        self.state.calls.append(("check_session", token))
        return token in self.state.valid_tokens

    def unlock(self) -> str:
        self.state.calls.append(("unlock",))
        return self.state.next_token

    def sync(self, session: Session) -> None:
        self._call("sync", session)

    def get_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> Optional[ItemRecord]:
        self._call("get_item", session, name)
        if name not in self.state.items:
            return None
        return ItemRecord(id=f"id-{name}", name=name, notes=self.state.items[name])

    def list_items(self, session: Session) -> list[ItemRecord]:
        self._call("list_items", session)
        return [ItemRecord(id=f"id-{n}", name=n) for n in sorted(self.state.items)]

    def create_item(self, name: str, content: str, session: Session) -> None:
        self._call("create_item", session, name)
        if name in self.state.items:
            raise ItemAlreadyExists(f"'{name}' exists", "", "dotvault push")
        self.state.items[name] = content

    def update_item(
        self, name: str, content: str, session: Session, location: Optional[Location] = None
    ) -> None:
        self._call("update_item", session, name)
        if name not in self.state.items:
            raise ItemNotFound(f"'{name}' not found", "", "dotvault push")
        self.state.items[name] = content

    def delete_item(
        self, name: str, session: Session, location: Optional[Location] = None
    ) -> None:
        self._call("delete_item", session, name)
        if name not in self.state.items:
            raise ItemNotFound(f"'{name}' not found", "", "dotvault list")
        del self.state.items[name]

    def health_check(self) -> list[Check]:
        return [Check(name="fake", description="Fake vault reachable", passed=self.state.logged_in)]


@pytest.fixture(autouse=True)
def fake_state() -> FakeVaultState:
    """Fresh fake-vault state for every test."""
    FakeBackend.state = FakeVaultState()
    return FakeBackend.state


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A throwaway $HOME so ``~`` paths land in tmp_path."""
    user_home = tmp_path / "home"
    user_home.mkdir()
    monkeypatch.setenv("HOME", str(user_home))
    return user_home


@pytest.fixture
def settings(tmp_path: Path, home: Path) -> Settings:
    return Settings(
        backend="fake",
        home=tmp_path / ".dotvault",
        config_path=tmp_path / "config" / "vault-items.yaml",
        max_workers=2,
    )


@pytest.fixture
def backend(settings: Settings) -> FakeBackend:
    return FakeBackend(settings)


@pytest.fixture
def sessions(settings: Settings) -> SessionManager:
    return SessionManager(settings, env={})


@pytest.fixture
def ledger(settings: Settings) -> SyncLedger:
    return SyncLedger.load(settings.ledger_path)


@pytest.fixture
def engine(backend, sessions, ledger, settings) -> SyncEngine:
    return SyncEngine(backend, sessions, ledger, settings)
