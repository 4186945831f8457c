"""
Session manager -- one authenticated session per backend per process.

Resolution order:
    1. backend override variable (BW_SESSION, OP_SERVICE_ACCOUNT_TOKEN)
    2. cached token in <home>/sessions/<backend>.session
    3. interactive unlock (only when already logged in)

A non-empty token from unlock is cached with mode 0600.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

from .config import Settings
from .errors import AuthRequired, OfflineUnavailable, PermissionDenied, SessionExpired
from .files import MODE_SECRET_FILE, atomic_write, ensure_directory
from .models import Session, SessionSource, SessionState

if TYPE_CHECKING:
    from .backends.base import VaultBackend

logger = logging.getLogger("dotvault.session")


class SessionManager:
    """Resolves and memoizes sessions. Construct once, pass explicitly.

    Args:
        settings: Runtime settings (home directory, offline flag).
        env: Environment mapping for override variables. Defaults to
            ``os.environ``.
    """

    def __init__(self, settings: Settings, env: Optional[Mapping[str, str]] = None):
        self.settings = settings
        self._env = os.environ if env is None else env
        self._sessions: dict[str, Session] = {}
        self._reauthenticated: set[str] = set()
        self._lock = threading.Lock()

    def cache_path(self, backend: "VaultBackend") -> Path:
        return self.settings.sessions_dir / f"{backend.backend_id}.session"

    def get_session(self, backend: "VaultBackend") -> Session:
        """Return the session for ``backend``, resolving it at most once.

        Raises:
            OfflineUnavailable: Offline mode and the backend needs the network.
            AuthRequired: The user has never logged in.
            SessionExpired: The session expired again after re-authentication.
        """
        if self.settings.offline and backend.requires_network:
            raise OfflineUnavailable(
                f"{backend.display_name} needs the network",
                "DOTVAULT_OFFLINE is set",
                "unset DOTVAULT_OFFLINE",
            )
        with self._lock:
            session = self._sessions.get(backend.backend_id)
            if session is None:
                session = self._resolve(backend)
                self._sessions[backend.backend_id] = session
            if session.state == SessionState.EXPIRED:
                raise SessionExpired(
                    f"{backend.display_name} session expired",
                    "re-authentication was already used in this run",
                    backend.unlock_command or backend.login_command,
                )
            return session

    def reauthenticate(
        self,
        backend: "VaultBackend",
        expired: SessionExpired,
        stale: Optional[Session] = None,
    ) -> Session:
        """Replace an expired session. Allowed once per backend per process.

        Args:
            backend: Backend whose call failed.
            expired: The error the call raised.
            stale: The session that call used. When another caller has
                already replaced it, the replacement is returned and no
                new unlock happens.

        Raises:
            SessionExpired: ``expired`` again, if re-auth was already used.
        """
        with self._lock:
            current = self._sessions.get(backend.backend_id)
            if (
                stale is not None
                and current is not None
                and current is not stale
                and current.state == SessionState.UNLOCKED
            ):
                logger.debug("%s session already renewed", backend.display_name)
                return current
            if backend.backend_id in self._reauthenticated:
                if current is not None:
                    self._sessions[backend.backend_id] = current.model_copy(
                        update={"state": SessionState.EXPIRED}
                    )
                raise expired
            self._reauthenticated.add(backend.backend_id)
            logger.warning("%s session expired; re-authenticating", backend.display_name)
            self._sessions.pop(backend.backend_id, None)
            self._discard(backend)
            session = self._unlock(backend)
            self._sessions[backend.backend_id] = session
            return session

    def state(self, backend: "VaultBackend") -> SessionState:
        """Where ``backend`` stands without prompting or resolving."""
        with self._lock:
            session = self._sessions.get(backend.backend_id)
        if session is not None:
            return session.state
        if not backend.login_check():
            return SessionState.UNAUTHENTICATED
        return SessionState.LOCKED

    def clear(self, backend: "VaultBackend") -> bool:
        """Forget the session and delete its cache file.

        Returns:
            True if a cached token was removed.
        """
        with self._lock:
            self._sessions.pop(backend.backend_id, None)
            return self._discard(backend)

    # ------------------------------------------------------------------

    def _resolve(self, backend: "VaultBackend") -> Session:
        if backend.session_env_var:
            token = self._env.get(backend.session_env_var, "")
            if token and backend.check_session(token):
                logger.debug("Using %s from environment", backend.session_env_var)
                return Session(backend=backend.backend_id, token=token, source=SessionSource.ENV)
            if token:
                logger.warning("%s is set but not valid; ignoring it", backend.session_env_var)

        cached = self._read_cache(backend)
        if cached:
            if backend.check_session(cached):
                logger.debug("Using cached %s session", backend.display_name)
                return Session(backend=backend.backend_id, token=cached, source=SessionSource.CACHE)
            logger.info("Cached %s session is no longer valid; discarding", backend.display_name)
            self._discard(backend)

        return self._unlock(backend)

    def _unlock(self, backend: "VaultBackend") -> Session:
        if not backend.login_check():
            raise AuthRequired(
                f"Not logged in to {backend.display_name}",
                "no usable session and no active login",
                backend.login_command,
            )
        token = backend.unlock()
        if token:
            self._write_cache(backend, token)
        return Session(
            backend=backend.backend_id,
            token=token,
            state=SessionState.UNLOCKED,
            source=SessionSource.UNLOCK,
        )

    def _read_cache(self, backend: "VaultBackend") -> str:
        path = self.cache_path(backend)
        try:
            return path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""
        except (UnicodeDecodeError, IsADirectoryError):
            logger.warning("Corrupt session cache %s; discarding", path)
            self._discard(backend)
            return ""
        except PermissionError as exc:
            raise PermissionDenied(f"Cannot read {path}", str(exc), f"rm {path}") from exc

    def _write_cache(self, backend: "VaultBackend", token: str) -> None:
        ensure_directory(self.settings.sessions_dir)
        atomic_write(self.cache_path(backend), token, MODE_SECRET_FILE)
        logger.debug("Cached %s session", backend.display_name)

    def _discard(self, backend: "VaultBackend") -> bool:
        path = self.cache_path(backend)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
