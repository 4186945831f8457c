"""
Runtime settings -- which backend, where state lives, how long to wait.

Resolution order (last wins):
    1. defaults
    2. <home>/config.yaml
    3. environment variables (DOTVAULT_*, PASS_PREFIX, ...)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, Field

from . import DOTVAULT_HOME

logger = logging.getLogger("dotvault.config")

DEFAULT_BACKEND = "bitwarden"
DOCUMENT_NAME = "vault-items.yaml"

_TRUTHY = ("1", "true", "yes", "on")


def _default_config_path(env: Mapping[str, str]) -> Path:
    config_home = env.get("XDG_CONFIG_HOME")
    if not config_home:
        user_home = env.get("HOME")
        config_home = os.path.join(user_home, ".config") if user_home else os.path.expanduser("~/.config")
    return Path(config_home) / "dotvault" / DOCUMENT_NAME


class Settings(BaseModel):
    """Everything an invocation needs to know before touching a backend."""

    backend: str = DEFAULT_BACKEND
    home: Path = Path(DOTVAULT_HOME)
    config_path: Optional[Path] = None
    offline: bool = False
    timeout: float = 30.0
    unlock_timeout: float = 300.0
    max_workers: int = Field(default=4, ge=1, le=32)

    # Backend-specific
    pass_prefix: str = "dotvault"
    password_store_dir: Path = Path("~/.password-store")
    onepassword_vault: str = "Personal"

    @property
    def home_dir(self) -> Path:
        return self.home.expanduser()

    @property
    def document_path(self) -> Path:
        """Path to the configuration document."""
        if self.config_path is not None:
            return self.config_path.expanduser()
        # from_env always fills config_path; direct construction gets the plain default.
        return _default_config_path({})

    @property
    def sessions_dir(self) -> Path:
        return self.home_dir / "sessions"

    @property
    def ledger_path(self) -> Path:
        return self.home_dir / "sync-state.json"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``<home>/config.yaml`` plus the environment.

        Args:
            env: Environment mapping. Defaults to ``os.environ``.

        Returns:
            Settings with environment overrides applied.
        """
        env = os.environ if env is None else env
        home = Path(env.get("DOTVAULT_HOME", DOTVAULT_HOME)).expanduser()

        data: dict = {}
        config_file = home / "config.yaml"
        if config_file.exists():
            try:
                loaded = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
                if isinstance(loaded, dict):
                    data.update(loaded)
                else:
                    logger.warning("Ignoring %s: expected a mapping", config_file)
            except yaml.YAMLError as exc:
                logger.warning("Failed to load %s: %s", config_file, exc)

        data["home"] = home
        overrides = {
            "DOTVAULT_BACKEND": "backend",
            "DOTVAULT_CONFIG": "config_path",
            "DOTVAULT_TIMEOUT": "timeout",
            "DOTVAULT_UNLOCK_TIMEOUT": "unlock_timeout",
            "DOTVAULT_WORKERS": "max_workers",
            "PASS_PREFIX": "pass_prefix",
            "PASSWORD_STORE_DIR": "password_store_dir",
            "ONEPASSWORD_VAULT": "onepassword_vault",
        }
        for var, field_name in overrides.items():
            value = env.get(var)
            if value:
                data[field_name] = value

        if "DOTVAULT_OFFLINE" in env:
            data["offline"] = env["DOTVAULT_OFFLINE"].strip().lower() in _TRUTHY

        if not data.get("config_path"):
            data["config_path"] = _default_config_path(env)

        settings = cls(**data)
        settings = settings.model_copy(update={"backend": settings.backend.lower()})
        return settings

    def to_dict(self) -> dict:
        """Serialize for display."""
        return {
            "backend": self.backend,
            "home": str(self.home_dir),
            "config_path": str(self.document_path),
            "offline": self.offline,
            "timeout": self.timeout,
            "unlock_timeout": self.unlock_timeout,
            "max_workers": self.max_workers,
        }
