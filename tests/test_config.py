"""Tests for Settings resolution."""

from __future__ import annotations

from pathlib import Path

import yaml

from dotvault.config import DEFAULT_BACKEND, Settings


class TestSettingsFromEnv:
    """Settings.from_env layering: defaults, config.yaml, environment."""

    def test_defaults(self, tmp_path: Path):
        settings = Settings.from_env({"DOTVAULT_HOME": str(tmp_path)})
        assert settings.backend == DEFAULT_BACKEND
        assert settings.offline is False
        assert settings.home_dir == tmp_path
        assert settings.sessions_dir == tmp_path / "sessions"
        assert settings.ledger_path == tmp_path / "sync-state.json"

    def test_default_document_under_xdg(self, tmp_path: Path):
        settings = Settings.from_env({
            "DOTVAULT_HOME": str(tmp_path),
            "XDG_CONFIG_HOME": str(tmp_path / "xdg"),
        })
        assert settings.document_path == tmp_path / "xdg" / "dotvault" / "vault-items.yaml"

    def test_document_default_uses_given_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "elsewhere"))
        settings = Settings.from_env({"DOTVAULT_HOME": str(tmp_path), "HOME": str(tmp_path / "user")})
        assert settings.document_path == tmp_path / "user" / ".config" / "dotvault" / "vault-items.yaml"

    def test_plain_settings_ignore_process_xdg(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "elsewhere"))
        monkeypatch.setenv("HOME", str(tmp_path / "user"))
        assert Settings().document_path == tmp_path / "user" / ".config" / "dotvault" / "vault-items.yaml"

    def test_config_file_is_read(self, tmp_path: Path):
        (tmp_path / "config.yaml").write_text(
            yaml.dump({"backend": "pass", "timeout": 5, "pass_prefix": "secrets"})
        )
        settings = Settings.from_env({"DOTVAULT_HOME": str(tmp_path)})
        assert settings.backend == "pass"
        assert settings.timeout == 5.0
        assert settings.pass_prefix == "secrets"

    def test_environment_wins(self, tmp_path: Path):
        (tmp_path / "config.yaml").write_text("backend: pass\n")
        settings = Settings.from_env({
            "DOTVAULT_HOME": str(tmp_path),
            "DOTVAULT_BACKEND": "1Password",
            "DOTVAULT_WORKERS": "8",
            "ONEPASSWORD_VAULT": "Work",
        })
        assert settings.backend == "1password"
        assert settings.max_workers == 8
        assert settings.onepassword_vault == "Work"

    def test_offline_flag(self, tmp_path: Path):
        for value, expected in (("1", True), ("yes", True), ("0", False), ("off", False)):
            settings = Settings.from_env({"DOTVAULT_HOME": str(tmp_path), "DOTVAULT_OFFLINE": value})
            assert settings.offline is expected

    def test_bad_config_file_is_ignored(self, tmp_path: Path, caplog):
        (tmp_path / "config.yaml").write_text("backend: [unclosed\n")
        settings = Settings.from_env({"DOTVAULT_HOME": str(tmp_path)})
        assert settings.backend == DEFAULT_BACKEND
        assert "Failed to load" in caplog.text

    def test_explicit_document_path(self, tmp_path: Path):
        doc = tmp_path / "mine.json"
        settings = Settings.from_env({"DOTVAULT_HOME": str(tmp_path), "DOTVAULT_CONFIG": str(doc)})
        assert settings.document_path == doc
