"""Tests for reading, validating and writing the configuration document."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest
import yaml

from dotvault.document import (
    load_document,
    new_document,
    read_raw,
    save_document,
    validate_raw,
)
from dotvault.errors import SchemaInvalid
from dotvault.models import Location, LocationType, SecretItem, SecretKind


def _valid() -> dict:
    return {
        "version": 3,
        "items": [
            {"name": "Git-Config", "path": "~/.gitconfig", "required": True},
            {"name": "SSH-Personal", "path": "~/.ssh/id_ed25519", "kind": "ssh-key-pair", "sync": "manual"},
        ],
    }


class TestValidate:
    """validate_raw reports every problem."""

    def test_valid(self):
        assert validate_raw(_valid()) == []

    def test_unknown_fields(self):
        data = _valid()
        data["extra"] = 1
        data["items"][0]["colour"] = "blue"
        problems = validate_raw(data)
        assert "extra: unknown top-level field" in problems
        assert "items.0.colour: unknown field" in problems

    def test_duplicate_names(self):
        data = _valid()
        data["items"].append({"name": "Git-Config", "path": "~/.gitconfig2"})
        assert any("duplicate item name 'Git-Config'" in p for p in validate_raw(data))

    def test_bad_enum_value(self):
        data = _valid()
        data["items"][0]["sync"] = "sometimes"
        problems = validate_raw(data)
        assert any(p.startswith("items.0.sync") for p in problems)

    def test_blank_path(self):
        data = _valid()
        data["items"][0]["path"] = "  "
        assert any(p.startswith("items.0.path") for p in validate_raw(data))

    def test_old_version_points_at_migrate(self):
        problems = validate_raw({"version": 2, "items": []})
        assert len(problems) == 1
        assert "dotvault migrate" in problems[0]

    def test_newer_version(self):
        assert "newer" in validate_raw({"version": 99, "items": []})[0]

    def test_items_must_be_list(self):
        assert "items: must be a list" in validate_raw({"version": 3, "items": {}})


class TestLoad:
    def test_load_yaml(self, tmp_path: Path):
        path = tmp_path / "vault-items.yaml"
        path.write_text(yaml.safe_dump(_valid()))
        document = load_document(path)
        assert document.names == ["Git-Config", "SSH-Personal"]
        assert document.get("SSH-Personal").kind == SecretKind.SSH_KEY_PAIR

    def test_missing_ok(self, tmp_path: Path):
        document = load_document(tmp_path / "nope.yaml", missing_ok=True)
        assert document == new_document()

    def test_missing_raises(self, tmp_path: Path):
        with pytest.raises(SchemaInvalid) as excinfo:
            load_document(tmp_path / "nope.yaml")
        assert excinfo.value.remediation == "dotvault scan"

    def test_unparseable(self, tmp_path: Path):
        path = tmp_path / "vault-items.yaml"
        path.write_text("items: [unclosed\n")
        with pytest.raises(SchemaInvalid):
            read_raw(path)

    def test_old_version_needs_migration(self, tmp_path: Path):
        path = tmp_path / "vault-items.yaml"
        path.write_text("version: 2\nitems: []\n")
        with pytest.raises(SchemaInvalid) as excinfo:
            load_document(path)
        assert excinfo.value.remediation == "dotvault migrate"
        assert excinfo.value.problems

    def test_invalid_lists_all_problems(self, tmp_path: Path):
        data = _valid()
        data["items"][0]["colour"] = "blue"
        data["items"][1]["kind"] = "bogus"
        path = tmp_path / "vault-items.yaml"
        path.write_text(yaml.safe_dump(data))
        with pytest.raises(SchemaInvalid) as excinfo:
            load_document(path)
        assert len(excinfo.value.problems) >= 2


class TestSave:
    def test_yaml_round_trip(self, tmp_path: Path):
        path = tmp_path / "vault-items.yaml"
        document = new_document().model_copy(update={"items": [
            SecretItem(
                name="AWS-Config", path="~/.aws/config",
                location=Location(type=LocationType.FOLDER, value="dotfiles"),
            ),
        ]})

        assert save_document(path, document) is None

        assert load_document(path) == document
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_json_suffix_writes_json(self, tmp_path: Path):
        path = tmp_path / "vault-items.json"
        save_document(path, new_document())
        assert json.loads(path.read_text()) == {"version": 3, "items": []}

    def test_previous_version_backed_up(self, tmp_path: Path):
        path = tmp_path / "vault-items.yaml"
        save_document(path, new_document())
        first = path.read_text()

        backup = save_document(path, new_document())

        assert backup is not None
        assert backup.read_text() == first
