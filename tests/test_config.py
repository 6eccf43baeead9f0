"""Tests for the config module."""

from pathlib import Path

import jsonschema
import orjson
import pytest

from geofence_notifier.config import AppConfig, load_config, resolve_config_path

SCHEMA = Path(__file__).resolve().parent.parent / "config" / "config.schema.json"


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps(data))
    return path


def test_defaults_without_file() -> None:
    cfg = load_config(None)
    assert cfg == AppConfig()
    assert cfg.collections.events == "geofence_events"
    assert cfg.reconcile.batch_limit == 500


def test_interpolation_and_nested_sections(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("FIREBASE_PROJECT_ID", "located-test")
    path = _write(tmp_path, {
        "firebase": {"project_id": "${FIREBASE_PROJECT_ID}", "credentials_path": "${CREDS:-}"},
        "collections": {"users": "accounts"},
        "dispatch": {"retry": {"max_attempts": 5}, "dry_run": True},
        "reconcile": {"batch_limit": 250},
        "logging": {"level": "debug", "format": "text"},
    })
    cfg = load_config(path, schema_path=SCHEMA)
    assert cfg.firebase.project_id == "located-test"
    assert cfg.firebase.credentials_path == ""
    assert cfg.collections.users == "accounts"
    assert cfg.collections.families == "families"
    assert cfg.dispatch.retry.max_attempts == 5
    assert cfg.dispatch.retry.initial_delay_ms == 500
    assert cfg.dispatch.dry_run is True
    assert cfg.reconcile.batch_limit == 250
    assert cfg.logging.format == "text"


def test_cli_override_wins(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("FIREBASE_PROJECT_ID", "from-env")
    path = _write(tmp_path, {"firebase": {"project_id": "${FIREBASE_PROJECT_ID}"}})
    cfg = load_config(path, overrides={"FIREBASE_PROJECT_ID": "from-cli"}, schema_path=SCHEMA)
    assert cfg.firebase.project_id == "from-cli"


def test_unresolved_variable(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("MISSING_VAR", raising=False)
    path = _write(tmp_path, {"instance_id": "${MISSING_VAR}"})
    with pytest.raises(ValueError):
        load_config(path, schema_path=SCHEMA)


def test_schema_rejects_oversized_batch(tmp_path) -> None:
    path = _write(tmp_path, {"reconcile": {"batch_limit": 1000}})
    with pytest.raises(jsonschema.ValidationError):
        load_config(path, schema_path=SCHEMA)


def test_batch_limit_checked_without_schema(tmp_path) -> None:
    path = _write(tmp_path, {"reconcile": {"batch_limit": 1000}})
    with pytest.raises(ValueError):
        load_config(path, schema_path=tmp_path / "absent.json")


def test_example_config_is_valid(monkeypatch) -> None:
    monkeypatch.setenv("FIREBASE_PROJECT_ID", "located-test")
    example = SCHEMA.parent / "config.example.json"
    cfg = load_config(example, schema_path=SCHEMA)
    assert cfg.firebase.project_id == "located-test"


def test_resolve_config_path(tmp_path, monkeypatch) -> None:
    path = _write(tmp_path, {})
    monkeypatch.setenv("GEOFENCE_NOTIFIER_CONFIG", str(path))
    assert resolve_config_path() == str(path)
    monkeypatch.setenv("GEOFENCE_NOTIFIER_CONFIG", str(tmp_path / "nope.json"))
    assert resolve_config_path() is None
