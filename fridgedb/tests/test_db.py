from __future__ import annotations

import os

import pytest

from fridgedb.db import DEFAULTS, FridgeDB, read_config

_ENV = ("FRIDGE_DB_PATH", "FRIDGE_WORKERS", "FRIDGE_PORT", "FRIDGE_HOST", "FRIDGE_BUSY_TIMEOUT_MS", "FRIDGE_LOG_LEVEL")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for k in _ENV:
        monkeypatch.delenv(k, raising=False)


def test_defaults_when_no_config(tmp_path):
    cfg = read_config(str(tmp_path / "absent.yaml"))
    assert cfg == DEFAULTS


def test_yaml_then_env_precedence(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("db_path: kitchen.db\nworkers: 3\nport: 4000\nunknown: 1\n", encoding="utf-8")

    cfg = read_config(str(path))
    assert cfg["db_path"] == "kitchen.db"
    assert cfg["workers"] == 3
    assert cfg["port"] == 4000
    assert "unknown" not in cfg

    monkeypatch.setenv("FRIDGE_PORT", "5000")
    monkeypatch.setenv("FRIDGE_DB_PATH", "/tmp/override.db")
    cfg = read_config(str(path))
    assert cfg["port"] == 5000
    assert cfg["db_path"] == "/tmp/override.db"
    assert cfg["workers"] == 3


def test_invalid_values_fall_back(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("workers: [unclosed\n", encoding="utf-8")
    assert read_config(str(path)) == DEFAULTS

    monkeypatch.setenv("FRIDGE_WORKERS", "many")
    assert read_config(str(tmp_path / "absent.yaml"))["workers"] == DEFAULTS["workers"]


def test_handle_is_a_plain_value(tmp_db_path):
    db = FridgeDB(tmp_db_path, busy_timeout_ms=25)
    assert db.path == tmp_db_path
    assert db.busy_timeout_ms == 25
    # nothing touches the file until a connection is requested
    assert not os.path.exists(tmp_db_path)


def test_connections_are_independent(fridge_db):
    a = fridge_db.open_connection()
    b = fridge_db.open_connection()
    try:
        assert a is not b
        assert a.initialized and b.initialized
        a.close()
        assert a.closed and not b.closed
    finally:
        a.close()
        b.close()
