from __future__ import annotations

# fridgedb/db.py
import logging
import os
import sqlite3
from typing import Optional

import yaml

from .repository.statements import INITIALIZERS, OPERATIONS
from .services.connection import Connection
from .services.replies import build_static_replies

logger = logging.getLogger(__name__)

# Settings resolution order:
# 1) FRIDGE_* environment variables (highest priority)
# 2) config.yaml (project root, or an explicit path)
# 3) built-in defaults
_PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
_DEFAULT_CONFIG = os.path.join(_PROJECT_ROOT, "config.yaml")

DEFAULT_BUSY_TIMEOUT_MS = 10

DEFAULTS = {
    "db_path": "fridge.db",
    "workers": 0,
    "port": 32000,
    "host": "0.0.0.0",
    "busy_timeout_ms": DEFAULT_BUSY_TIMEOUT_MS,
    "log_level": "INFO",
}

_ENV_KEYS = {
    "db_path": "FRIDGE_DB_PATH",
    "workers": "FRIDGE_WORKERS",
    "port": "FRIDGE_PORT",
    "host": "FRIDGE_HOST",
    "busy_timeout_ms": "FRIDGE_BUSY_TIMEOUT_MS",
    "log_level": "FRIDGE_LOG_LEVEL",
}

_INT_KEYS = ("workers", "port", "busy_timeout_ms")


def _read_config_yaml(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return {}
    if not isinstance(cfg, dict):
        return {}
    return {k: v for k, v in cfg.items() if k in DEFAULTS and v is not None}


def read_config(path: str | None = None) -> dict:
    """
    Resolve process settings: database path, worker count (0 = one per CPU),
    listening host/port, busy timeout and log level.
    """
    out = dict(DEFAULTS)
    out.update(_read_config_yaml(path or _DEFAULT_CONFIG))
    for key, env in _ENV_KEYS.items():
        v = os.environ.get(env)
        if v is not None and v.strip():
            out[key] = v.strip()
    for key in _INT_KEYS:
        try:
            out[key] = int(out[key])
        except (TypeError, ValueError):
            logger.warning(f"Invalid {key}={out[key]!r}, using {DEFAULTS[key]}")
            out[key] = DEFAULTS[key]
    out["db_path"] = str(out["db_path"])
    return out


class FridgeDB:
    """Handle on the fridge database file; every call hands out a fresh Connection."""

    def __init__(self, path: str, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS):
        self.path = path
        self.busy_timeout_ms = busy_timeout_ms
        self.replies = build_static_replies()

    def open_connection(self) -> Optional[Connection]:
        try:
            raw = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout_ms / 1000.0,
                # opened on the pool thread, then owned by exactly one worker
                check_same_thread=False,
                isolation_level=None,
                cached_statements=len(INITIALIZERS) + 4 * len(OPERATIONS) + 8,
            )
        except sqlite3.Error as e:
            logger.error(f"FridgeDB: failed to open database {self.path}: {e}")
            return None
        try:
            raw.row_factory = sqlite3.Row
            # refuse unreadable/corrupt files up front rather than per request
            raw.execute("PRAGMA schema_version").fetchone()
        except sqlite3.Error as e:
            logger.error(f"FridgeDB: failed to open database {self.path}: {e}")
            raw.close()
            return None
        return Connection(raw, self.replies)
