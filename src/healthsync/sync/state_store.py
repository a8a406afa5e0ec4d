"""Durable key/value state for the sync coordinator.

Holds the sync-state record, the retry queue, the last background-sync
instant, per-feature permission grants, the onboarding flag and the cached
last-known-good entities.  Values are JSON documents.

Keys:
    sync_state                — SyncState.to_json()
    retry_queue               — list of RetryQueueEntry.to_json()
    last_background_sync      — ISO instant
    permission:<feature>      — CapabilityStatus value
    onboarding_completed      — bool
    last_health_sample        — HealthSampleWire (camelCase)
    last_usage_sample         — UsageSampleWire
    last_productivity_score   — ProductivityScoreWire
    health_history            — {date: HealthSampleWire} rolling window
    score_history             — {date: score}

``update()`` is the only read-modify-write primitive: the read, the
callback and the write happen under one lock (and, for SQLite, in one
transaction) so concurrent triggers never interleave.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Any, Callable

from src.healthsync.base import CapabilityStatus

logger = logging.getLogger("healthsync.sync.state")

SYNC_STATE_KEY = "sync_state"
RETRY_QUEUE_KEY = "retry_queue"
LAST_BACKGROUND_SYNC_KEY = "last_background_sync"
ONBOARDING_KEY = "onboarding_completed"
LAST_HEALTH_KEY = "last_health_sample"
LAST_USAGE_KEY = "last_usage_sample"
LAST_SCORE_KEY = "last_productivity_score"
HEALTH_HISTORY_KEY = "health_history"
SCORE_HISTORY_KEY = "score_history"

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def permission_key(feature: str) -> str:
    return f"permission:{feature}"


def _decode(key: str, raw: str | None, default: Any) -> Any:
    """Parse a stored value; a missing or corrupt value yields a copy of ``default``."""
    if raw is None:
        return copy.deepcopy(default)
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Corrupt state value for %s; using default", key)
        return copy.deepcopy(default)


class StateStore(ABC):
    """Abstract JSON key/value store."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for ``key`` or ``default``."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically replace ``key`` with ``fn(current)`` and return the new value.

        ``current`` is ``default`` when the key is absent.  If ``fn`` raises,
        nothing is written.
        """

    # ------------------------------------------------------------------
    # Typed helpers shared by every backend
    # ------------------------------------------------------------------

    def record_permission(self, feature: str, status: CapabilityStatus) -> None:
        self.set(permission_key(feature), status.value)

    def get_permission(self, feature: str) -> CapabilityStatus | None:
        raw = self.get(permission_key(feature))
        try:
            return CapabilityStatus(raw) if raw else None
        except ValueError:
            logger.warning("Ignoring unknown permission value %r for %s", raw, feature)
            return None

    def mark_onboarding_complete(self) -> None:
        self.set(ONBOARDING_KEY, True)

    def is_onboarding_complete(self) -> bool:
        return bool(self.get(ONBOARDING_KEY, False))


class InMemoryStateStore(StateStore):
    """Process-local store, used in tests and when no database path is set."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._data.get(key)
        return _decode(key, raw, default)

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        with self._lock:
            current = _decode(key, self._data.get(key), default)
            new_value = fn(current)
            self._data[key] = json.dumps(new_value)
        return new_value


class SqliteStateStore(StateStore):
    """SQLite-backed store that survives process restarts."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with closing(self._connect()) as conn:
            conn.executescript(_SCHEMA_SQL)
        logger.debug("State store ready at %s", self._db_path)

    @staticmethod
    def _read(conn: sqlite3.Connection, key: str) -> str | None:
        row = conn.execute("SELECT value FROM app_state WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    @staticmethod
    def _write(conn: sqlite3.Connection, key: str, encoded: str) -> None:
        conn.execute(
            """
            INSERT INTO app_state(key, value) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, encoded),
        )

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock, closing(self._connect()) as conn:
            raw = self._read(conn, key)
        return _decode(key, raw, default)

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock, closing(self._connect()) as conn:
            self._write(conn, key, encoded)

    def delete(self, key: str) -> None:
        with self._lock, closing(self._connect()) as conn:
            conn.execute("DELETE FROM app_state WHERE key = ?", (key,))

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        with self._lock, closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = _decode(key, self._read(conn, key), default)
                new_value = fn(current)
                self._write(conn, key, json.dumps(new_value))
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        return new_value
