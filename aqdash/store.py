"""
Key-value persistence for per-device reconciler state.

Values are JSON documents stored under ``<device_id>_gps_buffer`` and
``<device_id>_fixed_gps``. The SQLite store survives process restarts;
the memory store is for tests and throwaway sessions.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
import sqlite3
import threading
from typing import Any, Dict, Optional

from aqdash.models import GpsBuffer, StableLocation

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_unix INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
);
"""


def buffer_key(device_id: str) -> str:
    return f"{device_id}_gps_buffer"


def stable_location_key(device_id: str) -> str:
    return f"{device_id}_fixed_gps"


class KeyValueStore(ABC):
    """
    Typed per-device accessors on top of a raw JSON key-value interface.

    Stored values that do not decode into the expected shape are logged and
    treated as absent. Backend failures from get/set propagate.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    def close(self) -> None:
        pass

    # ------------------------------------------------------------------ #
    # GPS buffer
    # ------------------------------------------------------------------ #

    def load_buffer(self, device_id: str) -> Optional[GpsBuffer]:
        data = self.get(buffer_key(device_id))
        if data is None:
            return None
        if not isinstance(data, dict):
            logger.error("Corrupt GPS buffer for %s, discarding: %r", device_id, data)
            return None
        try:
            return GpsBuffer.from_dict(data)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.error("Corrupt GPS buffer for %s, discarding: %s", device_id, e)
            return None

    def persist_buffer(self, device_id: str, buffer: GpsBuffer) -> None:
        self.set(buffer_key(device_id), buffer.to_dict())

    # ------------------------------------------------------------------ #
    # Stable location
    # ------------------------------------------------------------------ #

    def load_stable_location(self, device_id: str) -> Optional[StableLocation]:
        data = self.get(stable_location_key(device_id))
        if data is None:
            return None
        if not isinstance(data, dict):
            logger.error("Corrupt stable location for %s, discarding: %r", device_id, data)
            return None
        try:
            return StableLocation.from_dict(data)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.error("Corrupt stable location for %s, discarding: %s", device_id, e)
            return None

    def persist_stable_location(self, device_id: str, location: StableLocation) -> None:
        self.set(stable_location_key(device_id), location.to_dict())


class MemoryStore(KeyValueStore):
    """In-process store; values are round-tripped through JSON like SQLite."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw


class SQLiteStore(KeyValueStore):
    """Durable store backed by a single SQLite table."""

    def __init__(self, db_path: str = "aqdash_state.db") -> None:
        self.db_path = db_path
        # A shared connection keeps ":memory:" databases alive between calls
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self.initialize()

    def initialize(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript(SCHEMA_SQL)
        logger.info("Key-value store ready at %s", self.db_path)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON stored under %s: %s", key, e)
            return None

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO kv_store (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value = excluded.value,
                  updated_unix = CAST(strftime('%s', 'now') AS INTEGER)
                """,
                (key, raw),
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.info("Key-value store closed")
