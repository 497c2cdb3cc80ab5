"""Key-value persistence collaborators used by the memory and pattern stores."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Whole-value load/save with atomic replace semantics."""

    def load(self, key: str) -> Optional[bytes]:
        ...

    def save(self, key: str, value: bytes) -> None:
        ...


class InMemoryKeyValueStore:
    """Process-local store, mostly for tests and ephemeral hosts."""

    def __init__(self) -> None:
        self._values: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._values.get(key)

    def save(self, key: str, value: bytes) -> None:
        with self._lock:
            self._values[key] = bytes(value)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._values)


class SQLiteKeyValueStore:
    """SQLite-backed store; each save replaces one row in a single statement."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self.conn.commit()

    def load(self, key: str) -> Optional[bytes]:
        try:
            with self._lock, closing(self.conn.cursor()) as cur:
                cur.execute("SELECT value FROM kv_entries WHERE key = ?", (key,))
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceFailure(key, str(exc)) from exc
        if not row:
            return None
        return bytes(row["value"])

    def save(self, key: str, value: bytes) -> None:
        payload = (key, sqlite3.Binary(value), datetime.now(timezone.utc).isoformat())
        try:
            with self._lock, closing(self.conn.cursor()) as cur:
                cur.execute(
                    """
                    INSERT INTO kv_entries (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    payload,
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceFailure(key, str(exc)) from exc

    def close(self) -> None:
        self.conn.close()


def encode_json(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=True, sort_keys=True).encode("utf-8")


def decode_json(raw: Optional[bytes]) -> Any:
    if raw is None:
        return None
    return json.loads(raw.decode("utf-8"))


def safe_load_json(backend: KeyValueStore, key: str) -> Any:
    """Load and decode one key; any failure is logged and yields ``None``."""

    try:
        return decode_json(backend.load(key))
    except PersistenceFailure as exc:
        logger.warning("Could not load %s: %s", key, exc.reason)
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Discarding corrupt value for %s: %s", key, exc)
    except Exception as exc:  # noqa: BLE001 - host-provided backend
        logger.exception("Unexpected persistence error loading %s: %s", key, exc)
    return None


def safe_save_json(backend: KeyValueStore, key: str, payload: Any) -> bool:
    """Encode and save one key; failures are logged and reported as ``False``."""

    try:
        backend.save(key, encode_json(payload))
        return True
    except PersistenceFailure as exc:
        logger.warning("Could not persist %s, continuing in memory: %s", key, exc.reason)
    except Exception as exc:  # noqa: BLE001 - host-provided backend
        logger.exception("Unexpected persistence error saving %s: %s", key, exc)
    return False
