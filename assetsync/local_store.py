"""SQLite backed key/value cache for session durability.

Every key is optional and loaded independently; a corrupt or missing value
only loses that one piece of cached state.  Values are stored as JSON text.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Union

logger = logging.getLogger(__name__)

CACHED_ASSETS = "cached_assets"
CACHED_USERS = "cached_users"
CACHED_TRADE_LOGS = "cached_trade_logs"
CACHED_GLOBAL_TRADE_LOGS = "cached_global_trade_logs"
CURRENT_SESSION_FILE = "current_session_file"
CACHED_SCANNED_IDS = "cached_scanned_ids"
LAST_MASTER_SYNC = "last_master_sync"
HAS_PENDING_SYNC = "has_pending_sync"
GOOGLE_ACCESS_TOKEN = "google_access_token"


LOCAL_STATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS local_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


class LocalStore:
    """Small persistent dictionary kept in one SQLite table."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.execute(LOCAL_STATE_TABLE_SQL)

    @property
    def path(self) -> str:
        return self._path

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            with self._conn:
                yield self._conn

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM local_state WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable cached value for %s", key)
            return default

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO local_state(key, value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                (key, payload),
            )

    def update(self, values: Mapping[str, Any]) -> None:
        rows = [(key, json.dumps(value, ensure_ascii=False)) for key, value in values.items()]
        if not rows:
            return
        with self._transaction() as conn:
            conn.executemany(
                "INSERT INTO local_state(key, value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                rows,
            )

    def remove(self, *keys: str) -> None:
        if not keys:
            return
        with self._transaction() as conn:
            conn.executemany("DELETE FROM local_state WHERE key = ?", [(key,) for key in keys])

    def clear(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM local_state")

    def __contains__(self, key: object) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM local_state WHERE key = ?", (key,)
            ).fetchone()
        return row is not None

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def open_store(path: Optional[Union[str, Path]] = None) -> LocalStore:
    """Open the store at ``path`` or at the default application location."""

    if path is None:
        from assetsync import app_paths

        path = app_paths.data_path("assetsync.db")
    return LocalStore(path)


__all__ = [
    "CACHED_ASSETS",
    "CACHED_GLOBAL_TRADE_LOGS",
    "CACHED_SCANNED_IDS",
    "CACHED_TRADE_LOGS",
    "CACHED_USERS",
    "CURRENT_SESSION_FILE",
    "GOOGLE_ACCESS_TOKEN",
    "HAS_PENDING_SYNC",
    "LAST_MASTER_SYNC",
    "LocalStore",
    "open_store",
]
