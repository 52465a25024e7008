# src/storage/sqlite_store.py — v1
"""SQLite-based storage area (STORAGE_BACKEND=sqlite).

Uses stdlib sqlite3 — no external dependency. An AUTOINCREMENT sequence
column records insertion order; overwriting a key re-inserts it so it
becomes the newest.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from tryon_engine.storage.base_kv_store import BaseKeyValueStore

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS storage_area (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    value TEXT NOT NULL
);
"""


class SqliteKeyValueStore(BaseKeyValueStore):
    """SQLite-backed storage area."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, key: str) -> Any | None:
        row = self._conn.execute(
            "SELECT value FROM storage_area WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.warning("Failed to decode storage entry %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, default=str)
        with self._conn:
            self._conn.execute("DELETE FROM storage_area WHERE key = ?", (key,))
            self._conn.execute(
                "INSERT INTO storage_area (key, value) VALUES (?, ?)", (key, encoded)
            )

    async def remove(self, keys: str | list[str]) -> None:
        batch = [keys] if isinstance(keys, str) else list(keys)
        with self._conn:
            self._conn.executemany(
                "DELETE FROM storage_area WHERE key = ?", [(k,) for k in batch]
            )

    async def keys(self, prefix: str = "") -> list[str]:
        cursor = self._conn.execute("SELECT key FROM storage_area ORDER BY seq")
        return [row[0] for row in cursor.fetchall() if row[0].startswith(prefix)]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
