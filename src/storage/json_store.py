# src/storage/json_store.py — v2
"""JSON file-based storage area (default STORAGE_BACKEND=json).

The whole area lives in one JSON object on disk, which preserves key
insertion order. Several instances (or processes) may share one root:

- every mutation takes an exclusive ``flock`` on ``storage.lock``, re-reads
  the file, applies only its own change and rewrites it through a temporary
  file and ``os.replace``, so a crash never leaves a half-written area and
  concurrent writers never drop each other's keys;
- reads reload the file whenever it was replaced since the last load.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from tryon_engine.storage.base_kv_store import BaseKeyValueStore

logger = logging.getLogger(__name__)

AREA_FILENAME = "storage.json"
LOCK_FILENAME = "storage.lock"

_Stamp = tuple[int, int, int]


class JsonKeyValueStore(BaseKeyValueStore):
    """File-based storage area using a single JSON document."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / AREA_FILENAME
        self._lock_path = self._root / LOCK_FILENAME
        self._data: dict[str, Any] = {}
        self._stamp: _Stamp | None = None
        self._refresh()

    async def get(self, key: str) -> Any | None:
        self._refresh()
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        def apply(data: dict[str, Any]) -> bool:
            data.pop(key, None)
            data[key] = value
            return True

        self._mutate(apply)

    async def remove(self, keys: str | list[str]) -> None:
        doomed = {keys} if isinstance(keys, str) else set(keys)

        def apply(data: dict[str, Any]) -> bool:
            present = doomed.intersection(data)
            for key in present:
                del data[key]
            return bool(present)

        self._mutate(apply)

    async def keys(self, prefix: str = "") -> list[str]:
        self._refresh()
        return [k for k in self._data if k.startswith(prefix)]

    def _mutate(self, apply: Callable[[dict[str, Any]], bool]) -> None:
        """Read-modify-write under the area lock."""
        with self._locked():
            data = self._load()
            if apply(data):
                self._flush(data)
            self._data = data
            self._stamp = self._current_stamp()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with open(self._lock_path, "a") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _refresh(self) -> None:
        stamp = self._current_stamp()
        if stamp != self._stamp:
            self._data = self._load()
            self._stamp = stamp

    def _current_stamp(self) -> _Stamp | None:
        try:
            st = self._path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read storage area %s: %s — starting empty", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Storage area %s is not a JSON object — starting empty", self._path)
            return {}
        return data

    def _flush(self, data: dict[str, Any]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=".storage-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, default=str)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
