# src/storage/memory_store.py — v1
"""In-memory storage area (STORAGE_BACKEND=memory). Used by tests and one-shot runs."""

from __future__ import annotations

import copy
from typing import Any

from tryon_engine.storage.base_kv_store import BaseKeyValueStore


class MemoryKeyValueStore(BaseKeyValueStore):
    """Dict-backed area; dict order is the insertion order."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        self._data.pop(key, None)
        self._data[key] = copy.deepcopy(value)

    async def remove(self, keys: str | list[str]) -> None:
        for key in [keys] if isinstance(keys, str) else keys:
            self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]
