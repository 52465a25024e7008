# src/storage/base_kv_store.py — v1
"""Abstract flat key/value storage area.

The area holds the credential, the user photo, the ``firstRun`` flag and one
``cache_{key}`` entry per cached try-on result. Values are JSON-compatible.
Key order is insertion order; overwriting a key moves it to the newest
position. Usage is reported the way browser extension storage reports it:
key length plus the length of the JSON-serialized value.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any


def entry_size(key: str, value: Any) -> int:
    """Bytes charged for one entry."""
    return len(key) + len(json.dumps(value, separators=(",", ":"), default=str))


class BaseKeyValueStore(ABC):
    """Unified interface for storage area backends."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored under ``key`` or None."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key`` (atomic single-key write)."""

    @abstractmethod
    async def remove(self, keys: str | list[str]) -> None:
        """Remove one or more keys; missing keys are ignored."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """Keys starting with ``prefix``, oldest first."""

    async def get_many(self, keys: list[str] | None = None) -> dict[str, Any]:
        """Return several entries (all entries when ``keys`` is None)."""
        wanted = await self.keys() if keys is None else keys
        result: dict[str, Any] = {}
        for key in wanted:
            value = await self.get(key)
            if value is not None:
                result[key] = value
        return result

    async def bytes_in_use(self, keys: list[str] | None = None) -> int:
        """Bytes used by ``keys`` (the whole area when None)."""
        entries = await self.get_many(keys)
        return sum(entry_size(k, v) for k, v in entries.items())

    def close(self) -> None:
        """Release backend resources."""
