# src/storage/store_factory.py — v1
"""Factory for storage area instantiation."""

from __future__ import annotations

from tryon_engine.config.settings import Settings
from tryon_engine.storage.base_kv_store import BaseKeyValueStore


def create_kv_store(settings: Settings | None = None) -> BaseKeyValueStore:
    """Instantiate the configured storage backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.
    """
    backend = "memory" if settings is None else settings.storage_backend

    if backend == "memory":
        from tryon_engine.storage.memory_store import MemoryKeyValueStore
        return MemoryKeyValueStore()

    if backend == "json":
        from tryon_engine.storage.json_store import JsonKeyValueStore
        return JsonKeyValueStore(root=settings.storage_root)

    if backend == "sqlite":
        from tryon_engine.storage.sqlite_store import SqliteKeyValueStore
        return SqliteKeyValueStore(db_path=settings.storage_root.expanduser() / "storage.db")

    raise ValueError(f"Unsupported storage backend: {backend!r}")
