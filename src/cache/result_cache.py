# src/cache/result_cache.py — v2
"""Content-addressed try-on result cache over the storage area.

Each artifact is stored as ``cache_{cache_key}``. The area reports its own
byte usage and has no TTL, so the cache bounds itself: before a write it
checks ``usage + size`` against the budget, evicts the oldest-inserted
entries if needed, and skips the write when space still cannot be found.
Caching is best-effort; nothing here ever fails a try-on request.

Concurrency: operations on one key are serialized by a per-key
``asyncio.Lock``. Locks live in a weak mapping, so a key's lock exists only
while some task holds it. Eviction takes the lock of every victim before
removing it and skips keys whose lock is held, so a concurrent writer is
never undone.
"""

from __future__ import annotations

import asyncio
import logging
import weakref

from pydantic import ValidationError

from tryon_engine.core.errors import CacheWriteFailure
from tryon_engine.core.models import TryOnArtifact
from tryon_engine.storage.base_kv_store import BaseKeyValueStore, entry_size

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache_"
DEFAULT_BUDGET_BYTES = 4 * 1024 * 1024
DEFAULT_RETENTION_FLOOR = 3


def storage_key(cache_key: str) -> str:
    return f"{CACHE_PREFIX}{cache_key}"


class TryOnResultCache:
    """Cache of TryOnArtifacts keyed by cache key.

    Args:
        store: Storage area backend (shared with the profile).
        budget_bytes: Total area usage must stay below this after a write.
        retention_floor: Eviction never leaves fewer cached entries than this.
    """

    def __init__(
        self,
        store: BaseKeyValueStore,
        budget_bytes: int = DEFAULT_BUDGET_BYTES,
        retention_floor: int = DEFAULT_RETENTION_FLOOR,
    ) -> None:
        self._store = store
        self._budget = budget_bytes
        self._floor = retention_floor
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def budget_bytes(self) -> int:
        return self._budget

    @property
    def retention_floor(self) -> int:
        return self._floor

    async def get(self, cache_key: str) -> TryOnArtifact | None:
        """Return the cached artifact, or None on a miss."""
        async with self._lock(cache_key):
            raw = await self._store.get(storage_key(cache_key))
        if raw is None:
            return None
        try:
            return TryOnArtifact.model_validate(raw)
        except ValidationError as e:
            logger.warning("Unreadable cache entry %s treated as miss: %s", cache_key, e)
            return None

    async def put(self, cache_key: str, artifact: TryOnArtifact) -> bool:
        """Store ``artifact`` under ``cache_key`` if it fits the budget.

        Returns:
            True when the entry was written, False when it was skipped for
            lack of space or because the storage area failed.
        """
        try:
            async with self._lock(cache_key):
                return await self._put_locked(cache_key, artifact)
        except Exception as exc:  # noqa: BLE001
            failure = CacheWriteFailure(f"Cache write for {cache_key} failed: {exc}")
            logger.warning("%s — continuing without cache", failure)
            return False

    async def evict_oldest(self, excess: int | None = None) -> int:
        """Remove oldest-inserted entries.

        Stops once ``excess`` bytes are reclaimed or only ``retention_floor``
        entries remain, whichever comes first. ``excess=None`` trims down to
        the floor. Running it with nothing to evict is a no-op.

        Returns:
            Number of entries removed.
        """
        keys = await self._store.keys(CACHE_PREFIX)
        removable = len(keys) - self._floor
        if removable <= 0 or (excess is not None and excess <= 0):
            return 0

        doomed: list[str] = []
        held: list[asyncio.Lock] = []
        reclaimed = 0
        try:
            for skey in keys:
                if len(doomed) >= removable:
                    break
                if excess is not None and reclaimed >= excess:
                    break
                lock = self._lock(skey[len(CACHE_PREFIX):])
                if lock.locked():
                    continue
                await lock.acquire()
                held.append(lock)
                value = await self._store.get(skey)
                if value is not None:
                    reclaimed += entry_size(skey, value)
                doomed.append(skey)

            if doomed:
                await self._store.remove(doomed)
                logger.info(
                    "Evicted %d old cache entries (%d bytes reclaimed)",
                    len(doomed), reclaimed,
                )
        finally:
            for lock in held:
                lock.release()
        return len(doomed)

    async def trim_to_floor(self) -> int:
        """Drop everything but the newest ``retention_floor`` entries."""
        return await self.evict_oldest(None)

    async def remove(self, cache_key: str) -> None:
        """Invalidate one entry (used before a user-requested regeneration)."""
        async with self._lock(cache_key):
            await self._store.remove(storage_key(cache_key))
        logger.info("Cache entry %s invalidated", cache_key)

    async def clear(self) -> int:
        """Remove every cached result. Returns the number removed."""
        keys = await self._store.keys(CACHE_PREFIX)
        if keys:
            await self._store.remove(keys)
        logger.info("Cleared %d cached results", len(keys))
        return len(keys)

    async def keys(self) -> list[str]:
        """Cache keys, oldest first."""
        return [k[len(CACHE_PREFIX):] for k in await self._store.keys(CACHE_PREFIX)]

    async def usage(self) -> int:
        """Bytes used by cached results only."""
        return await self._store.bytes_in_use(await self._store.keys(CACHE_PREFIX))

    async def _put_locked(self, cache_key: str, artifact: TryOnArtifact) -> bool:
        skey = storage_key(cache_key)
        payload = artifact.model_dump(mode="json")
        size = entry_size(skey, payload)

        usage = await self._usage_excluding(skey)
        if usage + size >= self._budget:
            logger.warning(
                "Storage approaching limit (%d + %d >= %d bytes), evicting old entries",
                usage, size, self._budget,
            )
            await self.evict_oldest(usage + size - self._budget + 1)
            usage = await self._usage_excluding(skey)
            if usage + size >= self._budget:
                logger.warning(
                    "Still insufficient space for %s (%d bytes), continuing without cache",
                    cache_key, size,
                )
                return False

        await self._store.set(skey, payload)
        logger.debug("Cached %s (%d bytes)", cache_key, size)
        return True

    async def _usage_excluding(self, skey: str) -> int:
        """Area usage, not counting the entry about to be overwritten."""
        usage = await self._store.bytes_in_use()
        existing = await self._store.get(skey)
        if existing is not None:
            usage -= entry_size(skey, existing)
        return usage

    def _lock(self, cache_key: str) -> asyncio.Lock:
        lock = self._locks.get(cache_key)
        if lock is None:
            lock = self._locks[cache_key] = asyncio.Lock()
        return lock
