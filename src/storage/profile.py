# src/storage/profile.py — v1
"""User profile persisted in the storage area.

Keys: ``credential``, ``userPhoto``, ``firstRun``, ``totalTryons``.
"""

from __future__ import annotations

import logging

from tryon_engine.core.models import ImageRef
from tryon_engine.storage.base_kv_store import BaseKeyValueStore

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "credential"
USER_PHOTO_KEY = "userPhoto"
FIRST_RUN_KEY = "firstRun"
TOTAL_TRYONS_KEY = "totalTryons"


class ProfileStore:
    """Credential store + user photo store over the storage area.

    Args:
        store: Storage area backend.
        fallback_credential: Used when no credential was saved in the area
            (typically ``Settings.gemini_api_key``).
    """

    def __init__(self, store: BaseKeyValueStore, fallback_credential: str = "") -> None:
        self._store = store
        self._fallback_credential = fallback_credential

    async def get_credential(self) -> str | None:
        value = await self._store.get(CREDENTIAL_KEY)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return self._fallback_credential or None

    async def set_credential(self, credential: str) -> None:
        credential = credential.strip()
        if not credential:
            raise ValueError("credential must not be empty")
        await self._store.set(CREDENTIAL_KEY, credential)
        logger.info("Credential saved")

    async def get_user_photo(self) -> ImageRef | None:
        value = await self._store.get(USER_PHOTO_KEY)
        if isinstance(value, str) and value:
            return ImageRef(uri=value)
        return None

    async def set_user_photo(self, photo: ImageRef) -> None:
        await self._store.set(USER_PHOTO_KEY, photo.uri)
        logger.info("User photo saved (%d chars)", len(photo.uri))

    async def is_first_run(self) -> bool:
        return await self._store.get(FIRST_RUN_KEY) is None

    async def mark_first_run(self) -> None:
        await self._store.set(FIRST_RUN_KEY, False)

    async def total_tryons(self) -> int:
        value = await self._store.get(TOTAL_TRYONS_KEY)
        return value if isinstance(value, int) else 0

    async def increment_tryons(self) -> int:
        total = await self.total_tryons() + 1
        await self._store.set(TOTAL_TRYONS_KEY, total)
        return total
