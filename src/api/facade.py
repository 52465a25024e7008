# src/api/facade.py — v3
"""Public API facade — single entry point for virtual try-on.

Usage:
    from tryon_engine.api.facade import create_engine

    async with create_engine() as engine:
        await engine.initialize()
        artifact = await engine.run_try_on("https://shop.example/shirt.jpg")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tryon_engine.api.models import EngineStatus, SetupStatus, StorageUsage
from tryon_engine.cache.fingerprint import compute_cache_key
from tryon_engine.cache.result_cache import TryOnResultCache
from tryon_engine.config.settings import Settings
from tryon_engine.core.errors import AuthMissing
from tryon_engine.core.models import ImageRef, TryOnArtifact
from tryon_engine.extraction.response_extractor import ResponseExtractor
from tryon_engine.llm.client_factory import create_llm_client
from tryon_engine.pipeline.agents.composite_generator import CompositeGenerator
from tryon_engine.pipeline.agents.garment_detector import GarmentDetector
from tryon_engine.pipeline.image_resolver import ImageResolver
from tryon_engine.pipeline.orchestrator import ProgressCallback, TryOnOrchestrator
from tryon_engine.storage.profile import ProfileStore
from tryon_engine.storage.store_factory import create_kv_store
from tryon_engine.tracking.call_logger import CallLogger
from tryon_engine.tracking.models import UsageSummary

if TYPE_CHECKING:
    import httpx

    from tryon_engine.llm.base_client import BaseLLMClient
    from tryon_engine.pipeline.state import CancellationToken
    from tryon_engine.storage.base_kv_store import BaseKeyValueStore

logger = logging.getLogger(__name__)


class TryOnEngine:
    """Wires profile, cache, upstream client and orchestrator together.

    Args:
        settings: Global settings.
        store: Storage area shared by the profile and the result cache.
        llm: Upstream client. Built from settings when None; the credential
            is then read from the profile on every call.
        http_client: Optional shared httpx.AsyncClient for the default
            upstream client and the image resolver.
    """

    def __init__(
        self,
        settings: Settings,
        store: BaseKeyValueStore,
        llm: BaseLLMClient | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._profile = ProfileStore(store, fallback_credential=settings.gemini_api_key)
        self._cache = TryOnResultCache(
            store,
            budget_bytes=settings.cache_budget_bytes,
            retention_floor=settings.cache_retention_floor,
        )
        self._call_logger = CallLogger()

        self._owns_llm = llm is None
        if llm is None:
            llm = create_llm_client(
                settings.llm_provider,
                settings,
                credential_provider=self._profile.get_credential,
                http_client=http_client,
            )
        self._llm = llm
        self._resolver = ImageResolver(
            timeout_s=settings.request_timeout_s, http_client=http_client,
        )

        self._orchestrator = TryOnOrchestrator(
            profile=self._profile,
            cache=self._cache,
            resolver=self._resolver,
            detector=GarmentDetector(
                llm,
                settings.text_model,
                temperature=settings.detection_temperature,
                max_output_tokens=settings.detection_max_tokens,
                call_logger=self._call_logger,
            ),
            generator=CompositeGenerator(
                llm,
                settings.image_model,
                extractor=ResponseExtractor(min_payload_chars=settings.min_image_payload_chars),
                call_logger=self._call_logger,
            ),
        )

    @property
    def profile(self) -> ProfileStore:
        return self._profile

    @property
    def cache(self) -> TryOnResultCache:
        return self._cache

    @property
    def usage(self) -> UsageSummary:
        """Token usage of upstream calls made by this engine instance."""
        return self._call_logger.summary()

    async def initialize(self) -> None:
        """Start-up housekeeping: trim stale cache entries, mark first run.

        A failing cleanup is logged and skipped; the cache is best-effort.
        """
        try:
            removed = await self._cache.trim_to_floor()
        except Exception:  # noqa: BLE001
            logger.warning("Start-up cache cleanup failed — continuing", exc_info=True)
            removed = 0
        if removed:
            logger.info("Start-up cleanup removed %d stale cache entries", removed)
        if await self._profile.is_first_run():
            logger.info("First run — setup required before the first try-on")
            await self._profile.mark_first_run()

    async def run_try_on(
        self,
        product_image: ImageRef | str,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TryOnArtifact:
        """Try ``product_image`` on the saved user photo.

        Raises:
            AuthMissing: Credential or user photo not configured.
            UpstreamError: Provider failure (UpstreamTimeout included).
            ImageResolutionError: An input image could not be loaded.
            RequestCancelled: ``cancel_token`` was cancelled mid-request.
        """
        ref = _as_ref(product_image)
        return await self._orchestrator.run(ref, cancel_token=cancel_token, on_progress=on_progress)

    async def regenerate(
        self,
        product_image: ImageRef | str,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TryOnArtifact:
        """Drop the cached result for ``product_image`` and run again."""
        ref = _as_ref(product_image)
        user_photo = await self._profile.get_user_photo()
        if user_photo is None:
            raise AuthMissing("No user photo configured")
        await self.invalidate(compute_cache_key(ref, user_photo))
        return await self.run_try_on(ref, cancel_token=cancel_token, on_progress=on_progress)

    async def invalidate(self, cache_key: str) -> None:
        """Remove one cached result."""
        await self._cache.remove(cache_key)

    async def clear_cache(self) -> int:
        """Remove every cached result. Profile data is kept."""
        return await self._cache.clear()

    async def check_setup_complete(self) -> SetupStatus:
        return SetupStatus(
            has_credential=bool(await self._profile.get_credential()),
            has_user_photo=await self._profile.get_user_photo() is not None,
        )

    async def save_credential(self, credential: str) -> None:
        await self._profile.set_credential(credential)

    async def save_user_photo(self, photo: ImageRef | str) -> None:
        """Store the user photo as a data URL so later lookups need no I/O.

        Raises:
            ImageResolutionError: The photo could not be loaded.
        """
        resolved = await self._resolver.resolve(_as_ref(photo))
        await self._profile.set_user_photo(ImageRef.from_base64(resolved.data, resolved.media_type))

    async def storage_usage(self) -> StorageUsage:
        return StorageUsage(
            total_bytes=await self._store.bytes_in_use(),
            cache_bytes=await self._cache.usage(),
            cache_entries=len(await self._cache.keys()),
            budget_bytes=self._cache.budget_bytes,
            retention_floor=self._cache.retention_floor,
        )

    async def status(self) -> EngineStatus:
        return EngineStatus(
            setup=await self.check_setup_complete(),
            storage=await self.storage_usage(),
            total_tryons=await self._profile.total_tryons(),
            first_run=await self._profile.is_first_run(),
            session_usage=self.usage,
        )

    async def aclose(self) -> None:
        if self._owns_llm:
            await self._llm.aclose()
        await self._resolver.aclose()
        self._store.close()

    async def __aenter__(self) -> TryOnEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def create_engine(
    settings: Settings | None = None,
    store: BaseKeyValueStore | None = None,
    llm: BaseLLMClient | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> TryOnEngine:
    """Build a TryOnEngine from settings.

    Args:
        settings: Global settings. Loaded from .env if None.
        store: Storage area. Built from ``settings.storage_backend`` if None.
        llm: Upstream client. Built from ``settings.llm_provider`` if None.
        http_client: Optional shared httpx.AsyncClient.
    """
    settings = settings or Settings()
    if store is None:
        store = create_kv_store(settings)
    logger.debug(
        "Creating engine: backend=%s text_model=%s image_model=%s",
        settings.storage_backend, settings.text_model, settings.image_model,
    )
    return TryOnEngine(settings, store, llm=llm, http_client=http_client)


def _as_ref(image: ImageRef | str) -> ImageRef:
    return image if isinstance(image, ImageRef) else ImageRef(uri=image)
