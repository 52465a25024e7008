# src/pipeline/orchestrator.py — v2
"""Try-on orchestrator — drives one request through the state machine.

Stages run strictly in sequence and each upstream call is attempted once:
  1. CHECK_CACHE   — hit returns the stored artifact unmodified
  2. DETECT_PRODUCT — garment type + color of the product image
  3. DETECT_USER   — the matching garment the user currently wears
  4. GENERATE      — composite image; a response without an image still
                     yields a cacheable artifact carrying the error
  5. CACHE         — best-effort write

Configuration and transport errors (AuthMissing, UpstreamError,
UpstreamTimeout, ImageResolutionError) abort the request and cache nothing.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from tryon_engine.cache.fingerprint import compute_cache_key
from tryon_engine.core.errors import AuthMissing, NoImageInResponse, RequestCancelled, TryOnError
from tryon_engine.core.models import ImageRef, TryOnArtifact, TryOnStage
from tryon_engine.logging.context import clear_context, set_request_context, set_stage_context
from tryon_engine.pipeline.prompts import detection_prompt, user_detection_prompt
from tryon_engine.pipeline.state import CancellationToken, TryOnState

if TYPE_CHECKING:
    from tryon_engine.cache.result_cache import TryOnResultCache
    from tryon_engine.pipeline.agents.composite_generator import CompositeGenerator
    from tryon_engine.pipeline.agents.garment_detector import GarmentDetector
    from tryon_engine.pipeline.image_resolver import ImageResolver
    from tryon_engine.storage.profile import ProfileStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TryOnStage, TryOnState], None]


class TryOnOrchestrator:
    """Top-level state machine for a single try-on request.

    Args:
        profile: Credential and user photo store.
        cache: Result cache.
        resolver: ImageRef → base64 payload.
        detector: Garment detection agent.
        generator: Composite generation agent.
    """

    def __init__(
        self,
        profile: ProfileStore,
        cache: TryOnResultCache,
        resolver: ImageResolver,
        detector: GarmentDetector,
        generator: CompositeGenerator,
    ) -> None:
        self._profile = profile
        self._cache = cache
        self._resolver = resolver
        self._detector = detector
        self._generator = generator

    async def run(
        self,
        product_image: ImageRef,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TryOnArtifact:
        """Run the try-on pipeline for ``product_image``.

        Raises:
            AuthMissing: No credential or user photo configured.
            UpstreamError: Provider failure (including UpstreamTimeout).
            ImageResolutionError: An input image could not be loaded.
            RequestCancelled: The caller cancelled before results were kept.
        """
        state = TryOnState(product_image=product_image)
        set_request_context(state.request_id)
        start_time = time.monotonic()
        logger.info("Starting try-on for %s", product_image)

        try:
            artifact = await self._run(state, cancel_token, on_progress)
        except TryOnError as exc:
            logger.error("Try-on failed at %s: %s", state.stage.value, exc)
            state.fail(exc)
            self._emit(state, on_progress)
            raise
        finally:
            clear_context()

        logger.info(
            "Try-on complete: key=%s cached=%s from_cache=%s calls=%d in %.1fs",
            state.cache_key, state.cache_written, state.from_cache,
            state.upstream_calls, time.monotonic() - start_time,
        )
        return artifact

    async def _run(
        self,
        state: TryOnState,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> TryOnArtifact:
        user_photo = await self._profile.get_user_photo()
        if user_photo is None:
            raise AuthMissing("No user photo configured")
        if not await self._profile.get_credential():
            raise AuthMissing("No API key configured")
        state.user_photo = user_photo

        # --- CHECK_CACHE ---
        state.cache_key = compute_cache_key(state.product_image, user_photo)
        set_request_context(state.request_id, state.cache_key)
        self._advance(state, TryOnStage.CHECK_CACHE, on_progress)
        cached = await self._cache.get(state.cache_key)
        if cached is not None:
            logger.info("Found cached result for %s", state.cache_key)
            self._advance(state, TryOnStage.HIT, on_progress)
            state.from_cache = True
            state.artifact = cached
            _check_cancelled(cancel_token)
            self._advance(state, TryOnStage.DONE, on_progress)
            return cached
        self._advance(state, TryOnStage.MISS, on_progress)

        # --- DETECT_PRODUCT ---
        self._advance(state, TryOnStage.DETECT_PRODUCT, on_progress)
        product_input = await self._resolver.resolve(state.product_image)
        state.product_garment = await self._detector.detect(
            product_input, detection_prompt(), stage=TryOnStage.DETECT_PRODUCT.value,
        )
        state.upstream_calls += 1

        # --- DETECT_USER ---
        self._advance(state, TryOnStage.DETECT_USER, on_progress)
        user_input = await self._resolver.resolve(user_photo)
        state.user_garment = await self._detector.detect(
            user_input,
            user_detection_prompt(state.product_garment),
            stage=TryOnStage.DETECT_USER.value,
        )
        state.upstream_calls += 1

        # --- GENERATE ---
        self._advance(state, TryOnStage.GENERATE, on_progress)
        generated: ImageRef | None = None
        error: str | None = None
        try:
            generated = await self._generator.generate(
                user_input, product_input, state.product_garment, state.user_garment,
            )
        except NoImageInResponse as exc:
            logger.error("Image generation failed: %s", exc)
            error = f"Image generation failed: {exc}"
        finally:
            state.upstream_calls += 1

        artifact = TryOnArtifact(
            source_user_photo=user_photo,
            source_product_image=state.product_image,
            product_garment=state.product_garment,
            user_garment=state.user_garment,
            generated_image=generated,
            cache_key=state.cache_key,
            error=error,
        )
        state.artifact = artifact

        # --- CACHE ---
        _check_cancelled(cancel_token)
        self._advance(state, TryOnStage.CACHE, on_progress)
        state.cache_written = await self._cache.put(state.cache_key, artifact)
        if artifact.succeeded:
            await self._count_tryon()

        _check_cancelled(cancel_token)
        self._advance(state, TryOnStage.DONE, on_progress)
        return artifact

    async def _count_tryon(self) -> None:
        try:
            await self._profile.increment_tryons()
        except Exception:  # noqa: BLE001
            logger.warning("Failed to update try-on counter (non-fatal)", exc_info=True)

    def _advance(
        self,
        state: TryOnState,
        stage: TryOnStage,
        on_progress: ProgressCallback | None,
    ) -> None:
        state.advance(stage)
        set_stage_context(stage.value)
        logger.debug("Stage → %s", stage.value)
        self._emit(state, on_progress)

    @staticmethod
    def _emit(state: TryOnState, on_progress: ProgressCallback | None) -> None:
        if on_progress is None:
            return
        try:
            on_progress(state.stage, state)
        except Exception:
            logger.exception("Progress callback failed (non-fatal)")


def _check_cancelled(cancel_token: CancellationToken | None) -> None:
    if cancel_token is not None and cancel_token.cancelled:
        raise RequestCancelled("Request cancelled by caller; results discarded")
