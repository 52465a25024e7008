# tests/unit/pipeline/test_unit_orchestrator.py — v2
"""Tests for pipeline/orchestrator.py — the try-on state machine."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from tryon_engine.cache.fingerprint import compute_cache_key
from tryon_engine.cache.result_cache import TryOnResultCache
from tryon_engine.core.errors import (
    AuthMissing,
    ImageResolutionError,
    RequestCancelled,
    UpstreamError,
    UpstreamTimeout,
)
from tryon_engine.core.models import GarmentDescriptor, ImageRef, TryOnStage
from tryon_engine.pipeline.agents.composite_generator import CompositeGenerator
from tryon_engine.pipeline.agents.garment_detector import GarmentDetector
from tryon_engine.pipeline.image_resolver import ImageResolver
from tryon_engine.pipeline.orchestrator import TryOnOrchestrator
from tryon_engine.pipeline.state import CancellationToken
from tryon_engine.storage.profile import ProfileStore


def _make_orchestrator(profile, store, llm) -> tuple[TryOnOrchestrator, TryOnResultCache]:
    cache = TryOnResultCache(store)
    orch = TryOnOrchestrator(
        profile=profile,
        cache=cache,
        resolver=ImageResolver(),
        detector=GarmentDetector(llm, "text-model"),
        generator=CompositeGenerator(llm, "image-model"),
    )
    return orch, cache


class TestMissPath:
    @pytest.mark.asyncio
    async def test_three_calls_one_write(self, configured_profile, memory_store, mock_llm, product_image):
        orch, cache = _make_orchestrator(configured_profile, memory_store, mock_llm)
        with patch.object(cache, "put", AsyncMock(wraps=cache.put)) as put_spy:
            artifact = await orch.run(product_image)

        assert mock_llm.generate_content.await_count == 3
        assert put_spy.await_count == 1
        assert artifact.succeeded
        assert artifact.product_garment == GarmentDescriptor(category="jacket", color="red")
        assert artifact.user_garment == GarmentDescriptor(category="coat", color="black")
        assert artifact.source_product_image == product_image
        user_photo = await configured_profile.get_user_photo()
        assert artifact.cache_key == compute_cache_key(product_image, user_photo)

    @pytest.mark.asyncio
    async def test_models_per_stage(self, configured_profile, memory_store, mock_llm, product_image):
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        await orch.run(product_image)
        models = [c.args[0] for c in mock_llm.generate_content.await_args_list]
        assert models == ["text-model", "text-model", "image-model"]

    @pytest.mark.asyncio
    async def test_user_detection_prompt_mentions_product(
        self, configured_profile, memory_store, mock_llm, product_image,
    ):
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        await orch.run(product_image)
        second_prompt = mock_llm.generate_content.await_args_list[1].args[1][0]["text"]
        assert "jacket" in second_prompt and "red" in second_prompt

    @pytest.mark.asyncio
    async def test_progress_reports_every_transition(
        self, configured_profile, memory_store, mock_llm, product_image,
    ):
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        seen: list[TryOnStage] = []
        await orch.run(product_image, on_progress=lambda stage, state: seen.append(stage))
        assert seen == [
            TryOnStage.CHECK_CACHE,
            TryOnStage.MISS,
            TryOnStage.DETECT_PRODUCT,
            TryOnStage.DETECT_USER,
            TryOnStage.GENERATE,
            TryOnStage.CACHE,
            TryOnStage.DONE,
        ]

    @pytest.mark.asyncio
    async def test_counts_successful_tryon(self, configured_profile, memory_store, mock_llm, product_image):
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        await orch.run(product_image)
        assert await configured_profile.total_tryons() == 1

    @pytest.mark.asyncio
    async def test_failing_progress_callback_ignored(
        self, configured_profile, memory_store, mock_llm, product_image,
    ):
        def explode(stage, state):
            raise RuntimeError("ui gone")

        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        artifact = await orch.run(product_image, on_progress=explode)
        assert artifact.succeeded


class TestHitPath:
    @pytest.mark.asyncio
    async def test_repeat_makes_no_calls(self, configured_profile, memory_store, mock_llm, product_image):
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        first = await orch.run(product_image)
        mock_llm.generate_content.reset_mock()

        seen: list[TryOnStage] = []
        second = await orch.run(product_image, on_progress=lambda stage, state: seen.append(stage))

        assert mock_llm.generate_content.await_count == 0
        assert second == first
        assert seen == [TryOnStage.CHECK_CACHE, TryOnStage.HIT, TryOnStage.DONE]

    @pytest.mark.asyncio
    async def test_cached_failure_returned_as_is(
        self, configured_profile, memory_store, mock_llm, product_image, canned,
    ):
        mock_llm.generate_content.side_effect = [
            canned.detection_response("jacket", "red"),
            canned.detection_response("coat", "black"),
            canned.llm_response(canned.text_body("I cannot help with that.")),
        ]
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        first = await orch.run(product_image)
        second = await orch.run(product_image)
        assert second == first
        assert second.error is not None
        assert mock_llm.generate_content.await_count == 3


class TestGenerationFailure:
    @pytest.mark.asyncio
    async def test_no_image_yields_cached_error_artifact(
        self, configured_profile, memory_store, mock_llm, product_image, canned,
    ):
        mock_llm.generate_content.side_effect = [
            canned.detection_response("jacket", "red"),
            canned.detection_response("coat", "black"),
            canned.llm_response(canned.text_body("I cannot help with that.")),
        ]
        orch, cache = _make_orchestrator(configured_profile, memory_store, mock_llm)
        artifact = await orch.run(product_image)

        assert artifact.generated_image is None
        assert artifact.error.startswith("Image generation failed")
        assert await cache.get(artifact.cache_key) == artifact
        assert await configured_profile.total_tryons() == 0

    @pytest.mark.asyncio
    async def test_upstream_error_not_cached(
        self, configured_profile, memory_store, mock_llm, product_image, canned,
    ):
        mock_llm.generate_content.side_effect = [
            canned.detection_response("jacket", "red"),
            canned.detection_response("coat", "black"),
            UpstreamError(500, "backend exploded"),
        ]
        orch, cache = _make_orchestrator(configured_profile, memory_store, mock_llm)
        seen: list[TryOnStage] = []
        with pytest.raises(UpstreamError, match="backend exploded"):
            await orch.run(product_image, on_progress=lambda stage, state: seen.append(stage))

        assert await cache.keys() == []
        assert seen[-1] is TryOnStage.ERROR

    @pytest.mark.asyncio
    async def test_timeout_during_detection(
        self, configured_profile, memory_store, mock_llm, product_image,
    ):
        mock_llm.generate_content.side_effect = UpstreamTimeout(60.0)
        orch, cache = _make_orchestrator(configured_profile, memory_store, mock_llm)
        with pytest.raises(UpstreamTimeout):
            await orch.run(product_image)
        assert mock_llm.generate_content.await_count == 1
        assert await cache.keys() == []

    @pytest.mark.asyncio
    async def test_sentinel_detection_continues(
        self, configured_profile, memory_store, mock_llm, product_image, canned,
    ):
        mock_llm.generate_content.side_effect = [
            canned.llm_response(canned.text_body("Here is the result: {clothes info unavailable}")),
            canned.llm_response(canned.text_body("no idea")),
            canned.llm_response(canned.image_body()),
        ]
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        artifact = await orch.run(product_image)
        assert artifact.succeeded
        assert artifact.product_garment.is_sentinel
        assert artifact.user_garment.is_sentinel


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_missing_user_photo(self, memory_store, mock_llm, product_image):
        profile = ProfileStore(memory_store)
        await profile.set_credential("test-key")
        orch, _ = _make_orchestrator(profile, memory_store, mock_llm)
        with pytest.raises(AuthMissing, match="user photo"):
            await orch.run(product_image)
        mock_llm.generate_content.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_credential(self, memory_store, mock_llm, product_image, user_photo):
        profile = ProfileStore(memory_store)
        await profile.set_user_photo(user_photo)
        orch, _ = _make_orchestrator(profile, memory_store, mock_llm)
        with pytest.raises(AuthMissing, match="API key"):
            await orch.run(product_image)
        mock_llm.generate_content.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unresolvable_product_image(self, configured_profile, memory_store, mock_llm):
        orch, cache = _make_orchestrator(configured_profile, memory_store, mock_llm)
        with pytest.raises(ImageResolutionError):
            await orch.run(ImageRef(uri="??? not an image ???"))
        mock_llm.generate_content.assert_not_awaited()
        assert await cache.keys() == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_cache_writes_nothing(
        self, configured_profile, memory_store, mock_llm, product_image, happy_responses,
    ):
        token = CancellationToken()
        responses = iter(happy_responses)

        async def answer(*args, **kwargs):
            response = next(responses)
            if args[0] == "image-model":
                token.cancel()
            return response

        mock_llm.generate_content.side_effect = answer
        orch, cache = _make_orchestrator(configured_profile, memory_store, mock_llm)
        with pytest.raises(RequestCancelled):
            await orch.run(product_image, cancel_token=token)
        assert await cache.keys() == []
        assert await configured_profile.total_tryons() == 0

    @pytest.mark.asyncio
    async def test_cancel_on_hit(self, configured_profile, memory_store, mock_llm, product_image):
        orch, _ = _make_orchestrator(configured_profile, memory_store, mock_llm)
        await orch.run(product_image)
        token = CancellationToken()
        token.cancel()
        with pytest.raises(RequestCancelled):
            await orch.run(product_image, cancel_token=token)
