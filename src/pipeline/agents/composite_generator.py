# src/pipeline/agents/composite_generator.py — v2
"""Composite generation agent: render the user wearing the product garment."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from tryon_engine.core.errors import NoImageInResponse, ResponseShapeError, UpstreamError
from tryon_engine.core.models import GarmentDescriptor, ImageRef
from tryon_engine.extraction.response_extractor import ResponseExtractor
from tryon_engine.llm.models import ImageInput, text_part
from tryon_engine.pipeline.prompts import composite_prompt

if TYPE_CHECKING:
    from tryon_engine.llm.base_client import BaseLLMClient
    from tryon_engine.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

GENERATED_MEDIA_TYPE = "image/png"


class CompositeGenerator:
    """Send both images plus the composite prompt in a single request.

    The generated payload is located by ``ResponseExtractor``; the call is
    never retried here.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        model: str,
        extractor: ResponseExtractor | None = None,
        call_logger: CallLogger | None = None,
    ) -> None:
        self._llm = llm
        self._model = model
        self._extractor = extractor or ResponseExtractor()
        self._call_logger = call_logger

    @property
    def name(self) -> str:
        return "composite_generator"

    async def generate(
        self,
        user_photo: ImageInput,
        product_image: ImageInput,
        product_garment: GarmentDescriptor,
        user_garment: GarmentDescriptor,
    ) -> ImageRef:
        """Generate the composite and return it as a ``data:`` ImageRef.

        Raises:
            AuthMissing: No credential configured.
            UpstreamError: Provider returned a non-success status.
            UpstreamTimeout: Provider call timed out.
            NoImageInResponse: The response held no usable image payload.
        """
        prompt = composite_prompt(product_garment, user_garment)
        logger.info(
            "Composite generation: product=%d chars, user=%d chars, prompt=%d chars",
            len(product_image.data), len(user_photo.data), len(prompt),
        )
        parts = [product_image.to_part(), user_photo.to_part(), text_part(prompt)]
        t0 = time.monotonic()
        try:
            response = await self._llm.generate_content(self._model, parts)
        except UpstreamError:
            if self._call_logger is not None:
                self._call_logger.record_failure(
                    "generate", self._llm.provider_name, self._model,
                    latency_ms=int((time.monotonic() - t0) * 1000),
                )
            raise
        if self._call_logger is not None:
            self._call_logger.record("generate", response)

        try:
            payload = self._extractor.extract(response.raw_response)
        except ResponseShapeError as exc:
            raise NoImageInResponse(f"No generated image found in response: {exc}") from exc

        return ImageRef.from_base64(payload, GENERATED_MEDIA_TYPE)
