# src/pipeline/agents/garment_detector.py — v2
"""Garment detection agent: classify the garment in an image as {category, color}.

Model output is short free text that is *usually* a JSON object. Parsing
degrades in three steps and never fails the request:

  1. strict JSON parse of the trimmed text (code fences removed),
  2. independent regex extraction of the ``category`` and ``color`` fields,
  3. the sentinel descriptor (``clothing item`` / ``unknown``).
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import TYPE_CHECKING, Any

from tryon_engine.core.errors import DetectionParseFailure, UpstreamError
from tryon_engine.core.models import SENTINEL_CATEGORY, SENTINEL_COLOR, GarmentDescriptor
from tryon_engine.llm.models import GenerationConfig, ImageInput, text_part

if TYPE_CHECKING:
    from tryon_engine.llm.base_client import BaseLLMClient
    from tryon_engine.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

# "clothes" is the key older prompt versions asked for.
_CATEGORY_KEYS = ("category", "clothes")
_CATEGORY_RE = re.compile(r'"(?:category|clothes)"\s*:\s*"([^"]+)"')
_COLOR_RE = re.compile(r'"colou?r"\s*:\s*"([^"]+)"')


class GarmentDetector:
    """Send image + prompt to the text/vision model and parse the garment.

    Args:
        llm: Upstream client.
        model: Text/vision model name.
        temperature: Kept low; only a short JSON object is expected.
        max_output_tokens: Kept small for the same reason.
        call_logger: Optional usage tracker.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        model: str,
        temperature: float = 0.1,
        max_output_tokens: int = 100,
        call_logger: CallLogger | None = None,
    ) -> None:
        self._llm = llm
        self._model = model
        self._config = GenerationConfig(
            temperature=temperature, max_output_tokens=max_output_tokens,
        )
        self._call_logger = call_logger

    @property
    def name(self) -> str:
        return "garment_detector"

    async def detect(
        self, image: ImageInput, prompt: str, stage: str = "detect",
    ) -> GarmentDescriptor:
        """Classify the garment in ``image``.

        Raises:
            AuthMissing: No credential configured.
            UpstreamError: Provider returned a non-success status.
            UpstreamTimeout: Provider call timed out.
        """
        logger.info(
            "Garment detection (%s): prompt=%d chars, image=%d chars",
            stage, len(prompt), len(image.data),
        )
        t0 = time.monotonic()
        try:
            response = await self._llm.generate_content(
                self._model,
                [text_part(prompt), image.to_part()],
                generation_config=self._config,
            )
        except UpstreamError:
            if self._call_logger is not None:
                self._call_logger.record_failure(
                    stage, self._llm.provider_name, self._model,
                    latency_ms=int((time.monotonic() - t0) * 1000),
                )
            raise
        if self._call_logger is not None:
            self._call_logger.record(stage, response)

        descriptor = parse_garment_text(response.content)
        logger.info(
            "Detected garment (%s): %s %s%s",
            stage, descriptor.color, descriptor.category,
            " (fallback)" if descriptor.is_sentinel else "",
        )
        return descriptor


def parse_garment_text(content: str) -> GarmentDescriptor:
    """Parse model text into a descriptor; never raises."""
    try:
        return _parse_strict(content)
    except DetectionParseFailure as exc:
        logger.debug("Strict garment parse failed: %s — using regex fallback", exc)

    category_match = _CATEGORY_RE.search(content)
    color_match = _COLOR_RE.search(content)
    if not category_match and not color_match:
        logger.warning("Garment detection output unparseable, using sentinel descriptor")
        return GarmentDescriptor.sentinel()

    return GarmentDescriptor(
        category=(_clean(category_match.group(1)) if category_match else "") or SENTINEL_CATEGORY,
        color=(_clean(color_match.group(1)) if color_match else "") or SENTINEL_COLOR,
    )


def _parse_strict(content: str) -> GarmentDescriptor:
    text = content.strip()
    if text.startswith("```"):
        lines = [ln for ln in text.split("\n") if not ln.strip().startswith("```")]
        text = "\n".join(lines).strip()
    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DetectionParseFailure(f"invalid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise DetectionParseFailure(f"expected JSON object, got {type(parsed).__name__}")

    category = next(
        (parsed[k] for k in _CATEGORY_KEYS if isinstance(parsed.get(k), str) and parsed[k].strip()),
        None,
    )
    color = parsed.get("color")
    if category is None or not isinstance(color, str) or not color.strip():
        raise DetectionParseFailure("missing category or color")
    return GarmentDescriptor(category=_clean(category), color=_clean(color))


def _clean(value: str) -> str:
    return " ".join(value.split()).lower()
