# src/extraction/response_extractor.py — v1
"""Locate a generated base64 image inside a generateContent response.

The provider moves the image field around between versions, so extraction
is a best-effort cascade of strategies over the decoded JSON body:

  1. Structural scan — serialize the body and take the *last*
     ``"data": "<value>"`` occurrence. Generated-image fields have been
     observed after descriptive text fields; this ordering is a heuristic,
     not a documented contract.
  2. Typed walk over ``candidates[0].content.parts`` —
     ``inline_data.data`` / ``inlineData.data`` or ``part.data``.
  3. Candidate-level ``candidates[0].data``.

Every candidate payload must be longer than ``min_payload_chars``; shorter
strings are text that happens to match the shape.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterator

from tryon_engine.core.errors import ExtractionFailed, NoCandidates

logger = logging.getLogger(__name__)

MIN_PAYLOAD_CHARS = 1000

_DATA_FIELD_RE = re.compile(r'"data":\s*"([^"]+)"')

Strategy = Callable[[Any], Iterator[str]]


def structural_scan(response: Any) -> Iterator[str]:
    """Yield the last ``"data": "..."`` value in the serialized response."""
    text = json.dumps(response, ensure_ascii=False, default=str)
    matches = _DATA_FIELD_RE.findall(text)
    if matches:
        logger.debug("Structural scan found %d data field(s)", len(matches))
        yield matches[-1]


def content_parts_walk(response: Any) -> Iterator[str]:
    """Yield inline image data from ``candidates[0].content.parts`` in order."""
    content = _first_candidate(response).get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return
    for part in parts:
        if not isinstance(part, dict):
            continue
        for key in ("inline_data", "inlineData"):
            inline = part.get(key)
            if isinstance(inline, dict) and isinstance(inline.get("data"), str):
                yield inline["data"]
        if isinstance(part.get("data"), str):
            yield part["data"]


def candidate_level(response: Any) -> Iterator[str]:
    """Yield ``candidates[0].data`` if present."""
    data = _first_candidate(response).get("data")
    if isinstance(data, str):
        yield data


DEFAULT_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("structural_scan", structural_scan),
    ("content_parts", content_parts_walk),
    ("candidate_level", candidate_level),
)


class ResponseExtractor:
    """Run extraction strategies in order; first validated payload wins.

    Args:
        min_payload_chars: Payloads must be strictly longer than this.
        strategies: Ordered ``(name, strategy)`` pairs. Each strategy yields
            zero or more candidate payloads.
    """

    def __init__(
        self,
        min_payload_chars: int = MIN_PAYLOAD_CHARS,
        strategies: tuple[tuple[str, Strategy], ...] = DEFAULT_STRATEGIES,
    ) -> None:
        self._min_chars = min_payload_chars
        self._strategies = strategies

    def extract(self, response: Any) -> str:
        """Return the base64 image payload found in ``response``.

        Raises:
            NoCandidates: The response has zero candidates; no strategy runs.
            ExtractionFailed: Every strategy was exhausted without a payload
                passing the length gate.
        """
        candidates = response.get("candidates") if isinstance(response, dict) else None
        if not isinstance(candidates, list) or not candidates:
            logger.error("No candidates in upstream response")
            raise NoCandidates()

        saw_data_fields = False
        for name, strategy in self._strategies:
            for payload in strategy(response):
                saw_data_fields = True
                if len(payload) > self._min_chars:
                    logger.info(
                        "Image payload extracted via %s (%d chars)", name, len(payload),
                    )
                    return payload
                logger.debug(
                    "Strategy %s rejected payload of %d chars (minimum %d)",
                    name, len(payload), self._min_chars,
                )

        text_reply = _text_reply(response)
        logger.warning(
            "No image payload in response (data fields seen: %s)", saw_data_fields,
        )
        raise ExtractionFailed(saw_data_fields=saw_data_fields, text_reply=text_reply)


def _first_candidate(response: Any) -> dict[str, Any]:
    candidates = response.get("candidates") if isinstance(response, dict) else None
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return {}


def _text_reply(response: Any) -> str | None:
    content = _first_candidate(response).get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    return " ".join(texts) or None
