# src/llm/models.py — v2
"""Upstream wire types: ImageInput, GenerationConfig, LLMResponse.

The request body follows the generateContent REST shape:
``{contents: [{parts: [...]}], generationConfig?: {temperature, maxOutputTokens}}``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ImageInput(BaseModel):
    """Resolved image payload for multimodal requests (base64 text)."""

    data: str
    media_type: str = "image/jpeg"
    source_id: str | None = None

    def to_part(self) -> dict[str, Any]:
        return {"inline_data": {"mime_type": self.media_type, "data": self.data}}


class GenerationConfig(BaseModel):
    """Sampling controls sent as ``generationConfig``."""

    temperature: float | None = None
    max_output_tokens: int | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {}
        if self.temperature is not None:
            wire["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            wire["maxOutputTokens"] = self.max_output_tokens
        return wire


def text_part(text: str) -> dict[str, Any]:
    return {"text": text}


class LLMResponse(BaseModel):
    """Normalized response from the provider.

    ``raw_response`` keeps the decoded JSON body untouched; image extraction
    works on it directly because its shape is not stable across versions.
    """

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: str
    latency_ms: int
    raw_response: Any = None
