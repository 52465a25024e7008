# src/llm/adapters/gemini_adapter.py — v2
"""Gemini REST adapter implementing BaseLLMClient.

Talks to ``{base_url}/{model}:generateContent?key={credential}`` over httpx
instead of the SDK: image extraction needs the raw JSON body, and the SDK
normalizes it away.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from tryon_engine.core.errors import AuthMissing, UpstreamError, UpstreamTimeout
from tryon_engine.llm.base_client import BaseLLMClient
from tryon_engine.llm.models import GenerationConfig, LLMResponse

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[], Awaitable[str | None]]


class GeminiAdapter(BaseLLMClient):
    """Gemini generateContent adapter.

    Args:
        base_url: Models endpoint root, without trailing slash.
        api_key: Static credential. Ignored when ``credential_provider`` is set.
        credential_provider: Async callable returning the current credential,
            so a key saved after start-up is picked up on the next call.
        timeout_s: Per-call timeout; exceeding it raises UpstreamTimeout.
        http_client: Optional shared httpx.AsyncClient (tests inject a
            MockTransport-backed one).
    """

    def __init__(
        self,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        api_key: str = "",
        credential_provider: CredentialProvider | None = None,
        timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._credential_provider = credential_provider
        self._timeout_s = timeout_s
        self._client = http_client
        self._owns_client = http_client is None

    async def generate_content(
        self,
        model: str,
        parts: list[dict[str, Any]],
        generation_config: GenerationConfig | None = None,
    ) -> LLMResponse:
        api_key = await self._resolve_credential()
        if not api_key:
            raise AuthMissing("No API key configured")

        body: dict[str, Any] = {"contents": [{"parts": parts}]}
        if generation_config is not None:
            wire = generation_config.to_wire()
            if wire:
                body["generationConfig"] = wire

        url = f"{self._base_url}/{model}:generateContent"
        client = self._get_client()

        t0 = time.monotonic()
        try:
            resp = await client.post(
                url,
                params={"key": api_key},
                json=body,
                timeout=self._timeout_s,
            )
        except httpx.TimeoutException as e:
            logger.warning("Gemini call to %s timed out after %.0fs", model, self._timeout_s)
            raise UpstreamTimeout(self._timeout_s, model=model) from e
        except httpx.HTTPError as e:
            raise UpstreamError(None, f"transport error: {e}", model=model) from e
        latency = int((time.monotonic() - t0) * 1000)

        if resp.status_code >= 400:
            logger.error(
                "Gemini API error: model=%s status=%d", model, resp.status_code,
            )
            raise UpstreamError(resp.status_code, resp.text, model=model)

        try:
            result = resp.json()
        except ValueError as e:
            raise UpstreamError(resp.status_code, f"invalid JSON body: {resp.text[:500]}", model=model) from e

        usage: dict[str, Any] = {}
        if isinstance(result, dict) and isinstance(result.get("usageMetadata"), dict):
            usage = result["usageMetadata"]
        input_tokens = int(usage.get("promptTokenCount", 0) or 0)
        output_tokens = int(usage.get("candidatesTokenCount", 0) or 0)
        logger.debug(
            "Gemini usage: model=%s input=%d output=%d latency=%dms",
            model, input_tokens, output_tokens, latency,
        )

        return LLMResponse(
            content=_first_text(result),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
            provider="gemini",
            latency_ms=latency,
            raw_response=result,
        )

    @property
    def provider_name(self) -> str:
        return "gemini"

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _resolve_credential(self) -> str | None:
        if self._credential_provider is not None:
            return await self._credential_provider()
        return self._api_key

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client


def _first_text(result: Any) -> str:
    """Concatenate the text parts of the first candidate, tolerating any shape."""
    if not isinstance(result, dict):
        return ""
    candidates = result.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    return "".join(texts)
