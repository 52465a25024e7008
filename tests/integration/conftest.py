# tests/integration/conftest.py — v8
"""Shared fixtures for integration tests.

No external services: the upstream provider and remote product images are
served either by ScriptedLLMClient or by an httpx.MockTransport
(FakeGeminiService), so the real GeminiAdapter and ImageResolver run
unchanged.

Changelog:
    v8: Replace container fixtures with in-process fakes for the try-on
        engine (ScriptedLLMClient, FakeGeminiService).
"""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any

import httpx
import pytest

from tryon_engine.config.settings import Settings
from tryon_engine.llm.base_client import BaseLLMClient
from tryon_engine.llm.models import GenerationConfig, LLMResponse

logger = logging.getLogger(__name__)

TEXT_MODEL = "gemini-2.0-flash-exp"
IMAGE_MODEL = "gemini-2.5-flash-image-preview"
PRODUCT_URL = "https://shop.example.com/images/red-jacket.png"
PRODUCT_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
COMPOSITE_PAYLOAD = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x01" * 1200).decode("ascii")


def gemini_text_body(text: str) -> dict[str, Any]:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {"promptTokenCount": 300, "candidatesTokenCount": 8},
    }


def gemini_image_body(payload: str = COMPOSITE_PAYLOAD) -> dict[str, Any]:
    return {
        "candidates": [{"content": {"parts": [
            {"text": "Here is the try-on"},
            {"inlineData": {"mimeType": "image/png", "data": payload}},
        ]}}],
        "usageMetadata": {"promptTokenCount": 2600, "candidatesTokenCount": 1290},
    }


# =====================================================================
#  SCRIPTED CLIENT — BaseLLMClient without HTTP
# =====================================================================

class ScriptedLLMClient(BaseLLMClient):
    """Answers detection calls from a queue and image calls with a composite.

    Calls to ``image_model`` get ``image_body``; every other call pops the
    next detection pair (or reuses the default).
    """

    def __init__(
        self,
        detections: list[tuple[str, str]] | None = None,
        image_body: dict[str, Any] | None = None,
        image_model: str = IMAGE_MODEL,
    ):
        self._detections = list(detections or [])
        self._default_detection = ("shirt", "blue")
        self._image_body = image_body or gemini_image_body()
        self._image_model = image_model
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def generate_content(
        self,
        model: str,
        parts: list[dict[str, Any]],
        generation_config: GenerationConfig | None = None,
    ) -> LLMResponse:
        self.calls.append({"model": model, "parts": parts, "config": generation_config})
        if model == self._image_model:
            body = self._image_body
        else:
            category, color = self._detections.pop(0) if self._detections else self._default_detection
            body = gemini_text_body(json.dumps({"category": category, "color": color}))
        usage = body.get("usageMetadata", {})
        texts = [p["text"] for p in body["candidates"][0]["content"]["parts"] if "text" in p]
        return LLMResponse(
            content="".join(texts),
            input_tokens=usage.get("promptTokenCount", 0),
            output_tokens=usage.get("candidatesTokenCount", 0),
            model=model, provider="scripted", latency_ms=5,
            raw_response=body,
        )

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def aclose(self) -> None:
        self.closed = True


# =====================================================================
#  FAKE GEMINI SERVICE — httpx.MockTransport handler
# =====================================================================

class FakeGeminiService:
    """Serves generateContent for both models plus the product image URL."""

    product_url = PRODUCT_URL
    composite_payload = COMPOSITE_PAYLOAD

    def __init__(self, api_key: str = "integration-key"):
        self.api_key = api_key
        self.requests: list[httpx.Request] = []
        self.fail_generate_with: int | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET" and str(request.url) == PRODUCT_URL:
            return httpx.Response(200, content=PRODUCT_BYTES, headers={"content-type": "image/png"})
        if request.method != "POST" or not request.url.path.endswith(":generateContent"):
            return httpx.Response(404, text="not found")
        if request.url.params.get("key") != self.api_key:
            return httpx.Response(400, text='{"error": {"message": "API key not valid"}}')

        model = request.url.path.rsplit("/", 1)[-1].split(":", 1)[0]
        if model == IMAGE_MODEL:
            if self.fail_generate_with is not None:
                return httpx.Response(self.fail_generate_with, text="upstream unavailable")
            return httpx.Response(200, json=gemini_image_body())
        body = json.loads(request.content)
        prompt = body["contents"][0]["parts"][0]["text"]
        if "the person" in prompt:
            answer = {"category": "t-shirt", "color": "white"}
        else:
            answer = {"category": "jacket", "color": "red"}
        return httpx.Response(200, json=gemini_text_body(json.dumps(answer)))

    @property
    def generate_calls(self) -> int:
        return sum(1 for r in self.requests if r.method == "POST")


# =====================================================================
#  FIXTURES
# =====================================================================

@pytest.fixture
def scripted_llm() -> ScriptedLLMClient:
    return ScriptedLLMClient(detections=[("jacket", "red"), ("t-shirt", "white")])


@pytest.fixture
def fake_gemini() -> FakeGeminiService:
    return FakeGeminiService()


@pytest.fixture
def user_photo_file(tmp_path: Path) -> Path:
    path = tmp_path / "me.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0" + b"\x10" * 256)
    return path


@pytest.fixture
def storage_settings(tmp_path: Path):
    """Factory for Settings bound to one storage backend under tmp_path."""

    def _make(backend: str = "json", **overrides: Any) -> Settings:
        fields: dict[str, Any] = {
            "gemini_api_key": "",
            "storage_backend": backend,
            "storage_root": tmp_path / "storage",
            "text_model": TEXT_MODEL,
            "image_model": IMAGE_MODEL,
        }
        fields.update(overrides)
        return Settings(_env_file=None, **fields)

    return _make
