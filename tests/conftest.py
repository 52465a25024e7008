# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides sample images, canned upstream responses, a mock upstream client
and in-memory storage. No external dependencies — all I/O is mocked.
"""

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from tryon_engine.config.settings import Settings
from tryon_engine.core.models import GarmentDescriptor, ImageRef, TryOnArtifact
from tryon_engine.llm.models import LLMResponse
from tryon_engine.storage.memory_store import MemoryKeyValueStore
from tryon_engine.storage.profile import ProfileStore

GENERATED_PAYLOAD = "iVBORw0KGgoAAAANSUhEUg" + "A" * 2002
USER_PHOTO_PAYLOAD = "/9j/4AAQSkZJRgABAQ" + "B" * 500
PRODUCT_URL = "https://shop.example.com/images/red-jacket.jpg"


# === Helpers: canned upstream bodies ===


def text_body(text: str) -> dict[str, Any]:
    """generateContent body whose first candidate holds one text part."""
    return {
        "candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}],
        "usageMetadata": {"promptTokenCount": 120, "candidatesTokenCount": 12},
    }


def image_body(payload: str = GENERATED_PAYLOAD, caption: str = "Here you go") -> dict[str, Any]:
    """generateContent body with a caption followed by an inline image."""
    return {
        "candidates": [{
            "content": {
                "parts": [
                    {"text": caption},
                    {"inlineData": {"mimeType": "image/png", "data": payload}},
                ],
                "role": "model",
            },
            "finishReason": "STOP",
        }],
        "usageMetadata": {"promptTokenCount": 2500, "candidatesTokenCount": 1290},
    }


def llm_response(body: dict[str, Any], model: str = "gemini-test") -> LLMResponse:
    """Wrap a decoded body the way GeminiAdapter does."""
    candidates = body.get("candidates") or [{}]
    parts = candidates[0].get("content", {}).get("parts", [])
    text = "".join(p["text"] for p in parts if isinstance(p.get("text"), str))
    usage = body.get("usageMetadata", {})
    return LLMResponse(
        content=text,
        input_tokens=usage.get("promptTokenCount", 0),
        output_tokens=usage.get("candidatesTokenCount", 0),
        model=model,
        provider="gemini",
        latency_ms=250,
        raw_response=body,
    )


def detection_response(category: str, color: str) -> LLMResponse:
    return llm_response(text_body(json.dumps({"category": category, "color": color})))


# === FIXTURES: Canned responses ===


@pytest.fixture
def canned() -> SimpleNamespace:
    """Body and response builders, plus the sample payloads."""
    return SimpleNamespace(
        text_body=text_body,
        image_body=image_body,
        llm_response=llm_response,
        detection_response=detection_response,
        generated_payload=GENERATED_PAYLOAD,
        product_url=PRODUCT_URL,
    )


# === FIXTURES: Sample data ===


@pytest.fixture
def user_photo() -> ImageRef:
    return ImageRef.from_base64(USER_PHOTO_PAYLOAD, "image/jpeg")


@pytest.fixture
def product_image() -> ImageRef:
    return ImageRef.from_base64("R0lGODlhAQABAIAAAP" + "C" * 400, "image/gif")


@pytest.fixture
def sample_artifact(user_photo: ImageRef, product_image: ImageRef) -> TryOnArtifact:
    return TryOnArtifact(
        source_user_photo=user_photo,
        source_product_image=product_image,
        product_garment=GarmentDescriptor(category="jacket", color="red"),
        user_garment=GarmentDescriptor(category="coat", color="black"),
        generated_image=ImageRef.from_base64(GENERATED_PAYLOAD),
        cache_key="abc_def",
    )


# === FIXTURES: Mock upstream ===


@pytest.fixture
def happy_responses() -> list[LLMResponse]:
    """Product detection, user detection, composite — in call order."""
    return [
        detection_response("jacket", "red"),
        detection_response("coat", "black"),
        llm_response(image_body()),
    ]


@pytest.fixture
def mock_llm(happy_responses: list[LLMResponse]) -> AsyncMock:
    """Mock BaseLLMClient answering the three try-on calls in order."""
    client = AsyncMock()
    client.generate_content = AsyncMock(side_effect=list(happy_responses))
    client.provider_name = "mock"
    return client


# === FIXTURES: Storage + settings ===


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest_asyncio.fixture
async def configured_profile(memory_store: MemoryKeyValueStore, user_photo: ImageRef) -> ProfileStore:
    """Profile with a credential and a user photo already saved."""
    profile = ProfileStore(memory_store)
    await profile.set_credential("test-key")
    await profile.set_user_photo(user_photo)
    return profile


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        gemini_api_key="",
        storage_backend="memory",
        storage_root=tmp_path / "storage",
    )
