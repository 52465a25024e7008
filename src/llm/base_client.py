# src/llm/base_client.py — v2
"""Abstract generative client interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from tryon_engine.llm.models import GenerationConfig, LLMResponse


class BaseLLMClient(ABC):
    """Unified interface for generateContent-style providers."""

    @abstractmethod
    async def generate_content(
        self,
        model: str,
        parts: list[dict[str, Any]],
        generation_config: GenerationConfig | None = None,
    ) -> LLMResponse:
        """Send one multi-part request and return the normalized response.

        Raises:
            AuthMissing: No credential is configured (checked before any I/O).
            UpstreamError: Provider answered with a non-success status.
            UpstreamTimeout: The call did not finish within the timeout.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (gemini, ...)."""

    async def aclose(self) -> None:
        """Release transport resources. Default: nothing to release."""
