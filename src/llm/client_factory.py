# src/llm/client_factory.py — v4
"""Factory: instantiate the upstream client from the configured provider."""

from __future__ import annotations

import logging
from typing import Any

from tryon_engine.config.settings import Settings
from tryon_engine.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("gemini",)


class UnsupportedProviderError(ValueError):
    """Raised when LLM_PROVIDER names a provider without an adapter."""


def create_llm_client(
    provider: str,
    settings: Settings | None = None,
    **kwargs: Any,
) -> BaseLLMClient:
    """Instantiate the adapter for ``provider``.

    Args:
        provider: Provider identifier (gemini).
        settings: Application settings (base URL, key, timeout).
        **kwargs: Adapter arguments that override settings, e.g. ``credential_provider``.

    Raises:
        UnsupportedProviderError: If no adapter exists for the provider.
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise UnsupportedProviderError(
            f"Unsupported LLM provider: {provider!r}. "
            f"Available: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    from tryon_engine.llm.adapters.gemini_adapter import GeminiAdapter

    init_kwargs = dict(kwargs)
    if settings is not None:
        init_kwargs.setdefault("base_url", settings.base_url)
        init_kwargs.setdefault("api_key", settings.gemini_api_key)
        init_kwargs.setdefault("timeout_s", settings.request_timeout_s)

    logger.debug("Creating LLM client: provider=%s", provider)
    return GeminiAdapter(**init_kwargs)
