# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for upstream endpoints, cache quota, storage backend
and logging. Every field can be overridden by an environment variable of the
same name (case-insensitive), e.g. ``GEMINI_API_KEY`` or ``CACHE_BUDGET_BYTES``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === UPSTREAM PROVIDER ===
    llm_provider: str = "gemini"
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    text_model: str = "gemini-2.0-flash-exp"
    image_model: str = "gemini-2.5-flash-image-preview"
    request_timeout_s: float = 60.0

    # === Detection ===
    detection_temperature: float = 0.1
    detection_max_tokens: int = 100

    # === Extraction ===
    min_image_payload_chars: int = 1000

    # === Storage area ===
    storage_backend: Literal["json", "sqlite", "memory"] = "json"
    storage_root: Path = Path("~/.tryon_engine/storage")

    # === Result cache ===
    cache_budget_bytes: int = 4 * 1024 * 1024
    cache_retention_floor: int = 3

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("request_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:  # noqa: N805
        """Network calls must be bounded."""
        if not 1.0 <= v <= 600.0:
            raise ValueError("request_timeout_s must be between 1 and 600 seconds")
        return v

    @field_validator("cache_retention_floor")
    @classmethod
    def validate_retention_floor(cls, v: int) -> int:  # noqa: N805
        if not 3 <= v <= 5:
            raise ValueError("cache_retention_floor must be between 3 and 5")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.cache_budget_bytes <= 0:
            errors.append("CACHE_BUDGET_BYTES must be positive")

        if self.min_image_payload_chars < 0:
            errors.append("MIN_IMAGE_PAYLOAD_CHARS must be >= 0")

        if self.detection_max_tokens <= 0:
            errors.append("DETECTION_MAX_TOKENS must be positive")

        if not self.gemini_base_url.startswith(("http://", "https://")):
            errors.append("GEMINI_BASE_URL must be an http(s) URL")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def base_url(self) -> str:
        """Base URL without a trailing slash."""
        return self.gemini_base_url.rstrip("/")


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or CLI flags).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
