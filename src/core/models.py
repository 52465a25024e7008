# src/core/models.py — v1
"""Core domain models: ImageRef, GarmentDescriptor, TryOnArtifact, TryOnStage."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

SENTINEL_CATEGORY = "clothing item"
SENTINEL_COLOR = "unknown"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?,", re.IGNORECASE)


class ImageRef(BaseModel):
    """Opaque, immutable reference to image bytes.

    ``uri`` is an http(s) URL, a ``data:`` URL, a bare base64 string or a
    local file path. The ``uri`` string is also the identity hashed into
    cache keys, so two refs are the same image iff their uris are equal.
    """

    model_config = ConfigDict(frozen=True)

    uri: str

    @classmethod
    def from_base64(cls, data: str, media_type: str = "image/png") -> ImageRef:
        """Wrap a base64 payload into a ``data:`` URL reference."""
        return cls(uri=f"data:{media_type};base64,{data}")

    @property
    def is_data_url(self) -> bool:
        return bool(_DATA_URL_RE.match(self.uri))

    @property
    def is_remote(self) -> bool:
        return self.uri.startswith(("http://", "https://"))

    @property
    def media_type(self) -> str | None:
        """MIME type declared by a data URL, if any."""
        match = _DATA_URL_RE.match(self.uri)
        if match and match.group("mime"):
            return match.group("mime").lower()
        return None

    def __str__(self) -> str:
        if self.is_data_url:
            return f"{self.uri[:32]}...({len(self.uri)} chars)"
        return self.uri


class GarmentDescriptor(BaseModel):
    """Detected garment type and dominant color.

    Never partially filled: a failed detection yields ``sentinel()``.
    """

    model_config = ConfigDict(frozen=True)

    category: str = Field(min_length=1)
    color: str = Field(min_length=1)

    @classmethod
    def sentinel(cls) -> GarmentDescriptor:
        return cls(category=SENTINEL_CATEGORY, color=SENTINEL_COLOR)

    @property
    def is_sentinel(self) -> bool:
        return self.category == SENTINEL_CATEGORY and self.color == SENTINEL_COLOR

    def describe(self) -> str:
        """Human phrase used inside prompts, e.g. 'red jacket'."""
        if self.color == SENTINEL_COLOR:
            return self.category
        return f"{self.color} {self.category}"


class TryOnArtifact(BaseModel):
    """Unit stored in the result cache and returned to the caller.

    ``generated_image`` is None exactly when generation failed after detection
    succeeded; ``error`` then carries the diagnostic.
    """

    source_user_photo: ImageRef
    source_product_image: ImageRef
    product_garment: GarmentDescriptor
    user_garment: GarmentDescriptor
    generated_image: ImageRef | None = None
    cache_key: str
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def validate_outcome(self) -> TryOnArtifact:
        if self.generated_image is None and not self.error:
            raise ValueError("artifact without generated_image must carry an error")
        if self.generated_image is not None and self.error is not None:
            raise ValueError("artifact with generated_image must not carry an error")
        return self

    @property
    def succeeded(self) -> bool:
        return self.generated_image is not None


class TryOnStage(str, Enum):
    """States of a single try-on request."""

    IDLE = "idle"
    CHECK_CACHE = "check_cache"
    HIT = "hit"
    MISS = "miss"
    DETECT_PRODUCT = "detect_product"
    DETECT_USER = "detect_user"
    GENERATE = "generate"
    CACHE = "cache"
    DONE = "done"
    ERROR = "error"
