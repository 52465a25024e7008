# src/pipeline/image_resolver.py — v2
"""Resolve ImageRefs to base64 payloads ready for inline upload.

Supported references: ``data:`` URLs, http(s) URLs (fetched with httpx),
local file paths and bare base64 strings. A bare string counts as base64
only in the standard alphabet, padded to a multiple of four and at least
``MIN_BARE_BASE64_CHARS`` long, so a file name that does not exist is
reported as unrecognized rather than sent upstream as image data.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
import re
from pathlib import Path
from urllib.parse import unquote_to_bytes

import httpx

from tryon_engine.core.errors import ImageResolutionError
from tryon_engine.core.models import ImageRef
from tryon_engine.llm.models import ImageInput

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "image/jpeg"

MIN_BARE_BASE64_CHARS = 64

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


class ImageResolver:
    """Turn an ImageRef into an ImageInput (base64 data + media type).

    Args:
        timeout_s: Timeout for remote fetches.
        http_client: Optional shared httpx.AsyncClient.
    """

    def __init__(
        self,
        timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout_s = timeout_s
        self._client = http_client
        self._owns_client = http_client is None

    async def resolve(self, ref: ImageRef) -> ImageInput:
        """Resolve ``ref``.

        Raises:
            ImageResolutionError: The image could not be fetched or decoded.
        """
        if ref.is_data_url:
            return _from_data_url(ref)
        if ref.is_remote:
            return await self._fetch(ref)

        path = _as_existing_file(ref.uri)
        if path is not None:
            media_type = mimetypes.guess_type(path.name)[0] or DEFAULT_MEDIA_TYPE
            try:
                raw = path.read_bytes()
            except OSError as e:
                raise ImageResolutionError(f"Failed to read image file {path}: {e}") from e
            data = base64.b64encode(raw).decode("ascii")
            return ImageInput(data=data, media_type=media_type, source_id=str(path))

        bare = "".join(ref.uri.split())
        if len(bare) >= MIN_BARE_BASE64_CHARS and len(bare) % 4 == 0 and _BASE64_RE.match(bare):
            return ImageInput(data=bare, media_type=DEFAULT_MEDIA_TYPE)

        raise ImageResolutionError(f"Unrecognized image reference: {ref}")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _fetch(self, ref: ImageRef) -> ImageInput:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        try:
            resp = await self._client.get(ref.uri, timeout=self._timeout_s)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageResolutionError(f"Failed to load image {ref.uri}: {e}") from e

        content_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
        media_type = content_type if content_type.startswith("image/") else DEFAULT_MEDIA_TYPE
        logger.debug("Fetched %s (%d bytes, %s)", ref.uri, len(resp.content), media_type)
        return ImageInput(
            data=base64.b64encode(resp.content).decode("ascii"),
            media_type=media_type,
            source_id=ref.uri,
        )


def _from_data_url(ref: ImageRef) -> ImageInput:
    header, _, payload = ref.uri.partition(",")
    media_type = ref.media_type or DEFAULT_MEDIA_TYPE
    if ";base64" in header.lower():
        data = "".join(payload.split())
        if not _BASE64_RE.match(data):
            raise ImageResolutionError("Invalid base64 in data URL")
    else:
        data = base64.b64encode(unquote_to_bytes(payload)).decode("ascii")
    if not data:
        raise ImageResolutionError("Empty data URL payload")
    return ImageInput(data=data, media_type=media_type)


def _as_existing_file(uri: str) -> Path | None:
    try:
        path = Path(uri).expanduser()
        return path if path.is_file() else None
    except (OSError, ValueError):
        return None
