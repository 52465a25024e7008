# src/core/errors.py — v1
"""Error taxonomy for the try-on engine.

Only configuration and transport problems abort a request. Response-shape
problems during generation are recorded in the artifact; detection parse
problems and cache write problems never leave their component.
"""

from __future__ import annotations


class TryOnError(Exception):
    """Base class for all engine errors."""


class AuthMissing(TryOnError):
    """No credential or no user photo configured."""


class UpstreamError(TryOnError):
    """Provider returned a non-success HTTP status.

    ``body`` is the provider's raw error text, kept verbatim for diagnostics.
    """

    def __init__(self, status: int | None, body: str, model: str | None = None) -> None:
        self.status = status
        self.body = body
        self.model = model
        prefix = f"Upstream error ({status})" if status is not None else "Upstream error"
        super().__init__(f"{prefix}: {body}")


class UpstreamTimeout(UpstreamError):
    """Provider call exceeded the configured timeout."""

    def __init__(self, timeout_s: float, model: str | None = None) -> None:
        self.timeout_s = timeout_s
        super().__init__(None, f"request timed out after {timeout_s:.0f}s", model=model)


class ImageResolutionError(TryOnError):
    """An ImageRef could not be fetched or decoded."""


class ResponseShapeError(TryOnError):
    """Upstream response does not have the expected structure."""


class NoCandidates(ResponseShapeError):
    """Response carries zero candidates."""

    def __init__(self) -> None:
        super().__init__("No candidates returned from upstream")


class ExtractionFailed(ResponseShapeError):
    """No plausible image payload found in the response.

    ``saw_data_fields`` distinguishes "no data fields at all" (False) from
    "data fields found but all too short, likely a text-only reply" (True).
    """

    def __init__(self, saw_data_fields: bool, text_reply: str | None = None) -> None:
        self.saw_data_fields = saw_data_fields
        self.text_reply = text_reply
        if saw_data_fields:
            msg = "Data fields found but all too short; upstream likely returned text only"
        else:
            msg = "No image data fields found in upstream response"
        if text_reply:
            msg = f"{msg} (reply: {text_reply[:200]!r})"
        super().__init__(msg)


class NoImageInResponse(TryOnError):
    """Composite generation returned no usable image. Terminal for the request."""


class DetectionParseFailure(TryOnError):
    """Model text could not be parsed into a garment descriptor."""


class CacheWriteFailure(TryOnError):
    """Persisting a cache entry failed."""


class RequestCancelled(TryOnError):
    """Caller abandoned the request; its results are discarded."""
