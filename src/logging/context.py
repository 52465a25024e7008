# src/logging/context.py — v1
"""Contextual logging support — attach request_id, cache_key, stage to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging — set per try-on request.
_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_cache_key: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "cache_key", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    request_id: str | None = None
    cache_key: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        request_id=_request_id.get(),
        cache_key=_cache_key.get(),
        stage=_stage.get(),
    )


def set_request_context(request_id: str, cache_key: str | None = None) -> None:
    """Set request-level context (called once per try-on request)."""
    _request_id.set(request_id)
    _cache_key.set(cache_key)


def set_stage_context(stage: str | None) -> None:
    """Set the orchestrator stage currently executing."""
    _stage.set(stage)


def clear_context() -> None:
    """Reset all context variables."""
    _request_id.set(None)
    _cache_key.set(None)
    _stage.set(None)
