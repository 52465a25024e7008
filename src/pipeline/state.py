# src/pipeline/state.py — v2
"""Per-request state for the try-on state machine.

    IDLE → CHECK_CACHE → HIT → DONE
                       → MISS → DETECT_PRODUCT → DETECT_USER → GENERATE → CACHE → DONE

ERROR is reachable from any non-terminal stage and absorbs.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from tryon_engine.core.models import GarmentDescriptor, ImageRef, TryOnArtifact, TryOnStage

_ALLOWED: dict[TryOnStage, frozenset[TryOnStage]] = {
    TryOnStage.IDLE: frozenset({TryOnStage.CHECK_CACHE}),
    TryOnStage.CHECK_CACHE: frozenset({TryOnStage.HIT, TryOnStage.MISS}),
    TryOnStage.HIT: frozenset({TryOnStage.DONE}),
    TryOnStage.MISS: frozenset({TryOnStage.DETECT_PRODUCT}),
    TryOnStage.DETECT_PRODUCT: frozenset({TryOnStage.DETECT_USER}),
    TryOnStage.DETECT_USER: frozenset({TryOnStage.GENERATE}),
    TryOnStage.GENERATE: frozenset({TryOnStage.CACHE}),
    TryOnStage.CACHE: frozenset({TryOnStage.DONE}),
    TryOnStage.DONE: frozenset(),
    TryOnStage.ERROR: frozenset(),
}

TERMINAL_STAGES = frozenset({TryOnStage.DONE, TryOnStage.ERROR})


class InvalidTransition(RuntimeError):
    """Raised when the orchestrator attempts an illegal stage change."""


class StageTransition(BaseModel):
    """One recorded stage change."""

    stage: TryOnStage
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TryOnState(BaseModel):
    """Mutable state of one try-on request."""

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    product_image: ImageRef
    user_photo: ImageRef | None = None
    cache_key: str = ""
    stage: TryOnStage = TryOnStage.IDLE
    history: list[StageTransition] = Field(default_factory=list)

    product_garment: GarmentDescriptor | None = None
    user_garment: GarmentDescriptor | None = None
    artifact: TryOnArtifact | None = None
    from_cache: bool = False
    cache_written: bool = False

    upstream_calls: int = 0
    error: str | None = None

    def advance(self, stage: TryOnStage) -> None:
        """Move to ``stage``, enforcing the state machine."""
        if stage is TryOnStage.ERROR:
            if self.stage in TERMINAL_STAGES:
                raise InvalidTransition(f"Cannot fail from terminal stage {self.stage.value}")
        elif stage not in _ALLOWED[self.stage]:
            raise InvalidTransition(f"{self.stage.value} → {stage.value} is not allowed")
        self.stage = stage
        self.history.append(StageTransition(stage=stage))

    def fail(self, error: Exception) -> None:
        self.error = f"{type(error).__name__}: {error}"
        self.advance(TryOnStage.ERROR)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def stages_visited(self) -> list[TryOnStage]:
        return [t.stage for t in self.history]


class CancellationToken:
    """Cooperative cancellation flag set by the caller."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled
