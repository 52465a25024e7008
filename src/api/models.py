# src/api/models.py — v2
"""API-level models: SetupStatus, StorageUsage, EngineStatus."""

from __future__ import annotations

from pydantic import BaseModel, computed_field

from tryon_engine.tracking.models import UsageSummary


class SetupStatus(BaseModel):
    """Whether the engine can serve a try-on request."""

    has_credential: bool
    has_user_photo: bool

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_setup(self) -> bool:
        return self.has_credential and self.has_user_photo


class StorageUsage(BaseModel):
    """Storage area usage as seen by the result cache."""

    total_bytes: int
    cache_bytes: int
    cache_entries: int
    budget_bytes: int
    retention_floor: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fill_ratio(self) -> float:
        return self.total_bytes / self.budget_bytes if self.budget_bytes else 0.0


class EngineStatus(BaseModel):
    """Return value of TryOnEngine.status() — setup, storage and usage."""

    setup: SetupStatus
    storage: StorageUsage
    total_tryons: int = 0
    first_run: bool = False
    session_usage: UsageSummary | None = None
