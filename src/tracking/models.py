# src/tracking/models.py — v3
"""Tracking domain models: UpstreamCallRecord, UsageSummary."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class UpstreamCallRecord(BaseModel):
    """Individual upstream API call log entry."""

    call_id: str
    timestamp: datetime
    stage: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    latency_ms: int
    status: Literal["success", "failed"]


class UsageSummary(BaseModel):
    """Aggregated usage of one request (or one engine lifetime)."""

    total_calls: int = 0
    failed_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    calls_by_stage: dict[str, int] = {}
