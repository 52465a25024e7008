# src/tracking/call_logger.py — v3
"""Upstream call logging — records token usage reported in ``usageMetadata``.

Calls that reach the provider but fail (error status or timeout) are
recorded too, with zero tokens and ``status="failed"``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from tryon_engine.llm.models import LLMResponse
from tryon_engine.tracking.models import UpstreamCallRecord, UsageSummary

logger = logging.getLogger(__name__)


class CallLogger:
    """Accumulates upstream call records."""

    def __init__(self) -> None:
        self._records: list[UpstreamCallRecord] = []

    def record(self, stage: str, response: LLMResponse) -> UpstreamCallRecord:
        """Record a successful upstream call.

        Args:
            stage: Orchestrator stage that issued the call (e.g. "detect_product").
            response: Normalized response with token usage.
        """
        record = UpstreamCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            stage=stage,
            provider=response.provider,
            model=response.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            total_tokens=response.input_tokens + response.output_tokens,
            latency_ms=response.latency_ms,
            status="success",
        )
        self._records.append(record)
        logger.info(
            "API usage (%s): input=%d output=%d total=%d",
            stage, record.input_tokens, record.output_tokens, record.total_tokens,
        )
        return record

    def record_failure(
        self,
        stage: str,
        provider: str,
        model: str,
        latency_ms: int = 0,
    ) -> UpstreamCallRecord:
        """Record an upstream call that ended in an error status or timeout."""
        record = UpstreamCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            stage=stage,
            provider=provider,
            model=model,
            input_tokens=0,
            output_tokens=0,
            total_tokens=0,
            latency_ms=latency_ms,
            status="failed",
        )
        self._records.append(record)
        logger.info("API call failed (%s): model=%s", stage, model)
        return record

    @property
    def records(self) -> list[UpstreamCallRecord]:
        """All recorded calls."""
        return list(self._records)

    @property
    def total_tokens(self) -> int:
        """Total tokens consumed across all calls."""
        return sum(r.total_tokens for r in self._records)

    @property
    def total_calls(self) -> int:
        """Total number of upstream calls, failed ones included."""
        return len(self._records)

    def summary(self) -> UsageSummary:
        by_stage: dict[str, int] = {}
        for r in self._records:
            by_stage[r.stage] = by_stage.get(r.stage, 0) + 1
        return UsageSummary(
            total_calls=self.total_calls,
            failed_calls=sum(1 for r in self._records if r.status == "failed"),
            total_input_tokens=sum(r.input_tokens for r in self._records),
            total_output_tokens=sum(r.output_tokens for r in self._records),
            total_tokens=self.total_tokens,
            calls_by_stage=by_stage,
        )
