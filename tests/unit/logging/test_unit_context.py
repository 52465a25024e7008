# tests/unit/logging/test_unit_context.py — v2
"""Tests for logging/context.py — contextvars-based request context."""

from __future__ import annotations

import asyncio

import pytest

from tryon_engine.logging.context import (
    LogContext,
    clear_context,
    get_context,
    set_request_context,
    set_stage_context,
)


class TestLogContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_empty(self):
        assert get_context().as_dict() == {}

    def test_request_context(self):
        set_request_context("req1", "key1")
        ctx = get_context()
        assert ctx.request_id == "req1"
        assert ctx.cache_key == "key1"
        assert ctx.stage is None

    def test_request_context_resets_cache_key(self):
        set_request_context("req1", "key1")
        set_request_context("req2")
        assert get_context().cache_key is None

    def test_stage(self):
        set_stage_context("generate")
        assert get_context().stage == "generate"

    def test_clear(self):
        set_request_context("req1", "key1")
        set_stage_context("cache")
        clear_context()
        assert get_context() == LogContext()

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self):
        async def worker(request_id: str) -> str | None:
            set_request_context(request_id)
            await asyncio.sleep(0)
            return get_context().request_id

        results = await asyncio.gather(worker("a"), worker("b"))
        assert results == ["a", "b"]
