"""Tests for core/context.py: per-request context binding."""
from __future__ import annotations

import asyncio

from pathfinder_audit.audit.enrichment import EventEnricher
from pathfinder_audit.core.context import RequestContext, get_request_context, request_context


def test_no_context_by_default() -> None:
    assert get_request_context() is None


def test_context_is_reset_after_block() -> None:
    ctx = RequestContext(request_id="r-1")
    with request_context(ctx) as bound:
        assert bound is ctx
        assert get_request_context() is ctx
    assert get_request_context() is None


def test_nested_contexts_restore_outer() -> None:
    outer, inner = RequestContext(request_id="outer"), RequestContext(request_id="inner")
    with request_context(outer):
        with request_context(inner):
            assert get_request_context() is inner
        assert get_request_context() is outer


async def test_concurrent_tasks_see_their_own_context() -> None:
    async def handle(request_id: str) -> str | None:
        with request_context(RequestContext(request_id=request_id)):
            await asyncio.sleep(0)
            ctx = get_request_context()
            return ctx.request_id if ctx else None

    assert await asyncio.gather(handle("a"), handle("b")) == ["a", "b"]


def test_enrichment_fills_missing_fields_from_context(make_event) -> None:
    ctx = RequestContext(
        request_id="r-9", session_id="s-1", ip_address="10.1.2.3", user_agent="curl/8"
    )
    with request_context(ctx):
        event = EventEnricher().enrich(make_event(ip_address="192.0.2.1"))
    assert event.request_id == "r-9"
    assert event.session_id == "s-1"
    assert event.user_agent == "curl/8"
    # Explicit values win over the context.
    assert event.ip_address == "192.0.2.1"
