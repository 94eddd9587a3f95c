"""Per-request context that enrichment merges into audit events.

The HTTP middleware sets a :class:`RequestContext` for the duration of a
request; any ``log()`` call made while handling that request picks it up
without the caller threading it through explicitly.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from pydantic import BaseModel


class RequestContext(BaseModel):
    request_id: str | None = None
    correlation_id: str | None = None
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


_current: ContextVar[RequestContext | None] = ContextVar(
    "pathfinder_audit_request_context", default=None
)


def get_request_context() -> RequestContext | None:
    return _current.get()


@contextmanager
def request_context(ctx: RequestContext) -> Iterator[RequestContext]:
    """Bind *ctx* as the current request context inside the ``with`` block."""
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)
