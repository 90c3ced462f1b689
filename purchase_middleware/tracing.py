"""Per-request trace context.

The trace and request ids of the inbound request are kept in a ContextVar so
every outbound call made while handling that request can forward them without
threading them through each function. ContextVars are copied per asyncio task,
so concurrently handled requests never see each other's ids.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator

TRACE_HEADER = "x-trace-id"
REQUEST_ID_HEADER = "x-request-id"


@dataclass(frozen=True)
class RequestContext:
    trace_id: str
    request_id: str | None = None


_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


@contextmanager
def request_context(trace_id: str, request_id: str | None = None) -> Iterator[RequestContext]:
    """Bind a trace context for the duration of the `with` block."""
    ctx = RequestContext(trace_id=trace_id, request_id=request_id)
    token = _request_context.set(ctx)
    try:
        yield ctx
    finally:
        _request_context.reset(token)


def get_trace_id() -> str | None:
    ctx = _request_context.get()
    return ctx.trace_id if ctx else None


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None


def correlation_headers() -> dict[str, str]:
    """Headers to forward on outbound calls. Empty outside a request."""
    headers: dict[str, str] = {}
    trace_id = get_trace_id()
    request_id = get_request_id()
    if trace_id:
        headers[TRACE_HEADER] = trace_id
    if request_id:
        headers[REQUEST_ID_HEADER] = request_id
    return headers
