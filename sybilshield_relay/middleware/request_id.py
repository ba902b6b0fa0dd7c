from __future__ import annotations

"""
Request ID & tracing middleware.

- Propagates an inbound X-Request-Id or generates one.
- Honors W3C ``traceparent``: keeps the inbound trace id with a new span id,
  otherwise starts a fresh trace.
- Stores ids on ``request.state`` (request_id, trace_id, span_id) and binds
  them into structlog contextvars for the duration of the request.
- Echoes X-Request-Id and traceparent on the response.
"""

import re
import secrets
import uuid
from typing import Optional, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..logging import bind_request_context, clear_request_context

_TRACEPARENT_RE = re.compile(
    r"^(?P<ver>[0-9a-f]{2})-(?P<trace_id>[0-9a-f]{32})-(?P<span_id>[0-9a-f]{16})-(?P<flags>[0-9a-f]{2})$"
)
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

_CONTEXT_KEYS = ("request_id", "trace_id", "span_id")


def parse_traceparent(value: str) -> Optional[Tuple[str, str, str]]:
    """Return (trace_id, parent_span_id, flags) for a valid header, else None."""
    m = _TRACEPARENT_RE.match(value.strip())
    if not m:
        return None
    trace_id, span_id = m.group("trace_id"), m.group("span_id")
    if trace_id == "0" * 32 or span_id == "0" * 16:
        return None
    return trace_id, span_id, m.group("flags")


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header: str = "X-Request-Id"):
        super().__init__(app)
        self.header = header

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get(self.header.lower(), "")
        if not _REQUEST_ID_RE.match(req_id):
            req_id = uuid.uuid4().hex

        parsed = parse_traceparent(request.headers.get("traceparent", ""))
        if parsed:
            trace_id, _parent, flags = parsed
        else:
            trace_id, flags = secrets.token_hex(16), "01"
        span_id = secrets.token_hex(8)

        request.state.request_id = req_id
        request.state.trace_id = trace_id
        request.state.span_id = span_id
        bind_request_context(request_id=req_id, trace_id=trace_id, span_id=span_id)

        try:
            response: Response = await call_next(request)
        finally:
            clear_request_context(*_CONTEXT_KEYS)

        response.headers[self.header] = req_id
        response.headers["traceparent"] = f"00-{trace_id}-{span_id}-{flags}"
        return response


__all__ = ["RequestIdMiddleware", "parse_traceparent"]
