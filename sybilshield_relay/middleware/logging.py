from __future__ import annotations

"""
Access logging middleware.

One structured "access" event per request with method, path, route, status,
latency_ms, rx_bytes, client_ip and user_agent. request_id / trace_id come from
the contextvars bound by the request-id middleware. Query strings are not
logged; wallet addresses in paths are.
"""

import time
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..logging import get_logger
from ..security.rate_limit import client_ip

log = get_logger("sybilshield_relay.access")


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    if route is None:
        return ""
    return getattr(route, "path_format", None) or getattr(route, "path", "") or ""


def _level_for_status(status: int) -> str:
    if status >= 500:
        return "error"
    if status >= 400:
        return "warning"
    return "info"


class AccessLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        start = time.perf_counter()
        try:
            rx_bytes = int(request.headers.get("content-length") or 0)
        except ValueError:
            rx_bytes = 0
        fields = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip(request),
            "user_agent": request.headers.get("user-agent", ""),
            "rx_bytes": rx_bytes,
        }

        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "access", status=500, latency_ms=round((time.perf_counter() - start) * 1000, 3), **fields
            )
            raise

        getattr(log, _level_for_status(response.status_code))(
            "access",
            status=response.status_code,
            route=_route_template(request),
            latency_ms=round((time.perf_counter() - start) * 1000, 3),
            **fields,
        )
        return response


def install_access_log_middleware(app: FastAPI) -> None:
    app.add_middleware(AccessLogMiddleware)


__all__ = ["AccessLogMiddleware", "install_access_log_middleware"]
