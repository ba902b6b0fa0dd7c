from __future__ import annotations

"""
Prometheus instrumentation.

``RelayMetrics`` owns a private CollectorRegistry (tests build one app per
case) and exposes one ``observe_*`` hook per pipeline stage:

    verifications_total{provider,status}
    badge_issuance_total{outcome}            issued | failed | conflict | renewed
    votes_total{outcome}                     recorded | already_voted | rejected
    ledger_calls_total{op,outcome}           ok | timeout | unavailable | rejected
    ledger_call_seconds{op}

HTTP traffic is counted by ``HttpMetricsMiddleware`` against the matched
route template, never the raw path, so label cardinality stays bounded.
"""

import time
from typing import Optional

from fastapi import FastAPI
from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Gauge, Histogram, ProcessCollector,
                               generate_latest)
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

_LATENCY_BUCKETS = (0.005, 0.025, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0)
# Ledger writes can take minutes to confirm.
_LEDGER_BUCKETS = (0.05, 0.25, 1.0, 5.0, 15.0, 60.0, 180.0)

UNMATCHED = "<unmatched>"


class RelayMetrics:
    def __init__(self, service_name: str, version: Optional[str] = None) -> None:
        self.registry = CollectorRegistry()
        ProcessCollector(registry=self.registry)

        build = Gauge("relay_build_info", "Constant 1, labelled with build data", ["service", "version"], registry=self.registry)
        build.labels(service_name, version or "unknown").set(1)

        self.http_requests = Counter(
            "http_requests_total", "HTTP requests by route template", ["method", "route", "status"], registry=self.registry
        )
        self.http_latency = Histogram(
            "http_request_duration_seconds",
            "HTTP request latency",
            ["method", "route"],
            buckets=_LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.verifications = Counter(
            "verifications_total", "Verification submissions", ["provider", "status"], registry=self.registry
        )
        self.issuances = Counter("badge_issuance_total", "Badge issuance outcomes", ["outcome"], registry=self.registry)
        self.votes = Counter("votes_total", "Vote relay outcomes", ["outcome"], registry=self.registry)
        self.ledger_calls = Counter(
            "ledger_calls_total", "Ledger bridge calls", ["op", "outcome"], registry=self.registry
        )
        self.ledger_latency = Histogram(
            "ledger_call_seconds", "Ledger bridge call latency", ["op"], buckets=_LEDGER_BUCKETS, registry=self.registry
        )

    # --- pipeline hooks ----------------------------------------------------

    def observe_verification(self, provider: str, status: str) -> None:
        self.verifications.labels(provider, status).inc()

    def observe_issuance(self, outcome: str) -> None:
        self.issuances.labels(outcome).inc()

    def observe_vote(self, outcome: str) -> None:
        self.votes.labels(outcome).inc()

    def observe_ledger(self, op: str, outcome: str, seconds: float) -> None:
        self.ledger_calls.labels(op, outcome).inc()
        self.ledger_latency.labels(op).observe(seconds)

    def exposition(self) -> Response:
        return Response(content=generate_latest(self.registry), media_type=CONTENT_TYPE_LATEST)


def _route_template(scope: Scope) -> str:
    route = scope.get("route")
    return getattr(route, "path", None) or UNMATCHED


class HttpMetricsMiddleware:
    """Pure ASGI; the router has set ``scope["route"]`` by the time the response returns."""

    def __init__(self, app: ASGIApp, metrics: RelayMetrics) -> None:
        self.app = app
        self.metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        status = 500
        started = time.perf_counter()

        async def capture(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, capture)
        finally:
            method = scope["method"]
            route = _route_template(scope)
            self.metrics.http_requests.labels(method, route, str(status)).inc()
            self.metrics.http_latency.labels(method, route).observe(time.perf_counter() - started)


def setup_metrics(app: FastAPI, metrics: RelayMetrics, *, path: str = "/metrics") -> RelayMetrics:
    """Install the HTTP middleware and the exposition route; stores ``app.state.metrics``."""
    app.add_middleware(HttpMetricsMiddleware, metrics=metrics)

    async def metrics_endpoint(request: Request) -> Response:
        return request.app.state.metrics.exposition()

    app.add_api_route(path, metrics_endpoint, methods=["GET"], include_in_schema=False)
    app.state.metrics = metrics
    return metrics


__all__ = ["RelayMetrics", "HttpMetricsMiddleware", "setup_metrics", "UNMATCHED"]
