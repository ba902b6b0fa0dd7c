from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI

from .config import Settings, load_config
from .logging import get_logger, setup_logging
from .metrics import RelayMetrics, setup_metrics
from .middleware.errors import install_error_handlers
from .middleware.logging import install_access_log_middleware
from .middleware.request_id import RequestIdMiddleware
from .routers import build_router
from .security.cors import setup_cors
from .security.rate_limit import setup_rate_limiter
from .security.signatures import build_signature_verifier
from .services import RelayServices, build_services
from .version import __version__

log = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Services are built by the factory; the lifespan only reports start-up and
    releases the HTTP client and ledger adapter on shutdown.
    """
    settings: Settings = app.state.settings
    log.info(
        "relay_started",
        env=settings.app_env,
        ledger_backend=settings.ledger_backend,
        provider_backend=settings.provider_backend,
        signature_mode=settings.signature_mode,
        version=__version__,
    )
    try:
        yield
    finally:
        services: RelayServices = app.state.services
        await services.aclose()
        log.info("relay_stopped")


def create_app(
    settings: Optional[Settings] = None,
    *,
    services: Optional[RelayServices] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    FastAPI factory. Builds the service bundle, then mounts routers,
    middleware and metrics.

    Refuses to build a production app whose capabilities are development-only
    (accept-all signatures, static providers, in-memory ledger).
    """
    cfg = settings or load_config()
    setup_logging(level=cfg.log_level, log_format=cfg.log_format)

    problems = cfg.production_problems()
    if problems:
        for p in problems:
            log.error("config_rejected", problem=p)
        raise RuntimeError("refusing to start: " + "; ".join(problems))

    app = FastAPI(
        title="SybilShield Relay",
        version=__version__,
        lifespan=_lifespan,
    )

    metrics = RelayMetrics("sybilshield-relay", __version__)
    app.state.settings = cfg
    app.state.services = services or build_services(cfg, clock=clock, metrics=metrics)
    app.state.signature_verifier = build_signature_verifier(cfg)

    # Starlette runs the last-added middleware first, so this list reads
    # innermost to outermost: metrics, CORS, access log, rate limit, request id.
    setup_metrics(app, metrics)
    setup_cors(app, cfg.to_cors_config())
    install_access_log_middleware(app)
    setup_rate_limiter(app, cfg.to_rate_config())
    app.add_middleware(RequestIdMiddleware)

    # Error -> problem+json mapping
    install_error_handlers(app)

    app.include_router(build_router())
    return app


__all__ = ["create_app"]
