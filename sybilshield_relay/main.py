"""
Uvicorn launcher for the SybilShield relay.

Usage:
  python -m sybilshield_relay.main [--host 0.0.0.0] [--port 8080]
                                   [--workers 1] [--reload]
                                   [--log-level info]

Environment overrides (if flags not provided):
  HOST / BIND, PORT, WORKERS, RELOAD, LOG_LEVEL

Keep WORKERS=1 with the in-memory store: each worker would hold its own
registries.
"""

from __future__ import annotations

import argparse
import os
from typing import Optional

import uvicorn


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "y", "on")


def run(
    host: str = "0.0.0.0",
    port: int = 8080,
    *,
    workers: int = 1,
    reload: bool = False,
    log_level: str = "info",
    proxy_headers: bool = True,
    forwarded_allow_ips: str = "*",
) -> None:
    if reload and workers != 1:
        workers = 1
    # Factory import string, so every worker builds its own app from the environment.
    uvicorn.run(
        "sybilshield_relay.app:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=log_level,
        proxy_headers=proxy_headers,
        forwarded_allow_ips=forwarded_allow_ips,
        reload=reload,
        workers=workers,
    )


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the SybilShield relay (uvicorn)")
    parser.add_argument("--host", default=os.getenv("HOST") or os.getenv("BIND") or "0.0.0.0", help="Bind address (default: %(default)s)")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT") or 8080), help="Port (default: %(default)s)")
    parser.add_argument("--workers", type=int, default=int(os.getenv("WORKERS") or 1), help="Number of workers (default: %(default)s)")
    parser.add_argument("--reload", action="store_true", default=_env_bool("RELOAD", False), help="Enable autoreload (dev only)")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info").lower(), help="Log level for uvicorn (default: %(default)s)")
    parser.add_argument("--forwarded-allow-ips", default="*", help="Comma list of trusted proxies (default: *)")
    args = parser.parse_args(argv)

    run(
        args.host,
        args.port,
        workers=args.workers,
        reload=args.reload,
        log_level=args.log_level,
        forwarded_allow_ips=args.forwarded_allow_ips,
    )


if __name__ == "__main__":
    main()
