from __future__ import annotations

"""
Strict CORS configuration for the relay.

- Deny by default: only configured origins are allowed.
- Exact origins plus glob patterns such as "https://*.example.org".
- "*" is refused together with credentials.
- Signature headers used by wallet clients are allowed and request/rate-limit
  headers are exposed.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from ..logging import get_logger

log = get_logger(__name__)

DEFAULT_ALLOW_HEADERS = [
    "Content-Type",
    "X-Request-Id",
    "X-Wallet-Address",
    "X-Signature",
    "X-Public-Key",
    "X-Timestamp",
]
DEFAULT_EXPOSE_HEADERS = ["X-Request-Id", "Retry-After"]


@dataclass(frozen=True)
class CORSConfig:
    allow_origins: List[str]
    allow_origin_regex: Optional[str] = None
    allow_methods: List[str] = field(default_factory=lambda: ["GET", "POST", "OPTIONS"])
    allow_headers: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOW_HEADERS))
    expose_headers: List[str] = field(default_factory=lambda: list(DEFAULT_EXPOSE_HEADERS))
    allow_credentials: bool = False
    max_age: int = 600

    @classmethod
    def from_origins(cls, origins: List[str], *, allow_credentials: bool = False) -> "CORSConfig":
        if origins == ["*"]:
            if allow_credentials:
                raise ValueError('CORS_ALLOW_ORIGINS="*" is incompatible with CORS_ALLOW_CREDENTIALS=true')
            return cls(allow_origins=["*"])

        exact: List[str] = []
        regexes: List[str] = []
        for origin in origins:
            if "*" in origin:
                regexes.append(_glob_to_regex(origin))
            else:
                exact.append(origin.rstrip("/"))
        return cls(
            allow_origins=exact,
            allow_origin_regex=_combine_regexes(regexes),
            allow_credentials=allow_credentials,
        )


def _glob_to_regex(glob_origin: str) -> str:
    """
    "https://*.example.org" -> ^https://(?:[^/.:]+\\.)+example\\.org$
    The wildcard may only stand for hostname labels.
    """
    if "://" not in glob_origin:
        raise ValueError(f"Invalid origin pattern (missing scheme): {glob_origin!r}")
    _scheme, rest = glob_origin.split("://", 1)
    if "/" in rest:
        raise ValueError(f"Origin patterns must not include paths: {glob_origin!r}")
    escaped = re.escape(glob_origin).replace(r"\*\.", r"(?:[^/.:]+\.)+")
    return r"^" + escaped + r"$"


def _combine_regexes(regexes: List[str]) -> Optional[str]:
    if not regexes:
        return None
    if len(regexes) == 1:
        return regexes[0]
    return r"^(?:" + r"|".join(r.strip("^$") for r in regexes) + r")$"


def setup_cors(app: FastAPI, config: CORSConfig) -> CORSConfig:
    """Attach CORSMiddleware to `app` using `config`."""
    log.debug(
        "cors_config",
        allow_origins=config.allow_origins,
        allow_origin_regex=config.allow_origin_regex,
        allow_credentials=config.allow_credentials,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allow_origins,
        allow_origin_regex=config.allow_origin_regex,
        allow_credentials=config.allow_credentials,
        allow_methods=config.allow_methods,
        allow_headers=config.allow_headers,
        expose_headers=config.expose_headers,
        max_age=config.max_age,
    )
    return config


__all__ = ["CORSConfig", "setup_cors"]
