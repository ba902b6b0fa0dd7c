"""
Routers package: aggregates all HTTP routes into a single APIRouter.

The pipeline routers (verify, badge, vote) are served twice: at the root and
under ``API_PREFIX``. Only the root copies appear in the OpenAPI schema.

Usage (from app factory):
    from sybilshield_relay.routers import build_router
    app.include_router(build_router())
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter

from . import badge, health, verify, vote

API_PREFIX = "/api/v1"

# Order controls route declaration order and OpenAPI grouping.
ROUTERS: List[APIRouter] = [
    health.router,
    verify.router,
    badge.router,
    vote.router,
]

VERSIONED: List[APIRouter] = [
    verify.router,
    badge.router,
    vote.router,
]


def build_router() -> APIRouter:
    """Build a single top-level APIRouter that includes every sub-router."""
    root = APIRouter()
    for r in ROUTERS:
        root.include_router(r)
    for r in VERSIONED:
        root.include_router(r, prefix=API_PREFIX, include_in_schema=False)
    return root


__all__ = ["API_PREFIX", "ROUTERS", "VERSIONED", "build_router"]
