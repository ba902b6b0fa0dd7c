from __future__ import annotations

import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends, Response, status

from .. import version as svc_version
from ..errors import ApiError
from ..logging import get_logger
from ..services import RelayServices, get_services

log = get_logger(__name__)
router = APIRouter(tags=["health"])

_PROCESS_START = time.time()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uptime_seconds() -> float:
    return max(0.0, time.time() - _PROCESS_START)


async def _check_ledger(services: RelayServices) -> Tuple[bool, Dict[str, Any]]:
    """
    Ledger readiness: one height read through the bridge, bounded by the
    configured read timeout.
    """
    info: Dict[str, Any] = {
        "backend": services.settings.ledger_backend,
        "program_id": services.settings.program_id,
    }
    try:
        info["height"] = await services.bridge.current_height()
    except ApiError as exc:
        log.warning("health_ledger_unreachable", error=exc.message)
        info["error"] = exc.message
        return False, info
    return True, info


def _providers_blob(services: RelayServices) -> Dict[str, Any]:
    return {
        "backend": services.settings.provider_backend,
        "enabled": sorted(p.slug for p in services.providers),
    }


def _version_blob() -> Dict[str, Any]:
    meta = svc_version.build_meta()
    return {
        "service": "sybilshield-relay",
        "version": meta.version,
        "commit": meta.commit,
        "python": {
            "version": "{}.{}.{}".format(*sys.version_info[:3]),
            "impl": sys.implementation.name,
        },
        "started_at": datetime.fromtimestamp(_PROCESS_START, tz=timezone.utc).isoformat(),
        "now": _utcnow_iso(),
        "uptime_seconds": round(_uptime_seconds(), 3),
    }


@router.get("/health", summary="Service health", response_model=None)
async def health(services: RelayServices = Depends(get_services)) -> Dict[str, Any]:
    """
    Overall health: ledger height probe, provider configuration and record
    counts. Always 200; ``status`` is "degraded" when the ledger is unreachable.
    """
    ledger_ok, ledger_info = await _check_ledger(services)
    return {
        "status": "ok" if ledger_ok else "degraded",
        "env": services.settings.app_env,
        "ledger": {"ok": ledger_ok, **ledger_info},
        "providers": _providers_blob(services),
        "signature_mode": services.settings.signature_mode,
        "verifications": services.verifications.snapshot(),
        "now": _utcnow_iso(),
        "uptime_seconds": round(_uptime_seconds(), 3),
    }


@router.get("/health/live", summary="Liveness probe", response_model=None)
async def live() -> Dict[str, Any]:
    """Always 200 while the process is serving requests."""
    return {"status": "ok", "uptime_seconds": round(_uptime_seconds(), 3)}


@router.get("/health/ready", summary="Readiness probe", response_model=None)
async def ready(response: Response, services: RelayServices = Depends(get_services)) -> Dict[str, Any]:
    """200 when the ledger answers a height read; 503 otherwise."""
    ok, info = await _check_ledger(services)
    response.status_code = status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "ok" if ok else "degraded",
        "now": _utcnow_iso(),
        "checks": {"ledger": {"ok": ok, **info}},
    }


@router.get("/version", summary="Service version", response_model=None)
async def version(services: RelayServices = Depends(get_services)) -> Dict[str, Any]:
    meta = _version_blob()
    meta["env"] = services.settings.app_env
    meta["network"] = services.settings.ledger_network
    return meta


def get_router() -> APIRouter:
    return router
