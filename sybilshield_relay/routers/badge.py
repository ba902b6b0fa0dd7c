from __future__ import annotations

"""
Badge Routers

Endpoints:
  - POST /badge/request-issuance : issue a badge for a verified address (signed)
  - GET  /badge/status/{address} : badge snapshot, ``badge_status="none"`` when absent
  - POST /badge/renew            : extend an active or expired badge (signed)
"""

from fastapi import APIRouter, Depends, Path, status

from ..models.badge import (BadgeStatusResponse, IssuanceRequest,
                            IssuanceResponse, RenewRequest, RenewResponse)
from ..models.common import Address
from ..security.rate_limit import rate_limit
from ..security.signatures import require_signature
from ..services import RelayServices, get_services

router = APIRouter(prefix="/badge", tags=["badge"])


@router.post(
    "/request-issuance",
    summary="Issue a badge for a verified address",
    response_model=IssuanceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[rate_limit("issuance")],
)
async def request_issuance(
    req: IssuanceRequest,
    _signer: str = require_signature("request_issuance"),
    services: RelayServices = Depends(get_services),
) -> IssuanceResponse:
    rec = await services.credentials.request_issuance(req.verification_id, req.address)
    return IssuanceResponse.from_record(rec)


@router.get(
    "/status/{address}",
    summary="Badge status for an address",
    response_model=BadgeStatusResponse,
)
async def badge_status(
    address: Address = Path(...),
    services: RelayServices = Depends(get_services),
) -> BadgeStatusResponse:
    rec = await services.credentials.get_status(address)
    return BadgeStatusResponse.from_record(rec)


@router.post("/renew", summary="Renew a badge", response_model=RenewResponse)
async def renew(
    req: RenewRequest,
    _signer: str = require_signature("renew_badge"),
    services: RelayServices = Depends(get_services),
) -> RenewResponse:
    rec = await services.credentials.renew(req.address)
    return RenewResponse(
        renewed=True,
        new_expires_at=int(rec.expires_at),
        message="Badge renewed successfully",
    )


def get_router() -> APIRouter:
    return router
