from __future__ import annotations

"""
Verify Routers

Endpoints:
  - POST /verify/{provider}                 : check an identity claim with a provider
  - GET  /verify/status/{verification_id}   : fetch a verification snapshot

Thin shims over ``VerificationRegistry``. A provider answering "not registered"
is reported as 400 with the usual snapshot body, so clients can show the
message and keep the verification id.
"""

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse

from ..errors import NotFound
from ..models.records import Provider, VerificationStatus
from ..models.verify import VerificationView, VerifyRequest
from ..security.rate_limit import ip_and_address_key, rate_limit
from ..services import RelayServices, get_services
from ..services.verification import MSG_ALREADY

router = APIRouter(prefix="/verify", tags=["verify"])


def _provider(slug: str) -> Provider:
    try:
        return Provider.from_slug(slug)
    except ValueError:
        raise NotFound("Provider") from None


@router.post(
    "/{provider}",
    summary="Verify a wallet address with an identity provider",
    response_model=VerificationView,
    dependencies=[rate_limit("verify", key=ip_and_address_key)],
)
async def post_verify(
    req: VerifyRequest,
    provider: str = Path(..., description="Provider slug, e.g. proof-of-humanity"),
    services: RelayServices = Depends(get_services),
):
    kind = _provider(provider)
    rec, already = await services.verifications.submit(kind, req.address, req.provider_payload)
    view = VerificationView.from_record(rec)
    if already:
        view = view.model_copy(update={"message": MSG_ALREADY})
    if rec.status is VerificationStatus.REJECTED:
        return JSONResponse(status_code=400, content=view.model_dump())
    return view


@router.get(
    "/status/{verification_id}",
    summary="Fetch a verification by id",
    response_model=VerificationView,
)
async def get_verification(
    verification_id: str = Path(..., min_length=1),
    services: RelayServices = Depends(get_services),
) -> VerificationView:
    rec = await services.verifications.get_status(verification_id)
    return VerificationView.from_record(rec)


def get_router() -> APIRouter:
    return router
