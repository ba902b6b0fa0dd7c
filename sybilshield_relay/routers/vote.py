from __future__ import annotations

"""
Vote Routers

Endpoints:
  - POST /vote/cast                 : relay an anonymous vote for a badge holder (signed)
  - GET  /vote/tally/{proposal_id}  : current yes/no counts from the ledger
"""

from fastapi import APIRouter, Depends, Path

from ..models.common import U32_MAX
from ..models.vote import TallyResponse, VoteRequest, VoteResponse
from ..security.signatures import require_signature
from ..services import RelayServices, get_services

router = APIRouter(prefix="/vote", tags=["vote"])


@router.post("/cast", summary="Cast a vote", response_model=VoteResponse)
async def cast_vote(
    req: VoteRequest,
    _signer: str = require_signature("cast_vote"),
    services: RelayServices = Depends(get_services),
) -> VoteResponse:
    receipt = await services.voting.cast(req.address, req.proposal_id, req.choice)
    return VoteResponse(
        vote_recorded=True,
        transaction_id=receipt.transaction_id,
        message="Vote recorded successfully",
    )


@router.get("/tally/{proposal_id}", summary="Proposal tally", response_model=TallyResponse)
async def tally(
    proposal_id: int = Path(..., ge=0, le=U32_MAX),
    services: RelayServices = Depends(get_services),
) -> TallyResponse:
    t = await services.voting.tally(proposal_id)
    return TallyResponse(proposal_id=t.proposal_id, yes=t.yes, no=t.no)


def get_router() -> APIRouter:
    return router
