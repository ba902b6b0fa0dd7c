from __future__ import annotations

"""
Vote models. The relayer resolves the credential nonce from the address, so
clients never handle nullifier material.
"""

from pydantic import BaseModel, ConfigDict

from .common import Address, ProposalId


class VoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    address: Address
    proposal_id: ProposalId
    choice: bool


class VoteResponse(BaseModel):
    vote_recorded: bool
    transaction_id: str
    message: str


class TallyResponse(BaseModel):
    proposal_id: int
    yes: int
    no: int


__all__ = ["VoteRequest", "VoteResponse", "TallyResponse"]
