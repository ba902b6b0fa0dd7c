"""
Public model surface for the relay.

Submodules:
- common.py   → Address, FieldToken, ProposalId
- records.py  → registry records and status enums
- verify.py   → VerifyRequest, VerificationView
- badge.py    → IssuanceRequest/Response, BadgeStatusResponse, RenewRequest/Response
- vote.py     → VoteRequest, VoteResponse, TallyResponse
"""

from .badge import (BadgeStatusResponse, IssuanceRequest, IssuanceResponse,
                    RenewRequest, RenewResponse)
from .common import Address, FieldToken, ProposalId
from .records import (CredentialRecord, CredentialStatus, Provider,
                      VerificationRecord, VerificationStatus)
from .verify import VerificationView, VerifyRequest
from .vote import TallyResponse, VoteRequest, VoteResponse

__all__ = [
    "Address",
    "FieldToken",
    "ProposalId",
    "Provider",
    "VerificationStatus",
    "CredentialStatus",
    "VerificationRecord",
    "CredentialRecord",
    "VerifyRequest",
    "VerificationView",
    "IssuanceRequest",
    "IssuanceResponse",
    "BadgeStatusResponse",
    "RenewRequest",
    "RenewResponse",
    "VoteRequest",
    "VoteResponse",
    "TallyResponse",
]
