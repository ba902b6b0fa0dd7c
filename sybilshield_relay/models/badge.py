from __future__ import annotations

"""
Badge (credential) models.

Response shapes mirror what wallet clients already poll for: ``badge_ready``
after issuance, ``has_badge`` / ``badge_status`` for status, ``renewed`` for
renewal. The credential nonce is never part of any response.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import Address
from .records import CredentialRecord


class IssuanceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    verification_id: str = Field(..., min_length=1)
    address: Address


class IssuanceResponse(BaseModel):
    badge_ready: bool
    badge_id: str
    transaction_id: Optional[str] = None
    expires_at: int
    message: str

    @classmethod
    def from_record(cls, rec: CredentialRecord) -> "IssuanceResponse":
        return cls(
            badge_ready=rec.status.value == "active",
            badge_id=rec.id,
            transaction_id=rec.transaction_id,
            expires_at=int(rec.expires_at),
            message="Badge issued successfully",
        )


class BadgeStatusResponse(BaseModel):
    has_badge: bool
    badge_status: str
    expires_at: Optional[int] = None
    issuer: Optional[str] = None
    created_at: Optional[int] = None
    message: str

    @classmethod
    def from_record(cls, rec: Optional[CredentialRecord]) -> "BadgeStatusResponse":
        if rec is None:
            return cls(has_badge=False, badge_status="none", message="No badge found for this address")
        return cls(
            has_badge=rec.status.value == "active",
            badge_status=rec.status.value,
            expires_at=int(rec.expires_at),
            issuer=rec.issuer,
            created_at=int(rec.created_at),
            message=f"Badge is {rec.status.value}",
        )


class RenewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    address: Address


class RenewResponse(BaseModel):
    renewed: bool
    new_expires_at: int
    message: str


__all__ = [
    "IssuanceRequest",
    "IssuanceResponse",
    "BadgeStatusResponse",
    "RenewRequest",
    "RenewResponse",
]
