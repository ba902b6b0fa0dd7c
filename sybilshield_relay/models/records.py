"""
Registry records.

Records are immutable; a state change writes a new record (``dataclasses.replace``)
through the store's compare-and-swap so that a concurrent writer is never
overwritten. Times are UNIX seconds.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


class Provider(str, enum.Enum):
    PROOF_OF_HUMANITY = "proof_of_humanity"
    WORLDCOIN = "worldcoin"
    LIVENESS = "liveness"
    BRIGHTID = "brightid"

    @property
    def slug(self) -> str:
        return self.value.replace("_", "-")

    @classmethod
    def from_slug(cls, slug: str) -> "Provider":
        norm = slug.strip().lower().replace("-", "_")
        for p in cls:
            if p.value == norm:
                return p
        raise ValueError(f"unknown provider: {slug!r}")


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class CredentialStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    FAILED = "failed"


# Statuses that hold an address's uniqueness slot.
HOLDING_STATUSES = frozenset({CredentialStatus.PENDING, CredentialStatus.ACTIVE})


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class VerificationRecord:
    id: str
    address: str
    provider: Provider
    status: VerificationStatus
    proof_hash: str
    created_at: float
    expires_at: float
    provider_data: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    message: str = ""

    def is_live(self, now: float) -> bool:
        return self.status is VerificationStatus.VERIFIED and now <= self.expires_at

    def expired(self) -> "VerificationRecord":
        return replace(self, status=VerificationStatus.EXPIRED, message="Verification has expired")


@dataclass(frozen=True)
class CredentialRecord:
    id: str
    address: str
    issuer: str
    proof_hash: str
    verification_id: str
    nonce: str = field(repr=False)
    created_at: float
    expires_at: float
    status: CredentialStatus
    expires_at_height: Optional[int] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    updated_at: float = 0.0

    @property
    def holds_slot(self) -> bool:
        return self.status in HOLDING_STATUSES

    def past_expiry(self, now: float) -> bool:
        return now > self.expires_at


__all__ = [
    "Provider",
    "VerificationStatus",
    "CredentialStatus",
    "HOLDING_STATUSES",
    "VerificationRecord",
    "CredentialRecord",
    "new_id",
]
