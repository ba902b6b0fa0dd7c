from __future__ import annotations

"""
Verification models

- VerifyRequest: wallet address plus the provider-specific payload. The payload
  is validated by the provider adapter (see adapters/providers.py), so it is an
  opaque mapping here.
- VerificationView: snapshot returned by POST /verify/{provider} and
  GET /verify/status/{verification_id}. Never carries provider audit data.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from .common import Address
from .records import VerificationRecord


class VerifyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    address: Address = Field(..., description="Wallet address being verified.")
    provider_payload: Dict[str, Any] = Field(
        default_factory=dict, description="Provider-specific proof material."
    )


class VerificationView(BaseModel):
    verification_id: str
    status: str
    proof_hash: str
    expires_at: int
    provider: str
    message: str

    @classmethod
    def from_record(cls, rec: VerificationRecord) -> "VerificationView":
        return cls(
            verification_id=rec.id,
            status=rec.status.value,
            proof_hash=rec.proof_hash,
            expires_at=int(rec.expires_at),
            provider=rec.provider.value,
            message=rec.message,
        )


__all__ = ["VerifyRequest", "VerificationView"]
