from __future__ import annotations

"""
Wallet request signatures.

Protected endpoints (badge issuance, renewal, voting) require a signed request:

    X-Wallet-Address: aleo1...            address the request acts for
    X-Signature:      <hex>               signature over the signable message
    X-Public-Key:     <hex>               ed25519 public key (ed25519 mode)
    X-Timestamp:      <unix seconds>

The signable message is the canonical JSON (sorted keys, compact separators) of

    {"action": <action>, "data": <request body>, "timestamp": <int>, "domain": <program id>}

Two implementations of :class:`SignatureVerifier` are chosen once from
``SIGNATURE_MODE``:

- ``AcceptAllVerifier``   fixtures and local runs; refused in production.
- ``Ed25519SignatureVerifier``  verifies with **cryptography**; rejects stale
  timestamps and a header address that differs from the body's ``address``.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from fastapi import Depends, Request

from ..errors import Unauthorized, ValidationFailed
from ..logging import get_logger
from ..models.common import is_address

log = get_logger(__name__)


@dataclass(frozen=True)
class SignedRequest:
    action: str
    address: str
    data: Dict[str, Any] = field(default_factory=dict)
    signature: str = ""
    public_key: str = ""
    timestamp: Optional[int] = None


def signable_message(action: str, data: Dict[str, Any], timestamp: int, domain: str) -> bytes:
    payload = {"action": action, "data": data, "timestamp": int(timestamp), "domain": domain}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@runtime_checkable
class SignatureVerifier(Protocol):
    def verify(self, req: SignedRequest) -> None:
        """Raise Unauthorized when the request is not properly signed."""
        ...


class AcceptAllVerifier:
    def verify(self, req: SignedRequest) -> None:
        return None


class Ed25519SignatureVerifier:
    def __init__(self, *, domain: str, max_skew_s: int = 300, clock: Callable[[], float] = time.time) -> None:
        self.domain = domain
        self.max_skew_s = max_skew_s
        self.clock = clock

    def verify(self, req: SignedRequest) -> None:
        if not req.signature:
            raise Unauthorized("Missing X-Signature header")
        if not req.public_key:
            raise Unauthorized("Missing X-Public-Key header")
        if req.timestamp is None:
            raise Unauthorized("Missing X-Timestamp header")
        if abs(self.clock() - req.timestamp) > self.max_skew_s:
            raise Unauthorized("Signature timestamp outside the allowed window")

        try:
            key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(req.public_key))
            sig = bytes.fromhex(req.signature)
        except ValueError as exc:
            raise Unauthorized("Malformed signature or public key") from exc

        try:
            key.verify(sig, signable_message(req.action, req.data, req.timestamp, self.domain))
        except InvalidSignature as exc:
            log.warning("signature_invalid", action=req.action, address=req.address)
            raise Unauthorized("Invalid signature") from exc


def build_signature_verifier(settings) -> SignatureVerifier:
    if settings.signature_mode == "ed25519":
        return Ed25519SignatureVerifier(domain=settings.program_id, max_skew_s=settings.signature_max_skew_s)
    return AcceptAllVerifier()


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def require_signature(action: str):
    """
    FastAPI dependency: check the request signature with the app's verifier and
    return the wallet address it was signed for.
    """

    async def _dep(request: Request) -> str:
        data = await _json_body(request)
        address = request.headers.get("x-wallet-address", "").strip() or str(data.get("address", ""))
        if not address:
            raise Unauthorized("Missing X-Wallet-Address header")
        if not is_address(address):
            raise ValidationFailed("Invalid address format", details={"address": address})
        body_address = data.get("address")
        if body_address is not None and body_address != address:
            raise Unauthorized("X-Wallet-Address does not match the request body")

        raw_ts = request.headers.get("x-timestamp")
        try:
            timestamp = int(raw_ts) if raw_ts else None
        except ValueError as exc:
            raise Unauthorized("Malformed X-Timestamp header") from exc

        verifier: SignatureVerifier = request.app.state.signature_verifier
        verifier.verify(
            SignedRequest(
                action=action,
                address=address,
                data=data,
                signature=request.headers.get("x-signature", "").strip(),
                public_key=request.headers.get("x-public-key", "").strip(),
                timestamp=timestamp,
            )
        )
        return address

    return Depends(_dep)


__all__ = [
    "SignedRequest",
    "SignatureVerifier",
    "AcceptAllVerifier",
    "Ed25519SignatureVerifier",
    "build_signature_verifier",
    "require_signature",
    "signable_message",
]
