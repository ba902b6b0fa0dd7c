"""
One-way commitments: proof hashes, credential nonces and vote nullifiers.

Every commitment is SHA3-256 over a domain tag followed by the length-prefixed
UTF-8 encoding of each field:

    H(domain || 0x00 || len(f1) || f1 || len(f2) || f2 || ...)

with ``len`` a 4-byte big-endian integer. The digest is reduced into the
ledger's base field and rendered as a field literal ("1234...field") so that it
can be passed straight into a ledger transition.

Domain tags keep the three uses apart: a proof hash can never equal a
nullifier, whatever the inputs.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from typing import Iterable

# Base field modulus of the ledger's curve.
FIELD_MODULUS = 8444461749428370424248824938781546531375899335154063827935233455917409239041

DOMAIN_PROOF = "sybilshield/proof:v1"
DOMAIN_NONCE = "sybilshield/nonce:v1"
DOMAIN_NULLIFIER = "sybilshield/nullifier:v1"

_SEP = b"\x00"
_FIELD_RE = re.compile(r"^(0|[1-9][0-9]*)field$")

NONCE_ENTROPY_BYTES = 32


class EntropyUnavailable(RuntimeError):
    """The OS randomness source could not be read."""


def _encode(fields: Iterable[str]) -> bytes:
    out = bytearray()
    for f in fields:
        if not isinstance(f, str):
            raise TypeError(f"commitment fields must be str, got {type(f).__name__}")
        raw = f.encode("utf-8")
        out += len(raw).to_bytes(4, "big")
        out += raw
    return bytes(out)


def to_field(digest: bytes) -> str:
    return f"{int.from_bytes(digest, 'big') % FIELD_MODULUS}field"


def commit(fields: Iterable[str], *, domain: str) -> str:
    """Deterministic, non-invertible commitment of ``fields`` under ``domain``."""
    if not domain:
        raise ValueError("domain tag is required")
    data = domain.encode("utf-8") + _SEP + _encode(fields)
    return to_field(hashlib.sha3_256(data).digest())


def proof_hash(provider: str, address: str, datum: str, timestamp_ms: int) -> str:
    """Commitment standing in for one successful identity verification."""
    return commit([provider, address, datum, str(int(timestamp_ms))], domain=DOMAIN_PROOF)


def generate_nonce() -> str:
    """
    Fresh credential nonce from the OS CSPRNG. Derived from nothing but
    randomness, so it stays unlinkable to the proof hash.
    """
    try:
        entropy = secrets.token_bytes(NONCE_ENTROPY_BYTES)
    except (OSError, NotImplementedError) as exc:
        raise EntropyUnavailable("secure randomness source unavailable") from exc
    return commit([entropy.hex()], domain=DOMAIN_NONCE)


def nullifier(proposal_id: int, nonce: str, tag: str = "vote") -> str:
    """One nullifier per (credential nonce, proposal); the ledger refuses a repeat."""
    return commit([str(int(proposal_id)), nonce, tag], domain=DOMAIN_NULLIFIER)


def is_field_token(value: object) -> bool:
    if not isinstance(value, str):
        return False
    m = _FIELD_RE.match(value)
    return bool(m) and int(m.group(1)) < FIELD_MODULUS


__all__ = [
    "FIELD_MODULUS",
    "DOMAIN_PROOF",
    "DOMAIN_NONCE",
    "DOMAIN_NULLIFIER",
    "EntropyUnavailable",
    "commit",
    "proof_hash",
    "generate_nonce",
    "nullifier",
    "is_field_token",
    "to_field",
]
