from __future__ import annotations

"""
Error hierarchy for the SybilShield relay.

Every pipeline failure is raised as an :class:`ApiError` subclass so that the
HTTP layer can render it as RFC 7807 "problem+json" without guessing. Errors
are framework-agnostic; ``sybilshield_relay.middleware.errors`` installs the
FastAPI handlers.

Usage
-----
    from sybilshield_relay.errors import Conflict

    raise Conflict("Badge already exists for this address")

Design
------
- Every error has:
  - ``status_code`` (int): HTTP status
  - ``code`` (str): stable machine code (e.g., "already_voted")
  - ``kind`` (str): one of the taxonomy kinds below
  - ``retryable`` (bool): whether resubmitting the same request may succeed
  - ``message`` (str): human-friendly summary
  - ``details`` (dict|None): optional structured diagnostics
- ``to_problem()`` returns an RFC 7807 dict.

Kinds: validation, not_found, conflict, rate_limited,
external_service_failure, internal.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

KIND_VALIDATION = "validation"
KIND_NOT_FOUND = "not_found"
KIND_CONFLICT = "conflict"
KIND_RATE_LIMITED = "rate_limited"
KIND_EXTERNAL = "external_service_failure"
KIND_INTERNAL = "internal"

DEFAULT_ERROR_DOCS_BASE = "https://docs.sybilshield.dev/errors"


@dataclass(eq=False)
class ApiError(Exception):
    message: str
    status_code: int = 400
    code: str = "bad_request"
    details: Optional[Mapping[str, Any]] = None
    kind: str = KIND_VALIDATION
    retryable: bool = False
    type_uri_base: str = DEFAULT_ERROR_DOCS_BASE

    def __post_init__(self) -> None:
        super().__init__(self.message)

    # --- RFC 7807 helpers -------------------------------------------------- #

    def type_uri(self) -> str:
        return f"{self.type_uri_base}#{self.code}"

    def title(self) -> str:
        return {
            "validation_error": "Validation Failed",
            "unauthorized": "Unauthorized",
            "not_found": "Not Found",
            "conflict": "Conflict",
            "already_voted": "Already Voted",
            "ledger_rejected": "Ledger Rejected",
            "rate_limited": "Rate Limited",
            "server_error": "Internal Server Error",
        }.get(self.code, "Upstream Service Error" if self.kind == KIND_EXTERNAL else "Error")

    def extras(self) -> Dict[str, Any]:
        """Top-level problem members beyond the RFC 7807 base fields."""
        out: Dict[str, Any] = {"kind": self.kind, "retryable": self.retryable}
        if self.details:
            out["details"] = dict(self.details)
        return out

    def headers(self) -> Dict[str, str]:
        return {}

    def to_problem(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": self.type_uri(),
            "title": self.title(),
            "status": self.status_code,
            "code": self.code,
            "detail": self.message,
        }
        body.update(self.extras())
        return body

    def to_response(self):
        """Return a Starlette JSONResponse carrying the problem body."""
        from starlette.responses import JSONResponse

        return JSONResponse(
            self.to_problem(),
            status_code=self.status_code,
            headers=self.headers() or None,
            media_type="application/problem+json",
        )


# ------------------------------ Concrete types ------------------------------- #


class ValidationFailed(ApiError):
    def __init__(
        self,
        message: str = "Validation failed",
        *,
        details: Optional[Mapping[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(
            message=message,
            status_code=400,
            code="validation_error",
            details=details,
            kind=KIND_VALIDATION,
            retryable=retryable,
        )


class Unauthorized(ApiError):
    def __init__(self, message: str = "Missing or invalid signature", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(
            message=message, status_code=401, code="unauthorized", details=details, kind=KIND_VALIDATION
        )


class NotFound(ApiError):
    def __init__(self, what: str = "Resource", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(
            message=f"{what} not found", status_code=404, code="not_found", details=details, kind=KIND_NOT_FOUND
        )


class Conflict(ApiError):
    def __init__(self, message: str = "Conflict", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=409, code="conflict", details=details, kind=KIND_CONFLICT)


class AlreadyVoted(ApiError):
    def __init__(self, proposal_id: int):
        super().__init__(
            message=f"A vote has already been recorded for proposal {proposal_id}",
            status_code=409,
            code="already_voted",
            details={"proposal_id": proposal_id},
            kind=KIND_CONFLICT,
        )


class LedgerRejected(ApiError):
    """Terminal rejection by the ledger program; resubmitting will not help."""

    def __init__(self, reason: str, *, details: Optional[Mapping[str, Any]] = None):
        merged: Dict[str, Any] = {"reason": reason}
        if details:
            merged.update(details)
        super().__init__(
            message=f"Ledger rejected the transaction: {reason}",
            status_code=422,
            code="ledger_rejected",
            details=merged,
            kind=KIND_VALIDATION,
        )
        self.reason = reason


class RateLimited(ApiError):
    def __init__(self, retry_after: float, *, bucket: Optional[str] = None, message: str = "Too many requests"):
        details: Dict[str, Any] = {}
        if bucket:
            details["bucket"] = bucket
        super().__init__(
            message=message,
            status_code=429,
            code="rate_limited",
            details=details,
            kind=KIND_RATE_LIMITED,
            retryable=True,
        )
        self.retry_after = max(1, int(retry_after + 0.999))

    def extras(self) -> Dict[str, Any]:
        out = super().extras()
        out["retry_after"] = self.retry_after
        return out

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ExternalServiceFailure(ApiError):
    """An identity provider or the ledger is unreachable or erroring."""

    def __init__(self, service: str, message: Optional[str] = None, *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(
            message=message or f"External service error: {service}",
            status_code=502,
            code=f"{service}_error",
            details=details,
            kind=KIND_EXTERNAL,
            retryable=True,
        )
        self.service = service


class ServerError(ApiError):
    def __init__(self, message: str = "Internal server error", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(
            message=message, status_code=500, code="server_error", details=details, kind=KIND_INTERNAL
        )


__all__ = [
    "ApiError",
    "ValidationFailed",
    "Unauthorized",
    "NotFound",
    "Conflict",
    "AlreadyVoted",
    "LedgerRejected",
    "RateLimited",
    "ExternalServiceFailure",
    "ServerError",
    "KIND_VALIDATION",
    "KIND_NOT_FOUND",
    "KIND_CONFLICT",
    "KIND_RATE_LIMITED",
    "KIND_EXTERNAL",
    "KIND_INTERNAL",
]
