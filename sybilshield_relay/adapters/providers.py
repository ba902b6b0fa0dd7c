"""
Identity provider adapters.

Each provider turns a client-supplied payload into a yes/no answer to "is this
a registered unique human?" plus one provider-specific datum that feeds the
proof hash.

    provider = ProofOfHumanityProvider(http, subgraph_url=...)
    claim = provider.parse_payload({"profile_url": "https://app.proofofhumanity.id/profile/0x..."})
    result = await provider.verify(claim, address)

Errors
------
* Malformed payloads raise ``ValidationFailed`` (non-retryable) from
  ``parse_payload``.
* ``ProviderRejectedError``: the provider refused the proof (HTTP 4xx).
* ``ProviderUnavailableError``: transport failure, timeout, auth failure or 5xx.

The verification service maps the last two onto API errors; adapters never
raise ``ApiError`` from ``verify``.
"""

from __future__ import annotations

import base64
import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ValidationFailed
from ..logging import get_logger
from ..models.records import Provider

log = get_logger(__name__)


# ----------------------------- Errors ---------------------------------------


class ProviderError(Exception):
    """Base class for provider adapter errors."""

    def __init__(self, provider: Provider, message: str):
        super().__init__(message)
        self.provider = provider
        self.message = message


class ProviderUnavailableError(ProviderError):
    """Network, timeout, auth or 5xx failure talking to the provider."""


class ProviderRejectedError(ProviderError):
    """The provider examined the proof and refused it."""


# ----------------------------- Contract -------------------------------------


@dataclass(frozen=True)
class ProviderResult:
    registered: bool
    datum: str
    submission_time: Optional[int] = None
    audit: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class IdentityProvider(Protocol):
    kind: Provider

    def parse_payload(self, payload: Mapping[str, Any]) -> BaseModel:
        ...

    async def verify(self, claim: BaseModel, address: str) -> ProviderResult:
        ...


def _parse(kind: Provider, model: type[BaseModel], payload: Mapping[str, Any]) -> BaseModel:
    try:
        return model.model_validate(dict(payload))
    except ValidationError as exc:
        raise ValidationFailed(
            f"Invalid {kind.slug} payload",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


# ----------------------------- Proof of Humanity -----------------------------

POH_HOSTS = frozenset({"app.proofofhumanity.id", "proofofhumanity.id", "app.poh.dev", "poh.dev"})
_ETH_ADDRESS_PATTERNS = (
    re.compile(r"profile/(0x[a-fA-F0-9]{40})"),
    re.compile(r"address=(0x[a-fA-F0-9]{40})"),
    re.compile(r"(0x[a-fA-F0-9]{40})"),
)

_POH_QUERY = """
query GetSubmission($id: ID!) {
  submission(id: $id) {
    registered
    submissionTime
    status
    name
  }
}
"""


def extract_eth_address(url: str) -> Optional[str]:
    for pattern in _ETH_ADDRESS_PATTERNS:
        m = pattern.search(url)
        if m:
            return m.group(1).lower()
    return None


class PoHClaim(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    profile_url: str = Field(..., min_length=1, max_length=512)

    @property
    def eth_address(self) -> str:
        return extract_eth_address(self.profile_url) or ""


class ProofOfHumanityProvider:
    kind = Provider.PROOF_OF_HUMANITY

    def __init__(self, http: httpx.AsyncClient, *, subgraph_url: str) -> None:
        self._http = http
        self._url = subgraph_url

    def parse_payload(self, payload: Mapping[str, Any]) -> PoHClaim:
        claim = _parse(self.kind, PoHClaim, payload)
        host = urlparse(claim.profile_url).netloc.lower()
        if host not in POH_HOSTS:
            raise ValidationFailed("Invalid Proof of Humanity profile URL", details={"host": host})
        if not claim.eth_address:
            raise ValidationFailed("Could not extract an address from the Proof of Humanity profile URL")
        return claim

    async def verify(self, claim: PoHClaim, address: str) -> ProviderResult:
        body = {"query": _POH_QUERY, "variables": {"id": claim.eth_address}}
        try:
            resp = await self._http.post(self._url, json=body)
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(self.kind, f"Proof of Humanity subgraph unreachable: {exc}") from exc
        if resp.status_code >= 500:
            raise ProviderUnavailableError(self.kind, f"Proof of Humanity subgraph returned {resp.status_code}")
        if resp.status_code >= 400:
            raise ProviderRejectedError(self.kind, f"Proof of Humanity subgraph refused the query ({resp.status_code})")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderUnavailableError(self.kind, "Proof of Humanity subgraph returned invalid JSON") from exc
        if data.get("errors"):
            raise ProviderUnavailableError(self.kind, "Proof of Humanity subgraph returned errors")

        submission = (data.get("data") or {}).get("submission")
        if not submission:
            return ProviderResult(registered=False, datum="0", audit={"status": "None"})
        submission_time = int(submission.get("submissionTime") or 0)
        return ProviderResult(
            registered=bool(submission.get("registered")),
            datum=str(submission_time),
            submission_time=submission_time,
            audit={"status": submission.get("status"), "eth_address": claim.eth_address},
        )


# ----------------------------- Worldcoin -------------------------------------


class WorldcoinProof(BaseModel):
    model_config = ConfigDict(extra="ignore")

    merkle_root: str = Field(..., min_length=1)
    nullifier_hash: str = Field(..., min_length=1)
    proof: str = Field(..., min_length=1)
    verification_level: str = "orb"
    action: str = "sybilshield_verify"


class WorldcoinClaim(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    token: str = Field(..., min_length=1)
    signal: Optional[str] = None


def decode_worldcoin_token(token: str) -> Dict[str, Any]:
    """The ID token is either plain JSON or a JWT-style ``header.payload.sig``."""
    if token.startswith("{"):
        return json.loads(token)
    parts = token.split(".")
    if len(parts) == 3 and parts[1]:
        padded = parts[1] + "=" * (-len(parts[1]) % 4)
        return json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    raise ValueError("Invalid ID token format")


class WorldcoinProvider:
    kind = Provider.WORLDCOIN

    def __init__(self, http: httpx.AsyncClient, *, api_url: str, app_id: str, api_key: str) -> None:
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._app_id = app_id
        self._api_key = api_key

    def parse_payload(self, payload: Mapping[str, Any]) -> WorldcoinClaim:
        claim = _parse(self.kind, WorldcoinClaim, payload)
        self.proof_of(claim)
        return claim

    def proof_of(self, claim: WorldcoinClaim) -> WorldcoinProof:
        try:
            raw = decode_worldcoin_token(claim.token)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValidationFailed("Invalid Worldcoin ID token format") from exc
        if not isinstance(raw, dict):
            raise ValidationFailed("Invalid Worldcoin ID token format")
        return _parse(self.kind, WorldcoinProof, raw)

    async def verify(self, claim: WorldcoinClaim, address: str) -> ProviderResult:
        proof = self.proof_of(claim)
        body = proof.model_dump()
        body["signal"] = claim.signal or address
        url = f"{self._api_url}/verify/{self._app_id}"
        try:
            resp = await self._http.post(url, json=body, headers={"Authorization": f"Bearer {self._api_key}"})
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(self.kind, f"Worldcoin API unreachable: {exc}") from exc

        if resp.status_code == 400:
            raise ProviderRejectedError(self.kind, "Invalid Worldcoin proof")
        if resp.status_code in (401, 403):
            raise ProviderUnavailableError(self.kind, "Worldcoin API authentication failed")
        if resp.status_code >= 400:
            raise ProviderUnavailableError(self.kind, f"Worldcoin API returned {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderUnavailableError(self.kind, "Worldcoin API returned invalid JSON") from exc
        if not data.get("success"):
            return ProviderResult(registered=False, datum="", audit={"action": proof.action})
        return ProviderResult(
            registered=True,
            datum=str(data.get("nullifier_hash") or proof.nullifier_hash),
            audit={"action": data.get("action", proof.action), "level": proof.verification_level},
        )


# ----------------------------- Liveness --------------------------------------

_LIVENESS_RE = re.compile(r"^[0-9a-f]{16,}$")


class LivenessClaim(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    proof_hash: str = Field(..., max_length=256)


class LivenessProvider:
    """Accepts a client-side liveness attestation digest; no network call."""

    kind = Provider.LIVENESS

    def parse_payload(self, payload: Mapping[str, Any]) -> LivenessClaim:
        claim = _parse(self.kind, LivenessClaim, payload)
        if not _LIVENESS_RE.match(claim.proof_hash):
            raise ValidationFailed("Liveness proof must be at least 16 lowercase hex characters")
        return claim

    async def verify(self, claim: LivenessClaim, address: str) -> ProviderResult:
        return ProviderResult(registered=True, datum=claim.proof_hash)


# ----------------------------- BrightID --------------------------------------


class BrightIdClaim(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    context_id: str = Field(..., min_length=1, max_length=256)


class BrightIdProvider:
    kind = Provider.BRIGHTID

    def __init__(self, http: httpx.AsyncClient, *, api_url: str, context: str) -> None:
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._context = context

    def parse_payload(self, payload: Mapping[str, Any]) -> BrightIdClaim:
        return _parse(self.kind, BrightIdClaim, payload)

    async def verify(self, claim: BrightIdClaim, address: str) -> ProviderResult:
        url = f"{self._api_url}/verifications/{self._context}/{claim.context_id}"
        try:
            resp = await self._http.get(url)
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(self.kind, f"BrightID node unreachable: {exc}") from exc
        if resp.status_code == 404:
            return ProviderResult(registered=False, datum="", audit={"context": self._context})
        if resp.status_code >= 500:
            raise ProviderUnavailableError(self.kind, f"BrightID node returned {resp.status_code}")
        if resp.status_code >= 400:
            raise ProviderRejectedError(self.kind, f"BrightID refused the context id ({resp.status_code})")
        try:
            data = resp.json().get("data") or {}
        except (ValueError, AttributeError) as exc:
            raise ProviderUnavailableError(self.kind, "BrightID node returned invalid JSON") from exc
        ts = data.get("timestamp")
        return ProviderResult(
            registered=bool(data.get("unique")),
            datum=claim.context_id,
            submission_time=int(ts) if isinstance(ts, (int, float)) else None,
            audit={"context": self._context},
        )


# ----------------------------- Static ----------------------------------------


class StaticClaim(BaseModel):
    model_config = ConfigDict(extra="allow")


class StaticProvider:
    """Always-registered provider for fixtures and local runs."""

    def __init__(self, kind: Provider, *, registered: bool = True) -> None:
        self.kind = kind
        self.registered = registered

    def parse_payload(self, payload: Mapping[str, Any]) -> StaticClaim:
        return StaticClaim.model_validate(dict(payload))

    async def verify(self, claim: StaticClaim, address: str) -> ProviderResult:
        digest = hashlib.sha3_256(_canonical_json(claim.model_dump()).encode("utf-8")).hexdigest()
        return ProviderResult(registered=self.registered, datum=digest, audit={"static": True})


# ----------------------------- Factory ---------------------------------------


def build_providers(settings, http: httpx.AsyncClient) -> Dict[Provider, IdentityProvider]:
    if settings.provider_backend == "static":
        return {p: StaticProvider(p) for p in Provider}
    return {
        Provider.PROOF_OF_HUMANITY: ProofOfHumanityProvider(http, subgraph_url=settings.poh_subgraph_url),
        Provider.WORLDCOIN: WorldcoinProvider(
            http,
            api_url=settings.worldcoin_api_url,
            app_id=settings.worldcoin_app_id,
            api_key=settings.worldcoin_api_key,
        ),
        Provider.LIVENESS: LivenessProvider(),
        Provider.BRIGHTID: BrightIdProvider(http, api_url=settings.brightid_api_url, context=settings.brightid_context),
    }


__all__ = [
    "ProviderError",
    "ProviderUnavailableError",
    "ProviderRejectedError",
    "ProviderResult",
    "IdentityProvider",
    "ProofOfHumanityProvider",
    "WorldcoinProvider",
    "LivenessProvider",
    "BrightIdProvider",
    "StaticProvider",
    "build_providers",
    "extract_eth_address",
    "decode_worldcoin_token",
]
