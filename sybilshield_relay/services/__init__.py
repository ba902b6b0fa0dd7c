"""
sybilshield_relay.services
==========================

Service layer and its composition root.

- verification  : VerificationRegistry (submit / get_status)
- credentials   : CredentialRegistry (request_issuance / get_status / renew / revoke)
- ledger_bridge : LedgerBridge (stateless ledger adapter with timeouts and error classes)
- voting        : VotingService (cast / tally)

``build_services`` selects the capability implementations (ledger backend,
identity providers) from settings once, at construction time.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import httpx
from fastapi import Request

from ..adapters.ledger import LedgerClient, build_ledger_client
from ..adapters.providers import IdentityProvider, build_providers
from ..config import Settings
from ..models.records import Provider
from ..storage import build_store
from .credentials import CredentialRegistry
from .ledger_bridge import LedgerBridge
from .verification import VerificationRegistry
from .voting import VotingService


@dataclass
class RelayServices:
    settings: Settings
    http: httpx.AsyncClient
    ledger: LedgerClient
    bridge: LedgerBridge
    providers: Mapping[Provider, IdentityProvider]
    verifications: VerificationRegistry
    credentials: CredentialRegistry
    voting: VotingService

    async def aclose(self) -> None:
        await self.bridge.close()
        await self.http.aclose()


def build_services(
    settings: Settings,
    *,
    http: Optional[httpx.AsyncClient] = None,
    ledger: Optional[LedgerClient] = None,
    providers: Optional[Mapping[Provider, IdentityProvider]] = None,
    clock: Callable[[], float] = time.time,
    metrics=None,
) -> RelayServices:
    http = http or httpx.AsyncClient(
        timeout=httpx.Timeout(settings.provider_timeout_s),
        headers={"accept": "application/json"},
    )
    ledger = ledger or build_ledger_client(settings, http)
    providers = providers or build_providers(settings, http)

    bridge = LedgerBridge(
        ledger,
        program_id=settings.program_id,
        priority_fee=settings.ledger_priority_fee,
        submit_timeout_s=settings.ledger_submit_timeout_s,
        read_timeout_s=settings.ledger_read_timeout_s,
        seconds_per_block=settings.seconds_per_block,
        metrics=metrics,
    )
    verifications = VerificationRegistry(
        providers,
        records=build_store("verifications"),
        by_address=build_store("verifications_by_address"),
        validity_s=settings.verification_validity_s,
        provider_timeout_s=settings.provider_timeout_s,
        clock=clock,
        metrics=metrics,
    )
    credentials = CredentialRegistry(
        verifications,
        bridge,
        records=build_store("credentials"),
        by_address=build_store("credentials_by_address"),
        by_proof=build_store("credentials_by_proof"),
        issuer=settings.issuer_address or settings.program_id,
        validity_s=settings.clamped_badge_validity_s(),
        clock=clock,
        metrics=metrics,
    )
    voting = VotingService(credentials, bridge, metrics=metrics)
    return RelayServices(
        settings=settings,
        http=http,
        ledger=ledger,
        bridge=bridge,
        providers=providers,
        verifications=verifications,
        credentials=credentials,
        voting=voting,
    )


def get_services(request: Request) -> RelayServices:
    """FastAPI dependency: the bundle built by the app factory."""
    return request.app.state.services


__all__ = [
    "RelayServices",
    "build_services",
    "get_services",
    "VerificationRegistry",
    "CredentialRegistry",
    "LedgerBridge",
    "VotingService",
]
