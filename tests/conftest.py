from __future__ import annotations

import hashlib
import time
from typing import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from sybilshield_relay.adapters.ledger import InMemoryLedger
from sybilshield_relay.app import create_app
from sybilshield_relay.config import Settings
from sybilshield_relay.services import RelayServices, build_services


class FakeClock:
    """Wall clock the tests can move forward."""

    def __init__(self, start: float | None = None) -> None:
        self.now = float(start if start is not None else time.time())

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_address(seed: str) -> str:
    """Deterministic, well-formed aleo1 address for ``seed``."""
    body = ""
    counter = 0
    while len(body) < 58:
        body += hashlib.sha256(f"{seed}:{counter}".encode()).hexdigest()
        counter += 1
    return "aleo1" + body[:58]


def make_settings(**overrides) -> Settings:
    base = dict(
        app_env="test",
        log_level="WARNING",
        log_format="json",
        ledger_backend="memory",
        provider_backend="static",
        signature_mode="accept_all",
        rate_default="1000r/s",
        rate_default_burst=1000,
        rate_verify="1000r/s",
        rate_verify_burst=1000,
        rate_issuance="1000r/s",
        rate_issuance_burst=1000,
        cors_allow_origins=["http://localhost:3000"],
        verification_validity_s=3600,
        badge_validity_s=86_400,
        badge_min_validity_s=60,
    )
    base.update(overrides)
    return Settings(_env_file=None, **base)


# ----------------------------
# Settings & clock
# ----------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def addr() -> str:
    return make_address("alice")


@pytest.fixture
def addr2() -> str:
    return make_address("bob")


# ----------------------------
# Service bundle (no HTTP)
# ----------------------------
@pytest.fixture
async def services(settings: Settings, clock: FakeClock) -> AsyncIterator[RelayServices]:
    svc = build_services(settings, clock=clock)
    try:
        yield svc
    finally:
        await svc.aclose()


@pytest.fixture
def ledger(services: RelayServices) -> InMemoryLedger:
    assert isinstance(services.ledger, InMemoryLedger)
    return services.ledger


# ----------------------------
# FastAPI application fixtures
# ----------------------------
@pytest.fixture
def app(settings: Settings, clock: FakeClock) -> FastAPI:
    """
    One app per test: the in-memory stores and asyncio locks belong to the
    test's event loop, and each app owns its Prometheus registry.
    """
    return create_app(settings, clock=clock)


@pytest.fixture
def app_services(app: FastAPI) -> RelayServices:
    return app.state.services


@pytest.fixture
async def aclient(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async HTTP client bound to the ASGI app, without starting a server."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    await app.state.services.aclose()


# ----------------------------
# Request helpers
# ----------------------------
async def verify(client: AsyncClient, address: str, provider: str = "proof-of-humanity", payload=None):
    body = {
        "address": address,
        "provider_payload": payload if payload is not None else {"profile_url": f"https://app.proofofhumanity.id/profile/{address[-8:]}"},
    }
    return await client.post(f"/verify/{provider}", json=body)


async def issue(client: AsyncClient, verification_id: str, address: str):
    return await client.post(
        "/badge/request-issuance",
        json={"verification_id": verification_id, "address": address},
        headers={"X-Wallet-Address": address},
    )
