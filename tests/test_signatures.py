from __future__ import annotations

import json
import time

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (Encoding,
                                                          PublicFormat)
from httpx import ASGITransport, AsyncClient

from conftest import make_settings, verify
from sybilshield_relay.app import create_app
from sybilshield_relay.errors import Unauthorized
from sybilshield_relay.security.signatures import (AcceptAllVerifier,
                                                   Ed25519SignatureVerifier,
                                                   SignedRequest,
                                                   build_signature_verifier,
                                                   signable_message)

DOMAIN = "sybilshield_aio_v2.aleo"


def _pub_hex(key: Ed25519PrivateKey) -> str:
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def _signed(key: Ed25519PrivateKey, action: str, data: dict, ts: int, domain: str = DOMAIN) -> SignedRequest:
    sig = key.sign(signable_message(action, data, ts, domain)).hex()
    return SignedRequest(
        action=action,
        address=data.get("address", ""),
        data=data,
        signature=sig,
        public_key=_pub_hex(key),
        timestamp=ts,
    )


def test_signable_message_is_canonical():
    a = signable_message("x", {"b": 1, "a": 2}, 10, "d")
    b = signable_message("x", {"a": 2, "b": 1}, 10, "d")
    assert a == b
    assert json.loads(a) == {"action": "x", "data": {"a": 2, "b": 1}, "timestamp": 10, "domain": "d"}


def test_ed25519_accepts_valid_signature():
    key = Ed25519PrivateKey.generate()
    verifier = Ed25519SignatureVerifier(domain=DOMAIN, clock=lambda: 1000.0)
    verifier.verify(_signed(key, "cast_vote", {"address": "aleo1x", "choice": True}, 1000))


@pytest.mark.parametrize(
    "mutate",
    [
        lambda r: SignedRequest(**{**r.__dict__, "signature": ""}),
        lambda r: SignedRequest(**{**r.__dict__, "public_key": ""}),
        lambda r: SignedRequest(**{**r.__dict__, "timestamp": None}),
        lambda r: SignedRequest(**{**r.__dict__, "timestamp": 1000 - 301}),
        lambda r: SignedRequest(**{**r.__dict__, "signature": "zz"}),
        lambda r: SignedRequest(**{**r.__dict__, "action": "renew_badge"}),
        lambda r: SignedRequest(**{**r.__dict__, "data": {"address": "aleo1x", "choice": False}}),
    ],
    ids=["no-sig", "no-key", "no-ts", "stale", "malformed", "wrong-action", "tampered"],
)
def test_ed25519_rejects(mutate):
    key = Ed25519PrivateKey.generate()
    verifier = Ed25519SignatureVerifier(domain=DOMAIN, clock=lambda: 1000.0)
    good = _signed(key, "cast_vote", {"address": "aleo1x", "choice": True}, 1000)
    with pytest.raises(Unauthorized):
        verifier.verify(mutate(good))


def test_ed25519_rejects_other_domain():
    key = Ed25519PrivateKey.generate()
    verifier = Ed25519SignatureVerifier(domain=DOMAIN, clock=lambda: 1000.0)
    with pytest.raises(Unauthorized):
        verifier.verify(_signed(key, "cast_vote", {}, 1000, domain="other.aleo"))


def test_mode_selection():
    assert isinstance(build_signature_verifier(make_settings()), AcceptAllVerifier)
    assert isinstance(build_signature_verifier(make_settings(signature_mode="ed25519")), Ed25519SignatureVerifier)


@pytest.mark.asyncio
async def test_signed_issuance_over_http(addr):
    app = create_app(make_settings(signature_mode="ed25519"))
    key = Ed25519PrivateKey.generate()
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        ver = (await verify(client, addr)).json()
        body = {"verification_id": ver["verification_id"], "address": addr}

        r = await client.post("/badge/request-issuance", json=body, headers={"X-Wallet-Address": addr})
        assert r.status_code == 401
        assert r.json()["code"] == "unauthorized"

        ts = int(time.time())
        sig = key.sign(signable_message("request_issuance", body, ts, DOMAIN)).hex()
        headers = {
            "X-Wallet-Address": addr,
            "X-Signature": sig,
            "X-Public-Key": _pub_hex(key),
            "X-Timestamp": str(ts),
        }
        r = await client.post("/badge/request-issuance", json=body, headers=headers)
        assert r.status_code == 201, r.text
        assert r.json()["badge_ready"] is True
    await app.state.services.aclose()


@pytest.mark.asyncio
async def test_header_body_address_mismatch(aclient, addr, addr2):
    r = await aclient.post(
        "/vote/cast",
        json={"address": addr, "proposal_id": 1, "choice": True},
        headers={"X-Wallet-Address": addr2},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_malformed_timestamp(aclient, addr):
    r = await aclient.post(
        "/badge/renew",
        json={"address": addr},
        headers={"X-Wallet-Address": addr, "X-Timestamp": "soon"},
    )
    assert r.status_code == 401
