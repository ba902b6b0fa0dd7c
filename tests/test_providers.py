from __future__ import annotations

import base64
import json

import httpx
import pytest

from sybilshield_relay.adapters.providers import (BrightIdProvider,
                                                  LivenessProvider,
                                                  ProofOfHumanityProvider,
                                                  ProviderRejectedError,
                                                  ProviderUnavailableError,
                                                  WorldcoinProvider,
                                                  build_providers,
                                                  decode_worldcoin_token,
                                                  extract_eth_address)
from sybilshield_relay.errors import ValidationFailed
from sybilshield_relay.models.records import Provider

from conftest import make_settings

ETH = "0x" + "ab" * 20
PROFILE = f"https://app.proofofhumanity.id/profile/{ETH}"
ADDR = "aleo1" + "z" * 58

WORLD_PROOF = {"merkle_root": "0x1", "nullifier_hash": "0xnull", "proof": "0xproof"}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ----------------------------- Proof of Humanity -----------------------------


def test_extract_eth_address():
    assert extract_eth_address(PROFILE) == ETH
    assert extract_eth_address(f"https://app.poh.dev/?address={ETH.upper().replace('0X', '0x')}") == ETH
    assert extract_eth_address("https://app.proofofhumanity.id/profile/") is None


@pytest.mark.parametrize(
    "payload",
    [{}, {"profile_url": "https://evil.example/profile/" + ETH}, {"profile_url": "https://app.proofofhumanity.id/profile/x"}],
)
def test_poh_rejects_bad_payloads(payload):
    provider = ProofOfHumanityProvider(httpx.AsyncClient(), subgraph_url="http://graph")
    with pytest.raises(ValidationFailed) as ei:
        provider.parse_payload(payload)
    assert ei.value.retryable is False


@pytest.mark.asyncio
async def test_poh_registered():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(
            200, json={"data": {"submission": {"registered": True, "submissionTime": "1650000000", "status": "None"}}}
        )

    async with _client(handler) as http:
        provider = ProofOfHumanityProvider(http, subgraph_url="http://graph")
        result = await provider.verify(provider.parse_payload({"profile_url": PROFILE}), ADDR)
    assert result.registered is True
    assert result.datum == "1650000000"
    assert seen["variables"] == {"id": ETH}


@pytest.mark.asyncio
async def test_poh_missing_submission_is_not_registered():
    async with _client(lambda r: httpx.Response(200, json={"data": {"submission": None}})) as http:
        provider = ProofOfHumanityProvider(http, subgraph_url="http://graph")
        result = await provider.verify(provider.parse_payload({"profile_url": PROFILE}), ADDR)
    assert result.registered is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status,exc", [(503, ProviderUnavailableError), (400, ProviderRejectedError)])
async def test_poh_http_errors(status, exc):
    async with _client(lambda r: httpx.Response(status)) as http:
        provider = ProofOfHumanityProvider(http, subgraph_url="http://graph")
        with pytest.raises(exc):
            await provider.verify(provider.parse_payload({"profile_url": PROFILE}), ADDR)


@pytest.mark.asyncio
async def test_poh_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as http:
        provider = ProofOfHumanityProvider(http, subgraph_url="http://graph")
        with pytest.raises(ProviderUnavailableError):
            await provider.verify(provider.parse_payload({"profile_url": PROFILE}), ADDR)


# ----------------------------- Worldcoin -------------------------------------


def _jwt(payload: dict) -> str:
    body = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode().rstrip("=")
    return f"e30.{body}.sig"


def test_decode_token_forms():
    assert decode_worldcoin_token(json.dumps(WORLD_PROOF)) == WORLD_PROOF
    assert decode_worldcoin_token(_jwt(WORLD_PROOF)) == WORLD_PROOF
    with pytest.raises(ValueError):
        decode_worldcoin_token("not-a-token")


@pytest.mark.asyncio
async def test_worldcoin_success_defaults_signal_to_address():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "nullifier_hash": "0xnull"})

    async with _client(handler) as http:
        provider = WorldcoinProvider(http, api_url="https://wc/api/v2/", app_id="app_1", api_key="k")
        claim = provider.parse_payload({"token": _jwt(WORLD_PROOF)})
        result = await provider.verify(claim, ADDR)

    assert result.registered is True
    assert result.datum == "0xnull"
    assert captured["url"] == "https://wc/api/v2/verify/app_1"
    assert captured["auth"] == "Bearer k"
    assert captured["body"]["signal"] == ADDR


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,exc", [(400, ProviderRejectedError), (401, ProviderUnavailableError), (500, ProviderUnavailableError)]
)
async def test_worldcoin_status_mapping(status, exc):
    async with _client(lambda r: httpx.Response(status, json={})) as http:
        provider = WorldcoinProvider(http, api_url="https://wc", app_id="a", api_key="k")
        with pytest.raises(exc):
            await provider.verify(provider.parse_payload({"token": json.dumps(WORLD_PROOF)}), ADDR)


def test_worldcoin_malformed_token():
    provider = WorldcoinProvider(httpx.AsyncClient(), api_url="https://wc", app_id="a", api_key="k")
    with pytest.raises(ValidationFailed):
        provider.parse_payload({"token": "garbage"})
    with pytest.raises(ValidationFailed):
        provider.parse_payload({"token": json.dumps({"merkle_root": "0x1"})})


# ----------------------------- Liveness / BrightID ---------------------------


@pytest.mark.asyncio
async def test_liveness():
    provider = LivenessProvider()
    result = await provider.verify(provider.parse_payload({"proof_hash": "0123456789abcdef"}), ADDR)
    assert result.registered is True
    with pytest.raises(ValidationFailed):
        provider.parse_payload({"proof_hash": "XYZ"})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,registered",
    [(200, {"data": {"unique": True, "timestamp": 1}}, True), (200, {"data": {"unique": False}}, False), (404, {}, False)],
)
async def test_brightid(status, body, registered):
    async with _client(lambda r: httpx.Response(status, json=body)) as http:
        provider = BrightIdProvider(http, api_url="https://node/v6", context="sybilshield")
        result = await provider.verify(provider.parse_payload({"context_id": "cid"}), ADDR)
    assert result.registered is registered


@pytest.mark.asyncio
async def test_brightid_errors():
    async with _client(lambda r: httpx.Response(502)) as http:
        provider = BrightIdProvider(http, api_url="https://node/v6", context="c")
        with pytest.raises(ProviderUnavailableError):
            await provider.verify(provider.parse_payload({"context_id": "cid"}), ADDR)


def test_build_providers_live_backend():
    providers = build_providers(make_settings(provider_backend="live"), httpx.AsyncClient())
    assert isinstance(providers[Provider.PROOF_OF_HUMANITY], ProofOfHumanityProvider)
    assert isinstance(providers[Provider.WORLDCOIN], WorldcoinProvider)
    assert set(providers) == set(Provider)
