from __future__ import annotations

import asyncio

import httpx
import pytest

from sybilshield_relay.adapters.ledger import (FN_CAST_VOTE, FN_ISSUE_BADGE,
                                               AleoLedgerClient,
                                               MAPPING_PROOF_USED,
                                               REASON_PROOF_USED,
                                               InMemoryLedger,
                                               LedgerRejectedError,
                                               LedgerUnavailableError)
from sybilshield_relay.errors import (AlreadyVoted, ExternalServiceFailure,
                                      LedgerRejected)
from sybilshield_relay.services.ledger_bridge import LedgerBridge

ADDR = "aleo1" + "q" * 58


@pytest.fixture
def fake() -> InMemoryLedger:
    return InMemoryLedger(start_height=100)


@pytest.fixture
def bridge(fake: InMemoryLedger) -> LedgerBridge:
    return LedgerBridge(fake, program_id="test.aleo", read_timeout_s=0.5, submit_timeout_s=0.5)


@pytest.mark.asyncio
async def test_issue_credential_records_proof(bridge, fake):
    receipt = await bridge.issue_credential(ADDR, "5field", 500)
    assert receipt.transaction_id.startswith("at1")
    assert fake.submissions[0]["inputs"] == [ADDR, "5field", "500u32"]
    assert await bridge.read_mapping(MAPPING_PROOF_USED, "5field") == "true"
    assert await bridge.current_height() == 101


@pytest.mark.asyncio
async def test_reused_proof_is_terminal(bridge):
    await bridge.issue_credential(ADDR, "5field", 500)
    with pytest.raises(LedgerRejected) as ei:
        await bridge.issue_credential(ADDR, "5field", 500)
    assert ei.value.reason == REASON_PROOF_USED
    assert ei.value.status_code == 422
    assert ei.value.retryable is False


@pytest.mark.asyncio
async def test_expiry_in_past_is_rejected(bridge):
    with pytest.raises(LedgerRejected):
        await bridge.issue_credential(ADDR, "6field", 50)


@pytest.mark.asyncio
async def test_duplicate_nullifier_maps_to_already_voted(bridge):
    await bridge.cast_vote(7, "9field", True)
    assert await bridge.has_nullifier("9field") is True
    with pytest.raises(AlreadyVoted) as ei:
        await bridge.cast_vote(7, "9field", False)
    assert ei.value.status_code == 409
    assert ei.value.code == "already_voted"


@pytest.mark.asyncio
async def test_unavailable_is_retryable(bridge, fake):
    fake.fail_next(FN_CAST_VOTE, LedgerUnavailableError("rpc down"))
    with pytest.raises(ExternalServiceFailure) as ei:
        await bridge.cast_vote(1, "1field", True)
    assert ei.value.retryable is True
    assert ei.value.code == "ledger_error"


@pytest.mark.asyncio
async def test_other_rejection_is_not_already_voted(bridge, fake):
    fake.fail_next(FN_CAST_VOTE, LedgerRejectedError("insufficient_fee"))
    with pytest.raises(LedgerRejected):
        await bridge.cast_vote(1, "1field", True)


@pytest.mark.asyncio
async def test_submit_timeout(fake):
    fake.delay = 1.0
    bridge = LedgerBridge(fake, program_id="test.aleo", submit_timeout_s=0.01)
    with pytest.raises(ExternalServiceFailure, match="timed out"):
        await bridge.issue_credential(ADDR, "5field", 500)


@pytest.mark.asyncio
async def test_tally_decodes_packed_counts(bridge):
    assert (await bridge.vote_tally(3)).yes == 0
    await bridge.cast_vote(3, "1field", True)
    await bridge.cast_vote(3, "2field", True)
    await bridge.cast_vote(3, "3field", False)
    tally = await bridge.vote_tally(3)
    assert (tally.proposal_id, tally.yes, tally.no) == (3, 2, 1)


@pytest.mark.asyncio
async def test_revocation_read(bridge, fake):
    assert await bridge.is_revoked("5field") is False
    fake.revoke("5field")
    assert await bridge.is_revoked("5field") is True


@pytest.mark.asyncio
async def test_expiry_height(fake):
    bridge = LedgerBridge(fake, program_id="test.aleo", seconds_per_block=10.0)
    assert await bridge.expiry_height(95) == 110
    assert await bridge.expiry_height(0) == 101


@pytest.mark.asyncio
async def test_scripted_failure_is_consumed_once(bridge, fake):
    fake.fail_next(FN_ISSUE_BADGE, LedgerUnavailableError("blip"))
    with pytest.raises(ExternalServiceFailure):
        await bridge.issue_credential(ADDR, "5field", 500)
    await bridge.issue_credential(ADDR, "5field", 500)


class _HangingProcess:
    def __init__(self) -> None:
        self.returncode = None
        self.killed = False
        self.reaped = False
        self._exited = asyncio.Event()

    async def communicate(self):
        await asyncio.Event().wait()

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        self.reaped = True
        return self.returncode


@pytest.mark.asyncio
async def test_timed_out_snarkos_is_killed_and_reaped(monkeypatch):
    proc = _HangingProcess()

    async def _spawn(*argv, **kwargs):
        return proc

    monkeypatch.setattr(asyncio, "create_subprocess_exec", _spawn)
    async with httpx.AsyncClient() as http:
        client = AleoLedgerClient(http, api_url="http://explorer", network="testnet", private_key="APrivateKey1zkp")
        bridge = LedgerBridge(client, program_id="test.aleo", submit_timeout_s=0.05)
        with pytest.raises(ExternalServiceFailure):
            await bridge.issue_credential(ADDR, "5field", 500)

    assert proc.killed
    assert proc.reaped
