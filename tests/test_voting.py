from __future__ import annotations

import pytest

from sybilshield_relay import commitment
from sybilshield_relay.adapters.ledger import MAPPING_NULLIFIERS
from sybilshield_relay.errors import AlreadyVoted, NotFound, ValidationFailed
from sybilshield_relay.models.records import CredentialStatus, Provider


async def _badge(services, address):
    ver, _ = await services.verifications.submit(Provider.WORLDCOIN, address, {})
    return await services.credentials.request_issuance(ver.id, address)


@pytest.mark.asyncio
async def test_vote_uses_nonce_nullifier(services, ledger, addr):
    badge = await _badge(services, addr)
    receipt = await services.voting.cast(addr, 42, True)

    expected = commitment.nullifier(42, badge.nonce)
    assert receipt.transaction_id.startswith("at1")
    assert ledger.mappings[MAPPING_NULLIFIERS] == {expected: "true"}
    assert addr not in ledger.submissions[-1]["inputs"]


@pytest.mark.asyncio
async def test_double_vote_is_already_voted(services, addr):
    await _badge(services, addr)
    await services.voting.cast(addr, 1, True)
    with pytest.raises(AlreadyVoted):
        await services.voting.cast(addr, 1, False)
    # Other proposals are unaffected.
    await services.voting.cast(addr, 2, False)


@pytest.mark.asyncio
async def test_vote_requires_badge(services, addr):
    with pytest.raises(NotFound):
        await services.voting.cast(addr, 1, True)


@pytest.mark.asyncio
async def test_vote_requires_active_badge(services, clock, addr):
    await _badge(services, addr)
    clock.advance(services.credentials.validity_s + 1)
    with pytest.raises(ValidationFailed, match="expired"):
        await services.voting.cast(addr, 1, True)


@pytest.mark.asyncio
async def test_renewal_keeps_the_nullifier(services, ledger, clock, addr):
    badge = await _badge(services, addr)
    await services.voting.cast(addr, 7, True)

    clock.advance(services.credentials.validity_s + 1)
    renewed = await services.credentials.renew(addr)
    assert renewed.nonce == badge.nonce

    with pytest.raises(AlreadyVoted):
        await services.voting.cast(addr, 7, False)

    await services.voting.cast(addr, 8, True)
    assert set(ledger.mappings[MAPPING_NULLIFIERS]) == {
        commitment.nullifier(7, badge.nonce),
        commitment.nullifier(8, badge.nonce),
    }


@pytest.mark.asyncio
async def test_revoked_badge_cannot_vote(services, ledger, addr):
    badge = await _badge(services, addr)
    ledger.revoke(badge.proof_hash)
    with pytest.raises(ValidationFailed, match="revoked"):
        await services.voting.cast(addr, 1, True)
    assert (await services.credentials.get_status(addr)).status is CredentialStatus.REVOKED


@pytest.mark.asyncio
async def test_tally(services, addr, addr2):
    await _badge(services, addr)
    await _badge(services, addr2)
    await services.voting.cast(addr, 5, True)
    await services.voting.cast(addr2, 5, False)
    tally = await services.voting.tally(5)
    assert (tally.yes, tally.no) == (1, 1)
