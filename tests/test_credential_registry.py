from __future__ import annotations

import asyncio

import pytest

from sybilshield_relay.adapters.ledger import (FN_ISSUE_BADGE,
                                               LedgerRejectedError,
                                               LedgerUnavailableError)
from sybilshield_relay.errors import (Conflict, ExternalServiceFailure,
                                      LedgerRejected, NotFound,
                                      ValidationFailed)
from sybilshield_relay.models.records import CredentialStatus, Provider
from sybilshield_relay.storage.memory import InMemoryKeyedStore

POH = Provider.PROOF_OF_HUMANITY


async def _verified(services, address):
    rec, _ = await services.verifications.submit(POH, address, {})
    return rec


@pytest.mark.asyncio
async def test_issuance_goes_pending_then_active(services, ledger, addr):
    ver = await _verified(services, addr)
    badge = await services.credentials.request_issuance(ver.id, addr)

    assert badge.status is CredentialStatus.ACTIVE
    assert badge.transaction_id and badge.transaction_id.startswith("at1")
    assert badge.expires_at_height is not None and badge.expires_at_height > 1_000_000
    assert badge.proof_hash == ver.proof_hash
    assert ledger.submissions[-1]["function"] == FN_ISSUE_BADGE
    assert ledger.submissions[-1]["inputs"][:2] == [addr, ver.proof_hash]


@pytest.mark.asyncio
async def test_second_issuance_conflicts(services, addr):
    ver = await _verified(services, addr)
    await services.credentials.request_issuance(ver.id, addr)
    with pytest.raises(Conflict):
        await services.credentials.request_issuance(ver.id, addr)


@pytest.mark.asyncio
async def test_concurrent_issuance_admits_exactly_one(services, ledger, addr):
    ledger.delay = 0.01
    ver = await _verified(services, addr)
    results = await asyncio.gather(
        *(services.credentials.request_issuance(ver.id, addr) for _ in range(10)),
        return_exceptions=True,
    )

    ok = [r for r in results if not isinstance(r, BaseException)]
    conflicts = [r for r in results if isinstance(r, Conflict)]
    assert len(ok) == 1
    assert len(conflicts) == 9
    holding = [r for r in services.credentials.records.values() if r.holds_slot]
    assert len(holding) == 1
    assert len(ledger.submissions) == 1


@pytest.mark.asyncio
async def test_address_mismatch(services, addr, addr2):
    ver = await _verified(services, addr2)
    with pytest.raises(ValidationFailed, match="Address does not match"):
        await services.credentials.request_issuance(ver.id, addr)


@pytest.mark.asyncio
async def test_unknown_verification(services, addr):
    with pytest.raises(NotFound):
        await services.credentials.request_issuance("ver_nope", addr)


@pytest.mark.asyncio
async def test_expired_verification(services, clock, addr):
    ver = await _verified(services, addr)
    clock.advance(services.verifications.validity_s + 10)
    with pytest.raises(ValidationFailed, match="Verification has expired"):
        await services.credentials.request_issuance(ver.id, addr)


@pytest.mark.asyncio
async def test_rejected_verification(services, addr):
    services.verifications.providers[POH].registered = False
    ver = await _verified(services, addr)
    with pytest.raises(ValidationFailed, match="verification status is rejected"):
        await services.credentials.request_issuance(ver.id, addr)


@pytest.mark.asyncio
async def test_ledger_rejection_fails_record_and_frees_slot(services, ledger, addr):
    ver = await _verified(services, addr)
    ledger.fail_next(FN_ISSUE_BADGE, LedgerRejectedError("insufficient_fee"))

    with pytest.raises(LedgerRejected) as ei:
        await services.credentials.request_issuance(ver.id, addr)
    assert ei.value.reason == "insufficient_fee"

    failed = await services.credentials.get_status(addr)
    assert failed.status is CredentialStatus.FAILED
    assert failed.failure_reason == "insufficient_fee"

    retry = await services.credentials.request_issuance(ver.id, addr)
    assert retry.status is CredentialStatus.ACTIVE
    assert retry.id != failed.id


@pytest.mark.asyncio
async def test_ledger_outage_is_retryable(services, ledger, addr):
    ver = await _verified(services, addr)
    ledger.fail_next(FN_ISSUE_BADGE, LedgerUnavailableError("connection refused"))

    with pytest.raises(ExternalServiceFailure) as ei:
        await services.credentials.request_issuance(ver.id, addr)
    assert ei.value.retryable is True
    assert (await services.credentials.get_status(addr)).status is CredentialStatus.FAILED


@pytest.mark.asyncio
async def test_ledger_timeout_never_leaves_pending(services, ledger, addr):
    services.bridge.submit_timeout_s = 0.01
    ledger.delay = 1.0
    ver = await _verified(services, addr)
    with pytest.raises(ExternalServiceFailure):
        await services.credentials.request_issuance(ver.id, addr)
    assert (await services.credentials.get_status(addr)).status is CredentialStatus.FAILED


@pytest.mark.asyncio
async def test_cancelled_issuance_is_marked_failed(services, ledger, addr):
    ledger.delay = 5.0
    ver = await _verified(services, addr)
    task = asyncio.create_task(services.credentials.request_issuance(ver.id, addr))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert (await services.credentials.get_status(addr)).status is CredentialStatus.FAILED


@pytest.mark.asyncio
async def test_status_none(services, addr):
    assert await services.credentials.get_status(addr) is None


@pytest.mark.asyncio
async def test_badge_expires_and_renews(services, clock, addr):
    ver = await _verified(services, addr)
    badge = await services.credentials.request_issuance(ver.id, addr)
    clock.advance(services.credentials.validity_s + 1)

    assert (await services.credentials.get_status(addr)).status is CredentialStatus.EXPIRED

    renewed = await services.credentials.renew(addr)
    assert renewed.id == badge.id
    assert renewed.status is CredentialStatus.ACTIVE
    assert renewed.expires_at == pytest.approx(clock() + services.credentials.validity_s)
    assert renewed.nonce == badge.nonce
    assert renewed.proof_hash == badge.proof_hash


@pytest.mark.asyncio
async def test_renew_rules(services, ledger, addr):
    with pytest.raises(NotFound):
        await services.credentials.renew(addr)

    ver = await _verified(services, addr)
    ledger.fail_next(FN_ISSUE_BADGE, LedgerRejectedError("boom"))
    with pytest.raises(LedgerRejected):
        await services.credentials.request_issuance(ver.id, addr)
    with pytest.raises(ValidationFailed, match="status failed"):
        await services.credentials.renew(addr)


@pytest.mark.asyncio
async def test_ledger_revocation_is_reconciled(services, ledger, addr):
    ver = await _verified(services, addr)
    badge = await services.credentials.request_issuance(ver.id, addr)
    ledger.revoke(badge.proof_hash)

    assert (await services.credentials.get_status(addr)).status is CredentialStatus.REVOKED
    with pytest.raises(ValidationFailed, match="revoked"):
        await services.credentials.renew(addr)


@pytest.mark.asyncio
async def test_status_survives_ledger_outage(services, ledger, addr):
    ver = await _verified(services, addr)
    await services.credentials.request_issuance(ver.id, addr)

    async def _down(*args, **kwargs):
        raise LedgerUnavailableError("down")

    ledger.read_mapping = _down  # type: ignore[method-assign]
    assert (await services.credentials.get_status(addr)).status is CredentialStatus.ACTIVE


@pytest.mark.asyncio
async def test_admin_revoke(services, addr):
    ver = await _verified(services, addr)
    await services.credentials.request_issuance(ver.id, addr)
    revoked = await services.credentials.revoke(addr)
    assert revoked.status is CredentialStatus.REVOKED
    assert (await services.credentials.revoke(addr)).status is CredentialStatus.REVOKED


class _YieldingStore(InMemoryKeyedStore):
    """Suspends on every read, as a networked store would."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)


@pytest.mark.asyncio
async def test_renew_racing_issuance_keeps_one_live_badge(services, clock, addr):
    creds = services.credentials
    creds.records = _YieldingStore(name="credentials")
    creds.by_address = _YieldingStore(name="credentials_by_address")
    creds.by_proof = _YieldingStore(name="credentials_by_proof")

    ver = await _verified(services, addr)
    await creds.request_issuance(ver.id, addr)
    clock.advance(creds.validity_s + 1)
    fresh = await _verified(services, addr)

    results = await asyncio.gather(
        creds.renew(addr),
        creds.request_issuance(fresh.id, addr),
        return_exceptions=True,
    )

    assert all(isinstance(r, (Conflict, ValidationFailed)) for r in results if isinstance(r, BaseException))
    holding = [r for r in creds.records.values() if r.holds_slot]
    assert len(holding) == 1
    assert (await creds.get_status(addr)).id == holding[0].id
