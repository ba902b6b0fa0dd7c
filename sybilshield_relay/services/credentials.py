"""
Credential (badge) registry.

Public API
----------
request_issuance(verification_id, address) -> CredentialRecord
get_status(address) -> CredentialRecord | None
renew(address) -> CredentialRecord
revoke(address) -> CredentialRecord

State machine::

    none -> pending -> active | failed
    active -> expired (time) | revoked (admin or ledger)
    failed -> pending (a new issuance attempt)
    expired -> active (renewal)

An address holds at most one ``pending`` or ``active`` credential. The check
and the ``pending`` insert happen inside the address's critical section; the
ledger call happens after the lock is released, and its outcome is applied
with compare-and-swap. A pending record is always resolved to ``active`` or
``failed``, including when the request is cancelled mid-submission.
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Callable, Optional

from .. import commitment
from ..errors import (Conflict, ExternalServiceFailure, NotFound, ServerError,
                      ValidationFailed)
from ..logging import get_logger
from ..models.records import (CredentialRecord, CredentialStatus,
                              VerificationStatus, new_id)
from ..storage import KeyedStore
from .ledger_bridge import LedgerBridge
from .verification import VerificationRegistry

log = get_logger(__name__)


class CredentialRegistry:
    def __init__(
        self,
        verifications: VerificationRegistry,
        bridge: LedgerBridge,
        *,
        records: KeyedStore,
        by_address: KeyedStore,
        by_proof: KeyedStore,
        issuer: str,
        validity_s: int,
        clock: Callable[[], float] = time.time,
        metrics=None,
    ) -> None:
        self.verifications = verifications
        self.bridge = bridge
        self.records = records
        self.by_address = by_address
        self.by_proof = by_proof
        self.issuer = issuer
        self.validity_s = validity_s
        self.clock = clock
        self.metrics = metrics

    # --- internals ---------------------------------------------------------

    async def _swap(self, rec: CredentialRecord, **changes) -> CredentialRecord:
        """Apply ``changes`` if nobody else wrote the record first; return the stored record."""
        new = replace(rec, updated_at=self.clock(), **changes)
        if await self.records.compare_and_swap(rec.id, rec, new):
            return new
        current = await self.records.get(rec.id)
        log.warning(
            "credential_write_conflict",
            badge_id=rec.id,
            wanted=new.status.value,
            found=current.status.value if current else None,
        )
        return current or new

    async def _current(self, address: str) -> Optional[CredentialRecord]:
        cid = await self.by_address.get(address)
        if cid is None:
            return None
        rec = await self.records.get(cid)
        if rec is not None and rec.status is CredentialStatus.ACTIVE and rec.past_expiry(self.clock()):
            rec = await self._swap(rec, status=CredentialStatus.EXPIRED)
            log.info("badge_expired", badge_id=rec.id)
        return rec

    def _count(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.observe_issuance(outcome)

    async def _claim_slot(self, address: str, proof_hash: str, verification_id: str) -> CredentialRecord:
        async with self.by_address.locked(address):
            current = await self._current(address)
            if current is not None and current.holds_slot:
                self._count("conflict")
                raise Conflict(
                    "Badge already exists for this address",
                    details={"badge_id": current.id, "status": current.status.value},
                )
            pid = await self.by_proof.get(proof_hash)
            prior = await self.records.get(pid) if pid else None
            if prior is not None and prior.holds_slot:
                self._count("conflict")
                raise Conflict("A badge has already been issued for this verification")

            try:
                nonce = commitment.generate_nonce()
            except commitment.EntropyUnavailable as exc:
                raise ServerError("Secure randomness unavailable") from exc

            now = self.clock()
            rec = CredentialRecord(
                id=new_id("bdg"),
                address=address,
                issuer=self.issuer,
                proof_hash=proof_hash,
                verification_id=verification_id,
                nonce=nonce,
                created_at=now,
                expires_at=now + self.validity_s,
                status=CredentialStatus.PENDING,
                updated_at=now,
            )
            await self.records.put(rec.id, rec)
            await self.by_address.put(address, rec.id)
            await self.by_proof.put(proof_hash, rec.id)
            return rec

    # --- public API --------------------------------------------------------

    async def request_issuance(self, verification_id: str, address: str) -> CredentialRecord:
        ver = await self.verifications.get_status(verification_id)
        if ver.address != address:
            raise ValidationFailed("Address does not match verification record")
        if ver.status is VerificationStatus.EXPIRED or (
            ver.status is VerificationStatus.VERIFIED and self.clock() > ver.expires_at
        ):
            raise ValidationFailed("Verification has expired")
        if ver.status is not VerificationStatus.VERIFIED:
            raise ValidationFailed(f"Cannot issue badge: verification status is {ver.status.value}")

        pending = await self._claim_slot(address, ver.proof_hash, ver.id)
        log.info("badge_pending", badge_id=pending.id, verification_id=ver.id)

        try:
            expires_at_height = await self.bridge.expiry_height(self.validity_s)
            receipt = await self.bridge.issue_credential(address, ver.proof_hash, expires_at_height)
        except BaseException as exc:
            reason = getattr(exc, "reason", None) or type(exc).__name__
            failed = await self._swap(pending, status=CredentialStatus.FAILED, failure_reason=reason)
            self._count("failed")
            log.warning("badge_issuance_failed", badge_id=failed.id, reason=reason)
            raise

        active = await self._swap(
            pending,
            status=CredentialStatus.ACTIVE,
            transaction_id=receipt.transaction_id,
            expires_at_height=expires_at_height,
        )
        self._count("issued")
        log.info("badge_issued", badge_id=active.id, transaction_id=receipt.transaction_id)
        return active

    async def get_status(self, address: str) -> Optional[CredentialRecord]:
        rec = await self._current(address)
        if rec is None or rec.status is not CredentialStatus.ACTIVE:
            return rec
        try:
            revoked = await self.bridge.is_revoked(rec.proof_hash)
        except ExternalServiceFailure as exc:
            log.warning("badge_reconcile_skipped", badge_id=rec.id, error=exc.message)
            return rec
        if revoked:
            rec = await self._swap(rec, status=CredentialStatus.REVOKED)
            log.info("badge_revoked", badge_id=rec.id, source="ledger")
        return rec

    async def renew(self, address: str) -> CredentialRecord:
        rec = await self.get_status(address)
        if rec is None:
            raise NotFound("Badge")
        if rec.status is CredentialStatus.REVOKED:
            raise ValidationFailed("Cannot renew a revoked badge")
        if rec.status in (CredentialStatus.PENDING, CredentialStatus.FAILED):
            raise ValidationFailed(f"Cannot renew a badge in status {rec.status.value}")

        async with self.by_address.locked(address):
            # Another issuance may have taken the slot since the unlocked read.
            current = await self._current(address)
            if (
                current is None
                or current.id != rec.id
                or current.status not in (CredentialStatus.ACTIVE, CredentialStatus.EXPIRED)
            ):
                self._count("conflict")
                raise Conflict(
                    "Badge changed while renewing; retry",
                    details={"status": current.status.value if current else None},
                )
            renewed = await self._swap(
                current, status=CredentialStatus.ACTIVE, expires_at=self.clock() + self.validity_s
            )
        if renewed.status is not CredentialStatus.ACTIVE:
            raise Conflict("Badge changed while renewing; retry", details={"status": renewed.status.value})
        self._count("renewed")
        log.info("badge_renewed", badge_id=renewed.id, expires_at=int(renewed.expires_at))
        return renewed

    async def revoke(self, address: str) -> CredentialRecord:
        async with self.by_address.locked(address):
            rec = await self._current(address)
            if rec is None:
                raise NotFound("Badge")
            if rec.status is CredentialStatus.REVOKED:
                return rec
            rec = await self._swap(rec, status=CredentialStatus.REVOKED)
        log.info("badge_revoked", badge_id=rec.id, source="admin")
        return rec


__all__ = ["CredentialRegistry"]
