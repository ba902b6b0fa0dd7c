"""
Verification registry.

Public API
----------
submit(provider, address, payload) -> (VerificationRecord, already_verified)
get_status(verification_id) -> VerificationRecord

At most one verified, unexpired record exists per address. Clients retry, so
``submit`` short-circuits to the live record when there is one. Two first-time
submissions for the same address may both reach the provider; the second one
to take the address lock finds the winner's record and returns it instead of
writing its own.

Records are never deleted. ``verified`` flips to ``expired`` lazily on read.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .. import commitment
from ..adapters.providers import (IdentityProvider, ProviderRejectedError,
                                  ProviderUnavailableError)
from ..errors import ExternalServiceFailure, NotFound, ValidationFailed
from ..logging import get_logger
from ..models.common import is_address
from ..models.records import (Provider, VerificationRecord,
                              VerificationStatus, new_id)
from ..storage import KeyedStore

log = get_logger(__name__)

MSG_VERIFIED = "Verification successful"
MSG_ALREADY = "Address already verified"
MSG_REJECTED = "Identity is not registered with the provider"


class VerificationRegistry:
    def __init__(
        self,
        providers: Mapping[Provider, IdentityProvider],
        *,
        records: KeyedStore,
        by_address: KeyedStore,
        validity_s: int,
        provider_timeout_s: float,
        clock: Callable[[], float] = time.time,
        metrics=None,
    ) -> None:
        self.providers = dict(providers)
        self.records = records
        self.by_address = by_address
        self.validity_s = validity_s
        self.provider_timeout_s = provider_timeout_s
        self.clock = clock
        self.metrics = metrics

    # --- internals ---------------------------------------------------------

    async def _expire(self, rec: VerificationRecord) -> VerificationRecord:
        new = rec.expired()
        if await self.records.compare_and_swap(rec.id, rec, new):
            log.info("verification_expired", verification_id=rec.id)
            return new
        return await self.records.get(rec.id) or new

    async def _refresh(self, rec: VerificationRecord) -> VerificationRecord:
        if rec.status is VerificationStatus.VERIFIED and self.clock() > rec.expires_at:
            return await self._expire(rec)
        return rec

    async def live_for(self, address: str) -> Optional[VerificationRecord]:
        """The address's verified, unexpired record, if any."""
        vid = await self.by_address.get(address)
        if vid is None:
            return None
        rec = await self.records.get(vid)
        if rec is None:
            return None
        rec = await self._refresh(rec)
        return rec if rec.is_live(self.clock()) else None

    async def _check_provider(self, adapter: IdentityProvider, claim, address: str):
        kind = adapter.kind
        try:
            return await asyncio.wait_for(adapter.verify(claim, address), self.provider_timeout_s)
        except asyncio.TimeoutError as exc:
            raise ExternalServiceFailure(
                kind.value, f"{kind.slug} verification timed out", details={"provider": kind.value}
            ) from exc
        except ProviderUnavailableError as exc:
            raise ExternalServiceFailure(kind.value, exc.message, details={"provider": kind.value}) from exc
        except ProviderRejectedError as exc:
            raise ValidationFailed(exc.message, details={"provider": kind.value}, retryable=True) from exc

    def _count(self, provider: Provider, status: str) -> None:
        if self.metrics is not None:
            self.metrics.observe_verification(provider.value, status)

    # --- public API --------------------------------------------------------

    async def submit(
        self, provider: Provider, address: str, payload: Mapping[str, Any]
    ) -> Tuple[VerificationRecord, bool]:
        if not is_address(address):
            raise ValidationFailed("Invalid address format", details={"address": address})
        adapter = self.providers.get(provider)
        if adapter is None:
            raise ValidationFailed(f"Provider {provider.slug} is not enabled")

        existing = await self.live_for(address)
        if existing is not None:
            self._count(provider, "already_verified")
            return existing, True

        claim = adapter.parse_payload(payload)
        result = await self._check_provider(adapter, claim, address)

        now = self.clock()
        verified = result.registered
        rec = VerificationRecord(
            id=new_id("ver"),
            address=address,
            provider=provider,
            status=VerificationStatus.VERIFIED if verified else VerificationStatus.REJECTED,
            proof_hash=commitment.proof_hash(provider.value, address, result.datum, int(now * 1000)),
            created_at=now,
            expires_at=now + self.validity_s,
            provider_data=dict(result.audit, submission_time=result.submission_time),
            message=MSG_VERIFIED if verified else MSG_REJECTED,
        )

        async with self.by_address.locked(address):
            winner = await self.live_for(address)
            if winner is not None:
                self._count(provider, "already_verified")
                return winner, True
            await self.records.put(rec.id, rec)
            if verified:
                await self.by_address.put(address, rec.id)

        self._count(provider, rec.status.value)
        log.info(
            "verification_submitted",
            verification_id=rec.id,
            provider=provider.value,
            status=rec.status.value,
        )
        return rec, False

    async def get_status(self, verification_id: str) -> VerificationRecord:
        rec = await self.records.get(verification_id)
        if rec is None:
            raise NotFound("Verification")
        return await self._refresh(rec)

    def snapshot(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for rec in self.records.values():
            counts[rec.status.value] = counts.get(rec.status.value, 0) + 1
        return counts


__all__ = ["VerificationRegistry", "MSG_VERIFIED", "MSG_ALREADY", "MSG_REJECTED"]
