"""
Ledger bridge: the only place the pipeline talks to the ledger.

The bridge is stateless. It bounds every call with a timeout and classifies
failures so callers never see a generic error:

- timeout / ``LedgerUnavailableError`` -> ``ExternalServiceFailure("ledger")`` (retryable)
- ``LedgerRejectedError`` on an existing nullifier -> ``AlreadyVoted`` (terminal)
- any other ``LedgerRejectedError`` -> ``LedgerRejected(reason)`` (terminal)

Once a transaction confirms the ledger is the system of record; the registries
consult ``is_revoked`` / ``has_nullifier`` and defer to what they return.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from ..adapters.ledger import (FN_CAST_VOTE, FN_ISSUE_BADGE,
                               MAPPING_NULLIFIERS, MAPPING_REVOKED,
                               MAPPING_TALLY, REASON_NULLIFIER_EXISTS,
                               TALLY_BASE, LedgerClient, LedgerRejectedError,
                               LedgerUnavailableError)
from ..errors import AlreadyVoted, ExternalServiceFailure, LedgerRejected
from ..logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

U32_MAX = 2**32 - 1


@dataclass(frozen=True)
class LedgerReceipt:
    transaction_id: str


@dataclass(frozen=True)
class Tally:
    proposal_id: int
    yes: int
    no: int


def _strip(value: str, suffix: str) -> str:
    return value[: -len(suffix)] if value.endswith(suffix) else value


class LedgerBridge:
    def __init__(
        self,
        client: LedgerClient,
        *,
        program_id: str,
        priority_fee: int = 10_000,
        submit_timeout_s: float = 180.0,
        read_timeout_s: float = 10.0,
        seconds_per_block: float = 1.0,
        metrics=None,
    ) -> None:
        self.client = client
        self.program_id = program_id
        self.priority_fee = priority_fee
        self.submit_timeout_s = submit_timeout_s
        self.read_timeout_s = read_timeout_s
        self.seconds_per_block = seconds_per_block
        self.metrics = metrics

    def _observe(self, op: str, outcome: str, started: float) -> None:
        if self.metrics is not None:
            self.metrics.observe_ledger(op, outcome, time.perf_counter() - started)

    async def _bounded(self, op: str, aw: Awaitable[T], timeout: float, *, proposal_id: Optional[int] = None) -> T:
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(aw, timeout)
        except asyncio.TimeoutError as exc:
            self._observe(op, "timeout", started)
            log.warning("ledger_timeout", op=op, timeout_s=timeout)
            raise ExternalServiceFailure("ledger", f"Ledger {op} timed out after {timeout:g}s") from exc
        except LedgerUnavailableError as exc:
            self._observe(op, "unavailable", started)
            log.warning("ledger_unavailable", op=op, error=str(exc))
            raise ExternalServiceFailure("ledger", f"Ledger unavailable: {exc}") from exc
        except LedgerRejectedError as exc:
            self._observe(op, "rejected", started)
            log.warning("ledger_rejected", op=op, reason=exc.reason)
            if proposal_id is not None and (
                exc.reason == REASON_NULLIFIER_EXISTS or "nullifier" in exc.reason.lower()
            ):
                raise AlreadyVoted(proposal_id) from exc
            raise LedgerRejected(exc.reason) from exc
        self._observe(op, "ok", started)
        return result

    # --- writes ------------------------------------------------------------

    async def issue_credential(self, address: str, proof_hash: str, expires_at_height: int) -> LedgerReceipt:
        inputs = [address, proof_hash, f"{min(expires_at_height, U32_MAX)}u32"]
        tx = await self._bounded(
            "issue_credential",
            self.client.submit(self.program_id, FN_ISSUE_BADGE, inputs, self.priority_fee),
            self.submit_timeout_s,
        )
        log.info("ledger_submit", function=FN_ISSUE_BADGE, transaction_id=tx)
        return LedgerReceipt(transaction_id=tx)

    async def cast_vote(self, proposal_id: int, nullifier: str, choice: bool) -> LedgerReceipt:
        inputs = [f"{proposal_id}u32", nullifier, "true" if choice else "false"]
        tx = await self._bounded(
            "cast_vote",
            self.client.submit(self.program_id, FN_CAST_VOTE, inputs, self.priority_fee),
            self.submit_timeout_s,
            proposal_id=proposal_id,
        )
        log.info("ledger_submit", function=FN_CAST_VOTE, transaction_id=tx)
        return LedgerReceipt(transaction_id=tx)

    # --- reads -------------------------------------------------------------

    async def read_mapping(self, mapping: str, key: str) -> Optional[str]:
        return await self._bounded(
            "read_mapping", self.client.read_mapping(self.program_id, mapping, key), self.read_timeout_s
        )

    async def current_height(self) -> int:
        return await self._bounded("current_height", self.client.current_height(), self.read_timeout_s)

    async def has_nullifier(self, nullifier: str) -> bool:
        return (await self.read_mapping(MAPPING_NULLIFIERS, nullifier)) == "true"

    async def is_revoked(self, proof_hash: str) -> bool:
        return (await self.read_mapping(MAPPING_REVOKED, proof_hash)) == "true"

    async def vote_tally(self, proposal_id: int) -> Tally:
        raw = await self.read_mapping(MAPPING_TALLY, f"{proposal_id}u32")
        packed = int(_strip(raw, "field")) if raw else 0
        return Tally(proposal_id=proposal_id, yes=packed // TALLY_BASE, no=packed % TALLY_BASE)

    async def expiry_height(self, validity_s: float) -> int:
        """Ledger height at which a credential issued now with ``validity_s`` expires."""
        blocks = max(1, math.ceil(validity_s / self.seconds_per_block))
        return await self.current_height() + blocks

    async def close(self) -> None:
        await self.client.close()


__all__ = ["LedgerBridge", "LedgerReceipt", "Tally"]
