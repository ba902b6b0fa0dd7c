"""
Vote relay.

cast(address, proposal_id, choice) -> LedgerReceipt
tally(proposal_id) -> Tally

The nullifier is derived from the credential's nonce and the proposal id, never
from the voter's address, so a vote cannot be linked back to its badge. The
ledger arbitrates double votes; the local ``has_nullifier`` read only spares a
doomed transaction.
"""

from __future__ import annotations

from .. import commitment
from ..errors import AlreadyVoted, ApiError, NotFound, ValidationFailed
from ..logging import get_logger
from ..models.records import CredentialStatus
from .credentials import CredentialRegistry
from .ledger_bridge import LedgerBridge, LedgerReceipt, Tally

log = get_logger(__name__)


class VotingService:
    def __init__(
        self,
        credentials: CredentialRegistry,
        bridge: LedgerBridge,
        *,
        metrics=None,
    ) -> None:
        self.credentials = credentials
        self.bridge = bridge
        self.metrics = metrics

    def _count(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.observe_vote(outcome)

    async def cast(self, address: str, proposal_id: int, choice: bool) -> LedgerReceipt:
        try:
            return await self._cast(address, proposal_id, choice)
        except AlreadyVoted:
            self._count("already_voted")
            raise
        except ApiError:
            self._count("rejected")
            raise

    async def _cast(self, address: str, proposal_id: int, choice: bool) -> LedgerReceipt:
        badge = await self.credentials.get_status(address)
        if badge is None:
            raise NotFound("Badge")
        if badge.status is not CredentialStatus.ACTIVE:
            raise ValidationFailed(f"Cannot vote: badge status is {badge.status.value}")

        # get_status already reconciled revocation unless the ledger was unreachable.
        if await self.bridge.is_revoked(badge.proof_hash):
            await self.credentials.revoke(address)
            raise ValidationFailed("Cannot vote: badge status is revoked")

        nullifier = commitment.nullifier(proposal_id, badge.nonce)
        if await self.bridge.has_nullifier(nullifier):
            raise AlreadyVoted(proposal_id)

        receipt = await self.bridge.cast_vote(proposal_id, nullifier, choice)
        self._count("recorded")
        log.info("vote_cast", proposal_id=proposal_id, transaction_id=receipt.transaction_id)
        return receipt

    async def tally(self, proposal_id: int) -> Tally:
        return await self.bridge.vote_tally(proposal_id)


__all__ = ["VotingService"]
