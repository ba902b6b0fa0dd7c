"""
Ledger clients.

Two implementations of the :class:`LedgerClient` contract:

* ``AleoLedgerClient`` reads mappings and the chain height from the explorer
  REST API (httpx) and submits transitions by running
  ``snarkos developer execute ... --broadcast`` as an asyncio subprocess.
* ``InMemoryLedger`` is a fake that enforces the same program rules the relay
  depends on (one badge per proof hash, one vote per nullifier) for tests and
  local runs.

Both raise only adapter-level errors; ``services.ledger_bridge`` classifies
them for the API.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx

from ..logging import get_logger

log = get_logger(__name__)

TX_ID_RE = re.compile(r"at1[a-z0-9]{58}")

# Mapping names of the badge/vote program.
MAPPING_PROOF_USED = "proof_used"
MAPPING_REVOKED = "bdg_revoked"
MAPPING_NULLIFIERS = "vote_null"
MAPPING_TALLY = "vote_tally"

FN_ISSUE_BADGE = "issue_badge"
FN_CAST_VOTE = "cast_vote"

REASON_PROOF_USED = "proof_already_used"
REASON_NULLIFIER_EXISTS = "nullifier_exists"

TALLY_BASE = 1_000_000


# ----------------------------- Errors ---------------------------------------


class LedgerError(Exception):
    """Base class for ledger adapter errors."""


class LedgerUnavailableError(LedgerError):
    """Ledger endpoint or CLI unreachable, or failing transiently."""


class LedgerRejectedError(LedgerError):
    """The program refused the transition; resubmitting will not help."""

    def __init__(self, reason: str):
        super().__init__(f"ledger rejected transition: {reason}")
        self.reason = reason


# ----------------------------- Contract -------------------------------------


@runtime_checkable
class LedgerClient(Protocol):
    async def submit(self, program: str, function: str, inputs: Sequence[str], fee: int) -> str:
        """Execute and broadcast a transition; return the transaction id."""
        ...

    async def read_mapping(self, program: str, mapping: str, key: str) -> Optional[str]:
        ...

    async def current_height(self) -> int:
        ...

    async def close(self) -> None:
        ...


# ----------------------------- Aleo -----------------------------------------


def _redact_argv(argv: Sequence[str]) -> List[str]:
    out: List[str] = []
    hide = False
    for a in argv:
        out.append("***" if hide else a)
        hide = a == "--private-key"
    return out


def _rejection_reason(stderr: str, stdout: str) -> str:
    text = (stderr or stdout or "").strip()
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    return (lines[-1] if lines else "execution failed")[:300]


class AleoLedgerClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        api_url: str,
        network: str,
        private_key: str,
        snarkos_bin: str = "snarkos",
    ) -> None:
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._network = network
        self._private_key = private_key
        self._snarkos = snarkos_bin

    @property
    def base_url(self) -> str:
        return f"{self._api_url}/{self._network}"

    async def _get_json(self, url: str):
        try:
            resp = await self._http.get(url)
        except httpx.HTTPError as exc:
            raise LedgerUnavailableError(f"ledger API unreachable: {exc}") from exc
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise LedgerUnavailableError(f"ledger API returned {resp.status_code} for {url}")
        try:
            return resp.json()
        except ValueError as exc:
            raise LedgerUnavailableError("ledger API returned invalid JSON") from exc

    async def current_height(self) -> int:
        data = await self._get_json(f"{self.base_url}/latest/height")
        if data is None:
            raise LedgerUnavailableError("ledger API has no latest height")
        return int(data)

    async def read_mapping(self, program: str, mapping: str, key: str) -> Optional[str]:
        data = await self._get_json(f"{self.base_url}/program/{program}/mapping/{mapping}/{key}")
        if data is None or data == "null":
            return None
        return str(data)

    async def submit(self, program: str, function: str, inputs: Sequence[str], fee: int) -> str:
        argv = [
            self._snarkos,
            "developer",
            "execute",
            program,
            function,
            *inputs,
            "--private-key",
            self._private_key,
            "--query",
            self._api_url,
            "--broadcast",
            f"{self.base_url}/transaction/broadcast",
            "--priority-fee",
            str(fee),
        ]
        log.info("ledger_submit", program=program, function=function, argv=_redact_argv(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as exc:
            raise LedgerUnavailableError(f"{self._snarkos} CLI is not installed") from exc

        try:
            out, err = await proc.communicate()
        except asyncio.CancelledError:
            # Timeout or client cancellation: do not leave the CLI running.
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await asyncio.shield(proc.wait())
            raise

        stdout = out.decode("utf-8", "replace")
        stderr = err.decode("utf-8", "replace")
        if proc.returncode != 0:
            reason = _rejection_reason(stderr, stdout)
            log.warning("ledger_submit_rejected", function=function, returncode=proc.returncode, reason=reason)
            raise LedgerRejectedError(reason)

        m = TX_ID_RE.search(stdout)
        if not m:
            raise LedgerUnavailableError("could not find a transaction id in snarkos output")
        return m.group(0)

    async def close(self) -> None:
        # The shared httpx client is owned by the app.
        return None


# ----------------------------- In-memory ------------------------------------


def _strip_suffix(value: str, suffix: str) -> str:
    return value[: -len(suffix)] if value.endswith(suffix) else value


class InMemoryLedger:
    """
    Fake ledger for the badge/vote program.

    - ``issue_badge(recipient, proof_hash, expires u32)``: one badge per proof hash.
    - ``cast_vote(proposal u32, nullifier, choice bool)``: one vote per nullifier.

    ``fail_next`` scripts failures per function; ``delay`` makes every submit
    suspend, which lets tests interleave concurrent requests.
    """

    def __init__(self, *, start_height: int = 1_000_000, delay: float = 0.0) -> None:
        self.height = start_height
        self.delay = delay
        self.mappings: Dict[str, Dict[str, str]] = defaultdict(dict)
        self.submissions: List[Dict[str, object]] = []
        self._failures: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._counter = 0

    # --- scripting ---------------------------------------------------------

    def fail_next(self, function: str, exc: Exception) -> None:
        self._failures[function].append(exc)

    def revoke(self, proof_hash: str) -> None:
        self.mappings[MAPPING_REVOKED][proof_hash] = "true"

    def advance(self, blocks: int) -> None:
        self.height += blocks

    # --- contract ----------------------------------------------------------

    def _tx_id(self) -> str:
        self._counter += 1
        return "at1" + hashlib.sha3_256(f"tx:{self._counter}".encode()).hexdigest()[:58]

    async def submit(self, program: str, function: str, inputs: Sequence[str], fee: int) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._failures[function]:
            raise self._failures[function].popleft()

        if function == FN_ISSUE_BADGE:
            self._issue_badge(*inputs)
        elif function == FN_CAST_VOTE:
            self._cast_vote(*inputs)
        else:
            raise LedgerRejectedError(f"unknown_function:{function}")

        self.height += 1
        tx = self._tx_id()
        self.submissions.append({"program": program, "function": function, "inputs": list(inputs), "tx": tx})
        return tx

    def _issue_badge(self, recipient: str, proof_hash: str, expires: str) -> None:
        if self.mappings[MAPPING_PROOF_USED].get(proof_hash) == "true":
            raise LedgerRejectedError(REASON_PROOF_USED)
        if int(_strip_suffix(expires, "u32")) <= self.height:
            raise LedgerRejectedError("expiry_in_past")
        self.mappings[MAPPING_PROOF_USED][proof_hash] = "true"

    def _cast_vote(self, proposal: str, nullifier: str, choice: str) -> None:
        if self.mappings[MAPPING_NULLIFIERS].get(nullifier) == "true":
            raise LedgerRejectedError(REASON_NULLIFIER_EXISTS)
        self.mappings[MAPPING_NULLIFIERS][nullifier] = "true"
        current = int(_strip_suffix(self.mappings[MAPPING_TALLY].get(proposal, "0field"), "field"))
        current += TALLY_BASE if choice == "true" else 1
        self.mappings[MAPPING_TALLY][proposal] = f"{current}field"

    async def read_mapping(self, program: str, mapping: str, key: str) -> Optional[str]:
        return self.mappings[mapping].get(key)

    async def current_height(self) -> int:
        return self.height

    async def close(self) -> None:
        return None


def build_ledger_client(settings, http: httpx.AsyncClient) -> LedgerClient:
    if settings.ledger_backend == "memory":
        return InMemoryLedger()
    return AleoLedgerClient(
        http,
        api_url=settings.ledger_url,
        network=settings.ledger_network,
        private_key=settings.issuer_private_key,
        snarkos_bin=settings.snarkos_bin,
    )


__all__ = [
    "LedgerClient",
    "LedgerError",
    "LedgerUnavailableError",
    "LedgerRejectedError",
    "AleoLedgerClient",
    "InMemoryLedger",
    "build_ledger_client",
    "MAPPING_PROOF_USED",
    "MAPPING_REVOKED",
    "MAPPING_NULLIFIERS",
    "MAPPING_TALLY",
    "FN_ISSUE_BADGE",
    "FN_CAST_VOTE",
    "REASON_PROOF_USED",
    "REASON_NULLIFIER_EXISTS",
    "TALLY_BASE",
]
