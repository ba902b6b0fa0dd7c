"""
Admin CLI for the SybilShield relay.

Utilities:
  - serve         : run the HTTP service under uvicorn
  - nullifier     : derive the vote nullifier for (proposal id, credential nonce)
  - proof-hash    : derive a verification proof hash
  - ledger-height : print the ledger's current block height
  - mapping       : read one value from a program mapping
  - check-config  : print the effective settings and any production problems

Usage:
  python -m sybilshield_relay.cli <command> [options]
"""

from __future__ import annotations

import asyncio
import json
from typing import Awaitable, Callable, NoReturn, Optional, TypeVar

import httpx
import typer

from . import commitment
from .adapters.ledger import LedgerClient, LedgerError, build_ledger_client
from .config import Settings, load_config
from .logging import setup_logging
from .models.common import U32_MAX
from .models.records import Provider

app = typer.Typer(add_completion=False, help="SybilShield relay - Admin CLI")

T = TypeVar("T")


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _with_ledger(cfg: Settings, fn: Callable[[LedgerClient], Awaitable[T]]) -> T:
    async def _run() -> T:
        async with httpx.AsyncClient(timeout=cfg.ledger_read_timeout_s) as http:
            ledger = build_ledger_client(cfg, http)
            try:
                return await fn(ledger)
            finally:
                await ledger.close()

    return asyncio.run(_run())


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """
    Shared options for all subcommands.
    """
    setup_logging(level=log_level or "WARNING", log_format="console")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8080, "--port", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Enable autoreload (dev only)"),
):
    """
    Run the relay under uvicorn.
    """
    from .main import run

    run(host, port, reload=reload, log_level=load_config().log_level.lower())


@app.command("nullifier")
def nullifier(
    proposal_id: int = typer.Argument(..., help="Proposal id (u32)"),
    nonce: str = typer.Argument(..., help="Credential nonce, e.g. 123field"),
):
    """
    Print the nullifier a vote on PROPOSAL_ID by the credential holding NONCE would use.
    """
    if not 0 <= proposal_id <= U32_MAX:
        _fail(f"proposal id must be between 0 and {U32_MAX}")
    if not commitment.is_field_token(nonce):
        _fail("nonce must be a field literal like '123field'")
    typer.echo(commitment.nullifier(proposal_id, nonce))


@app.command("proof-hash")
def proof_hash(
    provider: str = typer.Argument(..., help="Provider slug, e.g. proof-of-humanity"),
    address: str = typer.Argument(..., help="Wallet address"),
    datum: str = typer.Argument(..., help="Provider datum (e.g. submission time)"),
    timestamp_ms: int = typer.Argument(..., help="Verification time in milliseconds"),
):
    """
    Recompute a verification proof hash.
    """
    try:
        kind = Provider.from_slug(provider)
    except ValueError as exc:
        _fail(str(exc))
    typer.echo(commitment.proof_hash(kind.value, address, datum, timestamp_ms))


@app.command("ledger-height")
def ledger_height():
    """
    Print the configured ledger's current block height.
    """
    cfg = load_config()
    try:
        height = _with_ledger(cfg, lambda ledger: ledger.current_height())
    except LedgerError as exc:
        _fail(f"ledger unavailable: {exc}")
    typer.echo(str(height))


@app.command("mapping")
def mapping(
    name: str = typer.Argument(..., help="Mapping name, e.g. vote_null"),
    key: str = typer.Argument(..., help="Mapping key"),
    program: Optional[str] = typer.Option(None, "--program", help="Program id (default: PROGRAM_ID)"),
):
    """
    Read one mapping value; exits 2 when the key is absent.
    """
    cfg = load_config()
    program_id = program or cfg.program_id
    try:
        value = _with_ledger(cfg, lambda ledger: ledger.read_mapping(program_id, name, key))
    except LedgerError as exc:
        _fail(f"ledger unavailable: {exc}")
    if value is None:
        typer.secho(f"{program_id}/{name}[{key}] is absent", err=True)
        raise typer.Exit(code=2)
    typer.echo(value)


@app.command("check-config")
def check_config():
    """
    Print the effective settings (secrets redacted) and exit 1 if the
    configuration would be refused in production.
    """
    cfg = load_config()
    dump = cfg.model_dump()
    for secret in ("issuer_private_key", "worldcoin_api_key"):
        if dump.get(secret):
            dump[secret] = "***"
    typer.echo(json.dumps(dump, indent=2, sort_keys=True, default=str))
    problems = cfg.production_problems()
    for p in problems:
        typer.secho(f"problem: {p}", fg=typer.colors.YELLOW, err=True)
    if problems:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
