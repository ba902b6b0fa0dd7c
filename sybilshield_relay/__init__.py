"""
SybilShield Relay
=================

FastAPI service bridging off-chain proof-of-humanity checks to an on-chain
badge and voting ledger: verification -> badge issuance -> nullifier voting.

This package exposes:

- ``__version__``: semantic version string
- ``build_app()``: convenience creator for a configured FastAPI app

Prefer importing submodules directly for specific concerns:
``sybilshield_relay.config``, ``sybilshield_relay.commitment``,
``sybilshield_relay.services.*``, etc.
"""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__", "build_app"]


def build_app():
    """
    Create and return a fully configured FastAPI application.

    Importing lazily keeps ``import sybilshield_relay`` free of FastAPI side
    effects for consumers that only need version metadata.
    """
    from .app import create_app

    return create_app()
