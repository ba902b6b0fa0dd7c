"""
Adapters to external collaborators.

- providers.py : identity providers (Proof of Humanity, Worldcoin, liveness, BrightID)
- ledger.py    : ledger clients (Aleo explorer + snarkos, in-memory fake)
"""

from .ledger import (AleoLedgerClient, InMemoryLedger, LedgerClient,
                     LedgerRejectedError, LedgerUnavailableError,
                     build_ledger_client)
from .providers import (IdentityProvider, ProviderRejectedError,
                        ProviderResult, ProviderUnavailableError,
                        StaticProvider, build_providers)

__all__ = [
    "LedgerClient",
    "AleoLedgerClient",
    "InMemoryLedger",
    "LedgerRejectedError",
    "LedgerUnavailableError",
    "build_ledger_client",
    "IdentityProvider",
    "ProviderResult",
    "ProviderRejectedError",
    "ProviderUnavailableError",
    "StaticProvider",
    "build_providers",
]
