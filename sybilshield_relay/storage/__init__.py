"""
sybilshield_relay.storage
=========================

Keyed store abstraction backing the verification and credential registries.

The registries need only per-key atomic read-modify-write:

- ``get`` / ``put`` for plain reads and writes,
- ``get_or_insert`` to claim a key exactly once,
- ``compare_and_swap`` for state transitions that must not clobber a
  concurrent writer,
- ``locked(key)`` for a critical section spanning several operations (the
  check-then-insert steps of issuance).

Backends:
- memory.py : process-local dict plus a sharded ``asyncio.Lock`` pool
"""

from __future__ import annotations

from typing import (AsyncContextManager, Callable, Iterator, Optional,
                    Protocol, Tuple, TypeVar, runtime_checkable)

K = TypeVar("K")
V = TypeVar("V")


@runtime_checkable
class KeyedStore(Protocol[K, V]):
    """
    Minimal interface the registries use.

    Implementations MUST make ``get_or_insert`` and ``compare_and_swap`` atomic
    per key, and ``locked(key)`` MUST exclude every other ``locked(key)`` holder
    for the same key.
    """

    async def get(self, key: K) -> Optional[V]:
        ...

    async def put(self, key: K, value: V) -> None:
        ...

    async def get_or_insert(self, key: K, factory: Callable[[], V]) -> Tuple[V, bool]:
        """Return (value, inserted). ``factory`` runs only when the key is absent."""
        ...

    async def compare_and_swap(self, key: K, expected: Optional[V], new: V) -> bool:
        """Write ``new`` only if the current value equals ``expected`` (None = absent)."""
        ...

    async def delete(self, key: K) -> None:
        ...

    def values(self) -> Iterator[V]:
        ...

    def locked(self, key: K) -> AsyncContextManager[None]:
        ...


from .memory import InMemoryKeyedStore  # noqa: E402


def build_store(name: str = "") -> KeyedStore:
    """Construct the configured keyed store; only the in-process backend ships today."""
    return InMemoryKeyedStore(name=name)


__all__ = ["KeyedStore", "InMemoryKeyedStore", "build_store"]
