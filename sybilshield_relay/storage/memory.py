"""
Process-local keyed store.

Single-key operations complete without yielding to the event loop, so they are
atomic with respect to every other coroutine. ``locked(key)`` hands out one of
a fixed pool of ``asyncio.Lock`` shards; callers must never hold two keys'
locks at once, because two keys may share a shard.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import (AsyncIterator, Callable, Dict, Generic, Iterator, List,
                    Optional, Tuple, TypeVar)

K = TypeVar("K")
V = TypeVar("V")

DEFAULT_SHARDS = 64


class InMemoryKeyedStore(Generic[K, V]):
    def __init__(self, *, name: str = "", shards: int = DEFAULT_SHARDS) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self.name = name
        self._data: Dict[K, V] = {}
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(shards)]

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"InMemoryKeyedStore(name={self.name!r}, size={len(self._data)})"

    async def get(self, key: K) -> Optional[V]:
        return self._data.get(key)

    async def put(self, key: K, value: V) -> None:
        self._data[key] = value

    async def get_or_insert(self, key: K, factory: Callable[[], V]) -> Tuple[V, bool]:
        current = self._data.get(key)
        if current is not None:
            return current, False
        value = factory()
        self._data[key] = value
        return value, True

    async def compare_and_swap(self, key: K, expected: Optional[V], new: V) -> bool:
        if self._data.get(key) != expected:
            return False
        self._data[key] = new
        return True

    async def delete(self, key: K) -> None:
        self._data.pop(key, None)

    def values(self) -> Iterator[V]:
        # Snapshot so callers may await while iterating.
        return iter(list(self._data.values()))

    def _shard(self, key: K) -> asyncio.Lock:
        return self._locks[hash(key) % len(self._locks)]

    @asynccontextmanager
    async def locked(self, key: K) -> AsyncIterator[None]:
        async with self._shard(key):
            yield


__all__ = ["InMemoryKeyedStore", "DEFAULT_SHARDS"]
