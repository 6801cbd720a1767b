from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from cachetools import TLRUCache

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]
TtlSpec = float | Callable[[Any], float] | None


class SingleFlight(Generic[K, V]):
    """Collapse concurrent calls for the same key into one shared computation.

    The in-flight entry is removed as soon as the computation settles, so a
    failure is delivered to every waiter and the next call starts fresh.
    """

    def __init__(self) -> None:
        self._in_flight: dict[K, asyncio.Task[V]] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._in_flight

    async def run(self, key: K, compute: Callable[[], Awaitable[V]]) -> V:
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._settle(key, compute))
            self._in_flight[key] = task
        # Shield so one cancelled waiter does not cancel the shared work.
        return await asyncio.shield(task)

    async def _settle(self, key: K, compute: Callable[[], Awaitable[V]]) -> V:
        try:
            return await compute()
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]


@dataclass(slots=True, frozen=True)
class _Entry:
    value: Any
    ttl_seconds: float


def _entry_expiry(_key: Hashable, entry: _Entry, now: float) -> float:
    return now + entry.ttl_seconds


class TTLCache(Generic[V]):
    """In-memory TTL cache with single-flight fills.

    Storage is a ``cachetools.TLRUCache``: entries expire lazily on access and,
    when ``max_entries`` is set, the least recently used entry is evicted
    first. ``ttl`` may be a callable receiving the computed value, which is
    how negative results get a shorter lifetime.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: TLRUCache[Hashable, _Entry] = TLRUCache(
            maxsize=math.inf if max_entries is None else max_entries,
            ttu=_entry_expiry,
            timer=clock,
        )
        self._flight: SingleFlight[Hashable, V] = SingleFlight()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def get(self, key: Hashable, default: V | None = None) -> V | None:
        entry = self._entries.get(key)
        return default if entry is None else entry.value  # type: ignore[no-any-return]

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def in_flight(self, key: Hashable) -> bool:
        return self._flight.in_flight(key)

    def _resolve_ttl(self, value: V, ttl: TtlSpec) -> float:
        if ttl is None:
            return self.ttl_seconds
        if callable(ttl):
            return float(ttl(value))
        return float(ttl)

    def set(self, key: Hashable, value: V, ttl: TtlSpec = None) -> None:
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, ttl_seconds=self._resolve_ttl(value, ttl))

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        doomed = [key for key in list(self._entries.keys()) if predicate(key)]
        dropped = 0
        for key in doomed:
            if self._entries.pop(key, None) is not None:
                dropped += 1
        return dropped

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], Awaitable[V]],
        ttl: TtlSpec = None,
    ) -> V:
        entry = self._entries.get(key)
        if entry is not None:
            return entry.value  # type: ignore[no-any-return]

        async def _fill() -> V:
            computed = await compute()
            self.set(key, computed, ttl)
            return computed

        return await self._flight.run(key, _fill)
