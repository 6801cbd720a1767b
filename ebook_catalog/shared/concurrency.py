from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    fn: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Run ``fn`` over ``items`` with at most ``concurrency`` calls in flight.

    Results keep the input order. The first exception propagates to the
    caller; calls already started are left to finish.
    """
    if not items:
        return []
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _run(item: T) -> R:
        async with sem:
            return await fn(item)

    return list(await asyncio.gather(*(_run(item) for item in items)))


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    step = max(1, size)
    return [items[i : i + step] for i in range(0, len(items), step)]
