from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Generic, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ChunkProgress(Generic[R]):
    processed: int
    total: int
    results: List[R]


async def iter_chunks(
    items: Sequence[T],
    *,
    size: int,
    worker: Callable[[T], Awaitable[R]],
    delay_s: float = 0.0,
) -> AsyncIterator[ChunkProgress[R]]:
    """Run `worker` over `items` in consecutive chunks of `size`.

    All workers of a chunk are in flight together; the next chunk starts only
    after the whole chunk completed. One ChunkProgress is yielded per chunk,
    `processed` never decreases. `delay_s` is slept between chunks, not after
    the last one. Workers are expected to absorb their own failures.
    """
    size = max(1, int(size))
    total = len(items)
    for start in range(0, total, size):
        chunk = items[start : start + size]
        results = await asyncio.gather(*[worker(item) for item in chunk])
        processed = min(start + size, total)
        yield ChunkProgress(processed=processed, total=total, results=list(results))
        if processed < total and delay_s > 0:
            await asyncio.sleep(delay_s)
