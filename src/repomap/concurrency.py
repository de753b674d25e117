"""Bounded concurrency for async per-file work.

Example:
    >>> async def scan(path, index):
    ...     return await scan_file(command, path, root)
    >>> results = await run_with_concurrency(paths, 8, scan)
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 8


async def run_with_concurrency(
    items: Iterable[T],
    limit: Optional[int],
    worker: Callable[[T, int], Awaitable[R]],
) -> List[R]:
    """Run ``worker(item, index)`` over ``items`` with at most ``limit`` in flight.

    ``min(limit, len(items))`` workers pull the next index from a shared
    cursor until the items run out, so a slow item never blocks the others.
    Results are returned in input order regardless of completion order.

    Workers should catch their own errors and return a sentinel; an exception
    escaping a worker propagates and cancels the batch.

    Args:
        items: Work items.
        limit: Maximum concurrent workers. Values below 1 (or None) mean 1.
        worker: Coroutine function called with the item and its index.

    Returns:
        One result per item, index-aligned with ``items``.
    """
    items = list(items)
    if not items:
        return []

    max_workers = max(1, min(len(items), int(limit or 1)))
    results: List[Optional[R]] = [None] * len(items)
    cursor = 0

    async def run_worker() -> None:
        nonlocal cursor
        while cursor < len(items):
            index = cursor
            cursor += 1
            results[index] = await worker(items[index], index)

    await asyncio.gather(*(run_worker() for _ in range(max_workers)))
    return results
