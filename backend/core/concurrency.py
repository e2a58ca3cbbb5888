"""
Bounded fan-out for per-entity store reads.

Per-product analytics each issue their own queries. Running all of them at
once saturates the connection pool; running them one by one is too slow.
``map_with_concurrency`` keeps at most ``concurrency`` mappers in flight and
returns results in input order, not completion order.

Usage:
    from core.concurrency import map_with_concurrency

    forecasts = await map_with_concurrency(products, 5, lambda p, i: forecast(p))
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_with_concurrency(
    items: Sequence[T],
    concurrency: int | float,
    mapper: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """
    Apply an async ``mapper(item, index)`` to every item with bounded concurrency.

    Workers share a monotonically increasing cursor and each claims the next
    unclaimed index until the input is exhausted. Claiming never awaits, so
    two workers can't take the same index. The first mapper error stops the
    pool: no new index is claimed and in-flight mappers are cancelled.

    Raises:
        ValueError if concurrency is not a finite positive number.
        Whatever the first failing mapper raised.
    """
    if (
        isinstance(concurrency, bool)
        or not isinstance(concurrency, (int, float))
        or not math.isfinite(concurrency)
        or concurrency <= 0
    ):
        raise ValueError(f"Invalid concurrency: {concurrency!r}")

    if len(items) == 0:
        return []

    results: list[R | None] = [None] * len(items)
    cursor = 0
    failed = False

    async def worker() -> None:
        nonlocal cursor, failed
        while not failed:
            index = cursor
            if index >= len(items):
                return
            cursor += 1
            try:
                results[index] = await mapper(items[index], index)
            except BaseException:
                failed = True
                raise

    # Fractional concurrency floors, but never below one worker
    worker_count = min(max(1, math.floor(concurrency)), len(items))
    tasks = [asyncio.create_task(worker()) for _ in range(worker_count)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        # First failure (or caller cancellation) stops the siblings mid-flight
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return results  # type: ignore[return-value]
