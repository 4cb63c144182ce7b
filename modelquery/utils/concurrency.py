"""
Bounded fan-out for modelquery.

Related-record loading, resolution, and row processing all fan out over a
list of items with a per-model concurrency cap. Results keep input order.
If any task fails, its unfinished siblings are cancelled and the error
propagates.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    items: Iterable[T],
    func: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """
    Run func over items concurrently with at most `limit` in flight.

    Args:
        items: Inputs to process
        func: Coroutine function applied to each item
        limit: Maximum number of concurrent calls (values < 1 mean 1)

    Returns:
        Results in the same order as items

    Raises:
        Exception: The first failure; remaining tasks are cancelled
    """
    items = list(items)
    if not items:
        return []

    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T) -> R:
        async with semaphore:
            return await func(item)

    tasks = [asyncio.ensure_future(run(item)) for item in items]

    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        # Cancel anything still pending so a failure aborts the whole fan-out
        for task in tasks:
            if not task.done():
                task.cancel()
        raise


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value
