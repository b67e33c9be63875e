"""Bounded fan-out helper for provider calls.

``throttled_gather`` is a drop-in replacement for ``asyncio.gather`` that
wraps each awaitable in a semaphore acquire/release, so batched embedding
requests never exceed a provider's concurrency allowance.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding how many awaitables run simultaneously.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
