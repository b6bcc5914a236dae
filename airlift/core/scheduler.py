"""Bounded-concurrency runner for independent units of work.

``run_bounded`` starts at most ``concurrency`` lanes.  Each lane pulls the
next unstarted item from a shared iterator, so dispatch is FIFO as slots
free up, and writes its result into the slot matching the item's input
position.  A worker exception is captured per item; it never stops the
other lanes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class WorkerFailure(Generic[T]):
    """Default error-shaped result for a worker that raised."""

    item: T
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
    *,
    on_error: Callable[[T, Exception], Any] | None = None,
) -> list[Any]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    Parameters
    ----------
    items:
        Units of work.  Each is processed exactly once.
    worker:
        Coroutine function applied to each item.
    concurrency:
        Maximum number of workers executing at the same time.
    on_error:
        Maps ``(item, exception)`` to the result stored for that item.
        Defaults to building a :class:`WorkerFailure`.

    Returns
    -------
    list
        One result per item, in input order.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")
    if not items:
        return []

    results: list[Any] = [None] * len(items)
    pending = iter(enumerate(items))

    async def lane() -> None:
        for index, item in pending:
            try:
                results[index] = await worker(item)
            except Exception as exc:
                logger.debug("Worker failed on item %d: %s", index, exc, exc_info=True)
                if on_error is not None:
                    results[index] = on_error(item, exc)
                else:
                    results[index] = WorkerFailure(item=item, error=exc)

    lanes = min(concurrency, len(items))
    await asyncio.gather(*(lane() for _ in range(lanes)))
    return results
