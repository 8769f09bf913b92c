"""Bounded-concurrency batch execution that preserves input order."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_batch(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
    *,
    timeout: float | None = None,
) -> list[R]:
    """Run ``worker`` over ``items`` in chunks of ``concurrency``.

    Each chunk runs concurrently and must settle before the next one
    starts, so at most ``concurrency`` calls are in flight. ``results[i]``
    is the outcome for ``items[i]`` whatever order the calls finish in.

    With ``timeout`` (seconds for the whole batch), chunks that have not
    finished by the deadline are abandoned and the results of completed
    chunks are returned.
    """
    if concurrency < 1:
        msg = f"concurrency must be a positive integer, got {concurrency}"
        raise ValueError(msg)

    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    results: list[R] = []

    for start in range(0, len(items), concurrency):
        chunk = items[start : start + concurrency]

        if deadline is None:
            results.extend(await asyncio.gather(*(worker(item) for item in chunk)))
            continue

        remaining = deadline - loop.time()
        if remaining <= 0:
            _log_abandoned(len(items) - start, len(items))
            break
        try:
            chunk_results = await asyncio.wait_for(
                asyncio.gather(*(worker(item) for item in chunk)), remaining
            )
        except TimeoutError:
            _log_abandoned(len(items) - start, len(items))
            break
        results.extend(chunk_results)

    return results


def _log_abandoned(abandoned: int, total: int) -> None:
    logger.warning("Batch timed out, abandoned %d of %d items", abandoned, total)
