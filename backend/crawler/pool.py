"""
Bounded fan-out and worker-pool primitives.

bounded_gather runs one task per item behind a fixed-size admission gate.
run_worker_pool drains a shared queue with a fixed number of workers.
Both wait for every task to finish (a join barrier), and both cancel the
remaining tasks if one of them raises, so cancellation reaches every
in-flight operation.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


async def gather_or_cancel(coros: Iterable[Awaitable[T]]) -> List[T]:
    """
    Await all coroutines; if any raises, cancel the rest and re-raise.
    """
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def bounded_gather(
    items: Sequence[T],
    limit: int,
    fn: Callable[[T], Awaitable[R]],
) -> List[R]:
    """
    Run fn over items with at most `limit` calls in flight.

    Args:
        items: Work items
        limit: Admission gate size (>= 1)
        fn: Coroutine function applied to each item

    Returns:
        Results in completion order
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    gate = asyncio.Semaphore(limit)
    results: List[R] = []

    async def run(item: T):
        async with gate:
            result = await fn(item)
        results.append(result)

    await gather_or_cancel(run(item) for item in items)
    return results


async def run_worker_pool(
    items: Sequence[T],
    worker_count: int,
    handler: Callable[[int, T], Awaitable[Optional[R]]],
) -> List[R]:
    """
    Process items with a fixed pool of workers reading a shared queue.

    Each worker takes the next item until the queue is empty. Handlers
    return a result to deliver, or None to drop the item.

    Args:
        items: Work items, queued up front
        worker_count: Number of workers (>= 1)
        handler: Coroutine function called as handler(worker_id, item)

    Returns:
        Delivered results in completion order
    """
    if worker_count < 1:
        raise ValueError("worker_count must be at least 1")
    if not items:
        return []

    jobs: asyncio.Queue = asyncio.Queue(maxsize=len(items))
    for item in items:
        jobs.put_nowait(item)
    results: asyncio.Queue = asyncio.Queue()

    async def worker(worker_id: int):
        while True:
            try:
                item = jobs.get_nowait()
            except asyncio.QueueEmpty:
                return
            result = await handler(worker_id, item)
            if result is not None:
                results.put_nowait(result)

    workers = min(worker_count, len(items))
    logger.info(f"workerpool: starting {workers} workers for {len(items)} jobs")
    await gather_or_cancel(worker(i) for i in range(workers))

    delivered: List[R] = []
    while not results.empty():
        delivered.append(results.get_nowait())
    return delivered
