"""
Bounded-concurrency job execution.

A fixed pool of workers pulls jobs from a shared index until none are left.
A failing job is logged and dropped; it never stops the other workers.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]


async def run_bounded(jobs: Sequence[Job], max_concurrency: int) -> List[T]:
    """
    Run zero-argument async jobs with at most `max_concurrency` in flight.

    Args:
        jobs: Callables returning an awaitable
        max_concurrency: Upper bound on concurrently running jobs (>= 1)

    Returns:
        Results of the jobs that succeeded, in completion order
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

    results: List[T] = []
    next_index = 0

    async def worker(worker_id: int) -> None:
        nonlocal next_index
        while next_index < len(jobs):
            # No await between the check and the claim, so a job is taken once
            current = next_index
            next_index += 1
            try:
                results.append(await jobs[current]())
            except Exception as e:
                logger.debug(f"Worker {worker_id}: job {current} failed: {e!r}")

    width = min(max_concurrency, len(jobs))
    logger.debug(f"Running {len(jobs)} jobs on {width} workers")

    await asyncio.gather(*(worker(i) for i in range(width)))
    return results
