"""
Bounded fan-out over consecutive chunks.

Within a chunk every item runs concurrently under a semaphore sized to the
chunk; the next chunk starts only after the whole chunk has settled, with a
fixed pause in between to stay under upstream rate limits.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


def chunked(items: Sequence[ItemT], size: int) -> list[list[ItemT]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def run_in_chunks(
    items: Sequence[ItemT],
    worker: Callable[[ItemT], Awaitable[ResultT]],
    chunk_size: int,
    delay_seconds: float = 0.0,
) -> list[ResultT | BaseException]:
    """
    Run worker over items, at most chunk_size at a time.

    Returns one outcome per item in input order: the worker's return value,
    or the exception it raised. Exceptions never stop the run.
    """
    semaphore = asyncio.Semaphore(chunk_size)

    async def bounded(item: ItemT) -> ResultT:
        async with semaphore:
            return await worker(item)

    chunks = chunked(items, chunk_size)
    outcomes: list[ResultT | BaseException] = []

    for index, chunk in enumerate(chunks):
        logger.debug("Processing chunk", chunk=index + 1, chunks=len(chunks), size=len(chunk))
        outcomes.extend(await asyncio.gather(*(bounded(item) for item in chunk), return_exceptions=True))

        if delay_seconds > 0 and index < len(chunks) - 1:
            await asyncio.sleep(delay_seconds)

    return outcomes
