"""
Bounded Executor

Runs a per-record coroutine over a collection with at most N records in
flight. A failing record is logged and counted; it never stops the pass.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class ExecutorStats:
    processed: int = 0
    errors: int = 0


class BoundedExecutor:
    """
    Semaphore-bounded fan-out for independent records.

    Example:
        executor = BoundedExecutor(concurrency=8)
        stats = await executor.map(orders, compute_order)
    """

    def __init__(self, concurrency: int = 8, progress_every: int = 100, label: str = "records"):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.progress_every = progress_every
        self.label = label

    async def map(
        self,
        items: Sequence[T],
        handler: Callable[[T], Awaitable[Any]],
        key: Optional[Callable[[T], Any]] = None,
    ) -> ExecutorStats:
        """
        Apply handler to every item.

        Args:
            items: Records to process
            handler: Coroutine function run once per record
            key: Identifies a record in error logs
        """
        stats = ExecutorStats()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(item: T) -> None:
            async with semaphore:
                try:
                    await handler(item)
                except Exception as exc:
                    stats.errors += 1
                    logger.warning(
                        "Record failed",
                        label=self.label,
                        record=key(item) if key else None,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    return
                stats.processed += 1
                if stats.processed % self.progress_every == 0:
                    logger.info("Progress", label=self.label, processed=stats.processed, total=len(items))

        await asyncio.gather(*(run_one(item) for item in items))
        return stats
