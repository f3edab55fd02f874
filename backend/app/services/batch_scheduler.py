"""
Batch Scheduler

Runs one async operation per item with a fixed concurrency bound:
consecutive chunks of `concurrency` items, all items of a chunk launched
together, and chunk N+1 started only after chunk N has fully settled.
A failing item never cancels its siblings.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from app.core.config import settings
from app.core.exceptions import ItemProcessingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchResult:
    imported: int = 0
    skipped: int = 0
    failures: List[ItemProcessingError] = field(default_factory=list)


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


async def run_batch(
    items: Sequence[T],
    operation: Callable[[T], Awaitable[bool]],
    concurrency: Optional[int] = None,
    source: str = "batch",
    item_id: Callable[[T], Optional[str]] = lambda item: getattr(item, "external_id", None),
) -> BatchResult:
    """
    Drive items through `operation`.

    `operation` returns True when the item was persisted and False when it
    was deliberately passed over (duplicate, not a review). Any exception
    counts the item as skipped.

    Args:
        items: candidate items, already deduplicated
        operation: per-item coroutine function (enrich + persist)
        concurrency: max operations in flight, default INGESTION_CONCURRENCY
        source: tag for log lines
        item_id: how to name an item in failure logs

    Returns:
        BatchResult with imported / skipped counts and the per-item failures
    """
    bound = max(1, concurrency or settings.INGESTION_CONCURRENCY)
    result = BatchResult()

    for index, chunk in enumerate(chunked(items, bound)):
        outcomes = await asyncio.gather(*(operation(item) for item in chunk), return_exceptions=True)

        for item, outcome in zip(chunk, outcomes):
            if outcome is True:
                result.imported += 1
                continue

            result.skipped += 1
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                error = outcome if isinstance(outcome, ItemProcessingError) else ItemProcessingError(
                    "process", item_id(item), outcome
                )
                result.failures.append(error)
                logger.warning(
                    f"[Batch] [{source}] item {error.external_id or '<no id>'} failed at {error.stage}: {error.cause}"
                )

        logger.debug(
            f"[Batch] [{source}] chunk {index + 1} settled "
            f"(imported {result.imported}, skipped {result.skipped})"
        )

    return result
