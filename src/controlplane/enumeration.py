"""Cursor-based listing and fan-out of the same listing across partitions.

PAGINATION:
A listing call takes a page token (empty for the first page) and returns the
items of that page plus the next token. Enumeration stops at the first page
without a next token. Items keep page-arrival order. Any page error aborts the
enumeration and propagates.

PARTITIONS:
The same paginated listing is repeated for each partition (e.g. each region).
A failing partition is logged at WARNING and its partial items are dropped;
the remaining partitions still run and the aggregate call does not fail.
Workers hand back their own lists, only the caller concatenates them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = TypeVar("P", bound=Hashable)

# Upper bound on pages fetched for one partition, guards against a provider
# that keeps returning the same token
MAX_PAGES_PER_PARTITION = 10_000

ListPage = Callable[[str], Awaitable[tuple[list[T], str | None]]]


class PaginationError(RuntimeError):
    """Raised when a listing never reaches its last page."""

    pass


@dataclass(frozen=True)
class PartitionFailure(Generic[P]):
    """A partition whose enumeration failed and was skipped."""

    partition: P
    error: Exception


@dataclass
class PartitionedResult(Generic[T, P]):
    """Aggregate of a partitioned enumeration.

    Attributes:
        items: Concatenated items of every partition that succeeded.
        succeeded: Partitions that were enumerated to exhaustion.
        failures: Partitions that failed, with their errors.
    """

    items: list[T] = field(default_factory=list)
    succeeded: list[P] = field(default_factory=list)
    failures: list[PartitionFailure[P]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True if no partition failed."""
        return not self.failures


async def paginate(list_page: ListPage[T]) -> list[T]:
    """Drive a listing call to exhaustion.

    Args:
        list_page: Coroutine function taking a page token and returning
            (items, next_token). An empty or None token ends the listing.

    Returns:
        All items in page-arrival order.

    Raises:
        PaginationError: If MAX_PAGES_PER_PARTITION pages were fetched.
        Exception: Anything list_page() raises, unchanged.
    """
    items: list[T] = []
    token = ""

    for _ in range(MAX_PAGES_PER_PARTITION):
        page, next_token = await list_page(token)
        items.extend(page)
        if not next_token:
            return items
        token = next_token

    raise PaginationError(f"listing did not finish after {MAX_PAGES_PER_PARTITION} pages")


async def enumerate_partitions(
    partitions: Iterable[P],
    list_page_for: Callable[[P], ListPage[T]],
    *,
    max_concurrency: int | None = None,
) -> PartitionedResult[T, P]:
    """Paginate the same listing independently in every partition.

    Args:
        partitions: Partitions to enumerate, e.g. region names.
        list_page_for: Builds the page listing call for one partition.
        max_concurrency: Maximum partitions listed at once, unbounded if None.

    Returns:
        PartitionedResult. Item order within a partition is preserved, order
        across partitions follows the partitions argument.
    """
    if max_concurrency is not None and max_concurrency < 1:
        raise ValueError(f"max_concurrency must be at least 1: {max_concurrency}")

    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def enumerate_one(partition: P) -> tuple[P, list[T], Exception | None]:
        try:
            if semaphore is None:
                items = await paginate(list_page_for(partition))
            else:
                async with semaphore:
                    items = await paginate(list_page_for(partition))
        except Exception as e:
            return partition, [], e
        return partition, items, None

    outcomes = await asyncio.gather(*(enumerate_one(p) for p in partitions))

    result: PartitionedResult[T, P] = PartitionedResult()
    for partition, items, error in outcomes:
        if error is not None:
            logger.warning(
                "Listing failed in partition, skipping it",
                extra={
                    "partition": str(partition),
                    "error": str(error),
                    "error_type": type(error).__name__,
                },
            )
            result.failures.append(PartitionFailure(partition=partition, error=error))
            continue
        result.items.extend(items)
        result.succeeded.append(partition)

    logger.info(
        "Partitioned listing complete",
        extra={
            "partitions_succeeded": len(result.succeeded),
            "partitions_failed": len(result.failures),
            "items_found": len(result.items),
        },
    )
    return result
