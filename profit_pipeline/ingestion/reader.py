"""
Paginated Source Reader

Wraps a SourceClient with per-page timeouts, bounded retries with
exponential backoff, and loop-safe pagination.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set, TypeVar

import structlog
from prometheus_client import Counter

from profit_pipeline.exceptions import SourceError, SourceTimeoutError, TransientSourceError
from profit_pipeline.ingestion.source import EntityType, Page, Payload, SourceClient

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PAGE_FETCHES = Counter(
    "profit_pipeline_page_fetches_total",
    "Upstream page fetches",
    ["entity", "status"],
)


def calculate_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-indexed): base * 2^(attempt-1), capped"""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


class PaginatedReader:
    """
    Reads one tenant's entity pages from the upstream API.

    A page is complete when the upstream returns an empty page or no next
    cursor, whichever comes first; a full final page without a cursor ends
    the iteration like any other last page.

    Example:
        reader = PaginatedReader(client, "demo.myshopify.com")
        async for page in reader.iter_pages(EntityType.PRODUCTS):
            ...
    """

    def __init__(
        self,
        source: SourceClient,
        tenant: str,
        page_timeout: float = 60.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
    ):
        self.source = source
        self.tenant = tenant
        self.page_timeout = page_timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds

    async def fetch_page(self, entity_type: EntityType, cursor: Optional[str] = None) -> Page:
        """
        Fetch one page of records.

        Raises:
            SourceError: Non-retryable upstream error, or retries exhausted
        """
        return await self._with_retries(
            entity_type,
            lambda: self._list(entity_type, cursor),
            cursor=cursor,
        )

    async def iter_pages(self, entity_type: EntityType) -> AsyncIterator[Page]:
        """Yield every non-empty page of an entity type in upstream order."""
        cursor: Optional[str] = None
        seen: Set[str] = set()
        page_number = 0

        while True:
            page = await self.fetch_page(entity_type, cursor)
            page_number += 1

            if not page.items:
                logger.debug("Empty page ends pagination", tenant=self.tenant, entity=entity_type.value, page=page_number)
                return

            logger.debug(
                "Fetched page",
                tenant=self.tenant,
                entity=entity_type.value,
                page=page_number,
                records=len(page.items),
            )
            yield page

            if page.next_cursor is None:
                return
            if page.next_cursor in seen:
                logger.warning(
                    "Upstream repeated a page cursor, stopping pagination",
                    tenant=self.tenant,
                    entity=entity_type.value,
                    page=page_number,
                )
                return
            seen.add(page.next_cursor)
            cursor = page.next_cursor

    async def fetch_refunds(self, order_id: str) -> List[Payload]:
        """Fetch all refunds of one order (a single, unpaginated call)."""
        return await self._with_retries(
            EntityType.REFUNDS,
            lambda: self.source.list_refunds(self.tenant, order_id),
            order_id=order_id,
        )

    def _list(self, entity_type: EntityType, cursor: Optional[str]) -> Awaitable[Page]:
        if entity_type is EntityType.PRODUCTS:
            return self.source.list_products(self.tenant, cursor)
        if entity_type is EntityType.CUSTOMERS:
            return self.source.list_customers(self.tenant, cursor)
        if entity_type is EntityType.ORDERS:
            return self.source.list_orders(self.tenant, cursor, status_filter="any")
        raise ValueError(f"{entity_type.value} has no paginated listing")

    async def _with_retries(self, entity_type: EntityType, call: Callable[[], Awaitable[T]], **context) -> T:
        attempt = 0
        while True:
            try:
                result = await asyncio.wait_for(call(), timeout=self.page_timeout)
                PAGE_FETCHES.labels(entity=entity_type.value, status="success").inc()
                return result
            except asyncio.TimeoutError:
                error: TransientSourceError = SourceTimeoutError(
                    f"{entity_type.value} fetch exceeded {self.page_timeout}s"
                )
            except TransientSourceError as exc:
                error = exc
            except SourceError:
                PAGE_FETCHES.labels(entity=entity_type.value, status="failed").inc()
                raise

            attempt += 1
            if attempt > self.max_retries:
                PAGE_FETCHES.labels(entity=entity_type.value, status="failed").inc()
                logger.error(
                    "Upstream fetch failed after retries",
                    tenant=self.tenant,
                    entity=entity_type.value,
                    attempts=attempt,
                    error=str(error),
                    **context,
                )
                raise error

            delay = error.retry_after
            if delay is None:
                delay = calculate_backoff(attempt, self.backoff_seconds, self.backoff_max_seconds)
            PAGE_FETCHES.labels(entity=entity_type.value, status="retried").inc()
            logger.warning(
                "Transient upstream error, retrying",
                tenant=self.tenant,
                entity=entity_type.value,
                attempt=attempt,
                delay=delay,
                error=str(error),
                **context,
            )
            await asyncio.sleep(delay)
