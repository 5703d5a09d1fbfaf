"""
Source API Contract

The upstream capability the ingestion pipeline consumes: paginated listing
of products, customers and orders, and per-order refund listing. Includes a
fixture-backed client for sandbox runs and tests.
"""

import asyncio
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, runtime_checkable

import structlog

from profit_pipeline.exceptions import SourceError

logger = structlog.get_logger(__name__)

Payload = Dict[str, Any]


class EntityType(str, Enum):
    """Entity types the pipeline mirrors"""
    PRODUCTS = "products"
    CUSTOMERS = "customers"
    ORDERS = "orders"
    LINE_ITEMS = "line_items"
    REFUNDS = "refunds"


@dataclass
class Page:
    """One page of upstream records; next_cursor is None on the last page"""
    items: List[Payload] = field(default_factory=list)
    next_cursor: Optional[str] = None


@runtime_checkable
class SourceClient(Protocol):
    """Upstream API client used by the PaginatedReader"""

    async def list_products(self, tenant: str, page_token: Optional[str] = None) -> Page:
        ...

    async def list_customers(self, tenant: str, page_token: Optional[str] = None) -> Page:
        ...

    async def list_orders(
        self,
        tenant: str,
        page_token: Optional[str] = None,
        status_filter: str = "any",
    ) -> Page:
        ...

    async def list_refunds(self, tenant: str, order_id: str) -> List[Payload]:
        ...


class InMemorySourceClient:
    """
    Source client over in-memory fixture payloads.

    Pages use offset cursors; the last page carries no cursor even when it
    is full. Failures can be injected per entity type and per order for
    refunds, and every call is recorded in ``calls``.

    Example:
        client = InMemorySourceClient(products=[...], orders=[...], page_size=50)
        client.failures[EntityType.ORDERS] = SourceError("boom", status_code=500)
    """

    def __init__(
        self,
        products: Optional[Sequence[Payload]] = None,
        customers: Optional[Sequence[Payload]] = None,
        orders: Optional[Sequence[Payload]] = None,
        refunds: Optional[Dict[str, Sequence[Payload]]] = None,
        page_size: int = 250,
        trailing_empty_page: bool = False,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.data: Dict[EntityType, List[Payload]] = {
            EntityType.PRODUCTS: list(products or []),
            EntityType.CUSTOMERS: list(customers or []),
            EntityType.ORDERS: list(orders or []),
        }
        self.refunds: Dict[str, List[Payload]] = {
            str(order_id): list(items) for order_id, items in (refunds or {}).items()
        }
        self.page_size = page_size
        # Hand out a cursor after the last page and then an empty page
        self.trailing_empty_page = trailing_empty_page

        self.failures: Dict[EntityType, Exception] = {}
        self.refund_failures: Set[str] = set()
        self.delays: Dict[EntityType, float] = {}
        self.calls: List[tuple] = []

    async def list_products(self, tenant: str, page_token: Optional[str] = None) -> Page:
        return await self._page(EntityType.PRODUCTS, tenant, page_token)

    async def list_customers(self, tenant: str, page_token: Optional[str] = None) -> Page:
        return await self._page(EntityType.CUSTOMERS, tenant, page_token)

    async def list_orders(
        self,
        tenant: str,
        page_token: Optional[str] = None,
        status_filter: str = "any",
    ) -> Page:
        return await self._page(EntityType.ORDERS, tenant, page_token)

    async def list_refunds(self, tenant: str, order_id: str) -> List[Payload]:
        self.calls.append((EntityType.REFUNDS, order_id))
        await self._simulate(EntityType.REFUNDS)
        if str(order_id) in self.refund_failures:
            raise SourceError(f"Refunds unavailable for order {order_id}", status_code=404)
        return copy.deepcopy(self.refunds.get(str(order_id), []))

    async def aclose(self) -> None:
        return None

    async def _simulate(self, entity_type: EntityType) -> None:
        delay = self.delays.get(entity_type)
        if delay:
            await asyncio.sleep(delay)
        failure = self.failures.get(entity_type)
        if failure is not None:
            raise failure

    async def _page(self, entity_type: EntityType, tenant: str, page_token: Optional[str]) -> Page:
        self.calls.append((entity_type, page_token))
        await self._simulate(entity_type)

        offset = int(page_token) if page_token else 0
        items = self.data[entity_type]
        end = offset + self.page_size
        page_items = copy.deepcopy(items[offset:end])

        if end < len(items):
            next_cursor: Optional[str] = str(end)
        elif self.trailing_empty_page and page_items:
            next_cursor = str(end)
        else:
            next_cursor = None
        return Page(items=page_items, next_cursor=next_cursor)
