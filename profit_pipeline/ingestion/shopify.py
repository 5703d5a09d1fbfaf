"""
Shopify Admin REST Client

httpx-based SourceClient for the Admin REST API. Pagination follows the
cursor in the Link header's rel="next" relation. Failures are classified
into transient (network, 429, 5xx) and permanent errors; retrying is the
PaginatedReader's job.
"""

import asyncio
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import structlog

from profit_pipeline.config.settings import ShopifySettings
from profit_pipeline.exceptions import SourceError, TransientSourceError
from profit_pipeline.ingestion.source import Page, Payload

logger = structlog.get_logger(__name__)

PRODUCT_FIELDS = (
    "id,title,handle,body_html,vendor,product_type,tags,status,images,variants,"
    "seo_title,seo_description,created_at,updated_at,published_at"
)
CUSTOMER_FIELDS = (
    "id,email,first_name,last_name,phone,default_address,state,accepts_marketing,"
    "orders_count,total_spent,tags,note,created_at,updated_at"
)
ORDER_FIELDS = (
    "id,order_number,name,email,total_price,subtotal_price,total_tax,total_discounts,"
    "currency,financial_status,fulfillment_status,customer,line_items,tags,note,"
    "source_url,created_at,updated_at,processed_at"
)

_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


def parse_next_page_info(link_header: Optional[str]) -> Optional[str]:
    """
    Extract the page_info cursor of the rel="next" link.

    Example:
        >>> parse_next_page_info('<https://s.myshopify.com/admin/api/2024-07/products.json?limit=250&page_info=abc>; rel="next"')
        'abc'
    """
    if not link_header:
        return None
    match = _NEXT_LINK.search(link_header)
    if not match:
        return None
    values = parse_qs(urlparse(match.group(1)).query).get("page_info")
    return values[0] if values else None


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class ShopifyRestClient:
    """
    Admin REST API client for one shop.

    Example:
        client = ShopifyRestClient("demo.myshopify.com", access_token)
        page = await client.list_products("demo.myshopify.com")
        await client.aclose()
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        settings: Optional[ShopifySettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.shop = shop
        self.settings = settings or ShopifySettings()
        self.base_url = f"https://{shop}/admin/api/{self.settings.api_version}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout_seconds)
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Accept": "application/json",
        }
        self._last_request_time = 0.0

    async def list_products(self, tenant: str, page_token: Optional[str] = None) -> Page:
        return await self._list("products", PRODUCT_FIELDS, page_token)

    async def list_customers(self, tenant: str, page_token: Optional[str] = None) -> Page:
        return await self._list("customers", CUSTOMER_FIELDS, page_token)

    async def list_orders(
        self,
        tenant: str,
        page_token: Optional[str] = None,
        status_filter: str = "any",
    ) -> Page:
        return await self._list("orders", ORDER_FIELDS, page_token, status=status_filter)

    async def list_refunds(self, tenant: str, order_id: str) -> List[Payload]:
        response = await self._get(f"orders/{order_id}/refunds", {})
        return self._items(response, "refunds")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _list(self, resource: str, fields: str, page_token: Optional[str], **filters: Any) -> Page:
        params: Dict[str, Any] = {"limit": self.settings.page_size, "fields": fields}
        if page_token:
            # Shopify rejects filters alongside page_info; they are baked into the cursor
            params["page_info"] = page_token
        else:
            params.update(filters)

        response = await self._get(resource, params)
        return Page(
            items=self._items(response, resource),
            next_cursor=parse_next_page_info(response.headers.get("Link")),
        )

    @staticmethod
    def _items(response: httpx.Response, key: str) -> List[Payload]:
        try:
            body = response.json()
        except ValueError as exc:
            raise SourceError(f"Invalid JSON in {key} response", status_code=response.status_code) from exc
        items = body.get(key, []) if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise SourceError(f"Unexpected {key} response shape", status_code=response.status_code)
        return items

    async def _rate_limit(self) -> None:
        """Keep at least rate_limit_delay_seconds between requests"""
        elapsed = time.monotonic() - self._last_request_time
        delay = self.settings.rate_limit_delay_seconds
        if elapsed < delay:
            await asyncio.sleep(delay - elapsed)
        self._last_request_time = time.monotonic()

    async def _get(self, resource: str, params: Dict[str, Any]) -> httpx.Response:
        await self._rate_limit()
        url = f"{self.base_url}/{resource}.json"

        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise TransientSourceError(f"Timeout calling {resource}: {exc}") from exc
        except httpx.RequestError as exc:
            raise TransientSourceError(f"Network error calling {resource}: {exc}") from exc

        status = response.status_code
        if status == 429:
            retry_after = _retry_after(response)
            logger.warning("Shopify rate limit hit", shop=self.shop, resource=resource, retry_after=retry_after)
            raise TransientSourceError(
                f"Rate limited on {resource}", status_code=status, retry_after=retry_after
            )
        if status >= 500:
            raise TransientSourceError(f"Shopify returned {status} for {resource}", status_code=status)
        if status >= 400:
            raise SourceError(f"Shopify returned {status} for {resource}: {response.text[:200]}", status_code=status)

        return response
