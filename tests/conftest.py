"""
Test Suite Configuration
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from profit_pipeline.config.settings import PipelineSettings, Settings, ShopifySettings
from profit_pipeline.database.connection import create_engine_for_url, create_session_factory, create_tables
from profit_pipeline.database.store import SQLAlchemyTenantStore
from profit_pipeline.ingestion.source import InMemorySourceClient
from profit_pipeline.lifecycle.installation import TenantService
from profit_pipeline.security import CredentialCipher

SHOP = "demo.myshopify.com"
ORDER_DATE = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

def build_variant(variant_id: int, price: str = "50.00", cost: Optional[str] = "20.00", **extra) -> Dict[str, Any]:
    variant = {
        "id": variant_id,
        "title": f"Variant {variant_id}",
        "price": price,
        "sku": f"SKU-{variant_id}",
        "inventory_quantity": 10,
        "cost": cost,
    }
    variant.update(extra)
    return variant


def build_product(product_id: int = 1, variants: Optional[List[Dict[str, Any]]] = None, **extra) -> Dict[str, Any]:
    product = {
        "id": product_id,
        "title": f"Product {product_id}",
        "handle": f"product-{product_id}",
        "body_html": "<p>Organic cotton</p>",
        "vendor": "Acme",
        "product_type": "Apparel",
        "tags": "summer, cotton",
        "status": "active",
        "images": [{"src": "https://cdn.example.com/p.png", "alt": "front", "position": 1}],
        "variants": variants if variants is not None else [build_variant(product_id * 10 + 1)],
        "created_at": "2024-06-01T12:00:00Z",
        "updated_at": "2024-06-02T12:00:00Z",
    }
    product.update(extra)
    return product


def build_customer(customer_id: int = 100, **extra) -> Dict[str, Any]:
    customer = {
        "id": customer_id,
        "email": f"customer{customer_id}@example.com",
        "first_name": "Jane",
        "last_name": "Doe",
        "default_address": {"city": "Austin", "country": "United States", "country_code": "US"},
        "state": "enabled",
        "accepts_marketing": True,
        "orders_count": 3,
        "total_spent": "250.00",
        "tags": "vip",
        "created_at": "2024-01-01T00:00:00Z",
    }
    customer.update(extra)
    return customer


def build_line_item(
    line_item_id: int,
    product_id: int = 1,
    variant_id: int = 11,
    quantity: int = 2,
    price: str = "50.00",
    total_discount: str = "0.00",
    **extra,
) -> Dict[str, Any]:
    item = {
        "id": line_item_id,
        "product_id": product_id,
        "variant_id": variant_id,
        "title": f"Product {product_id}",
        "sku": f"SKU-{variant_id}",
        "quantity": quantity,
        "price": price,
        "total_discount": total_discount,
        "fulfillment_status": None,
    }
    item.update(extra)
    return item


def build_order(
    order_id: int = 500,
    line_items: Optional[List[Dict[str, Any]]] = None,
    total_price: str = "100.00",
    customer_id: Optional[int] = 100,
    created_at: datetime = ORDER_DATE,
    **extra,
) -> Dict[str, Any]:
    order = {
        "id": order_id,
        "order_number": order_id,
        "name": f"#{order_id}",
        "total_price": total_price,
        "subtotal_price": total_price,
        "total_tax": "0.00",
        "total_discounts": "0.00",
        "currency": "USD",
        "financial_status": "paid",
        "customer": {"id": customer_id, "email": f"customer{customer_id}@example.com"} if customer_id else None,
        "line_items": line_items if line_items is not None else [build_line_item(order_id * 10 + 1)],
        "created_at": created_at.isoformat(),
        "updated_at": created_at.isoformat(),
    }
    order.update(extra)
    return order


def build_refund(
    refund_id: int,
    order_id: int,
    amount: str = "10.00",
    line_item_id: Optional[int] = None,
    quantity: int = 1,
    restock_type: str = "no_restock",
    **extra,
) -> Dict[str, Any]:
    refund = {
        "id": refund_id,
        "order_id": order_id,
        "note": "damaged",
        "refund_line_items": [
            {
                "id": refund_id * 10,
                "line_item_id": line_item_id,
                "quantity": quantity,
                "restock_type": restock_type,
                "subtotal": amount,
                "total_tax": "0.00",
            }
        ] if line_item_id is not None else [],
        "transactions": [
            {"id": refund_id * 100, "amount": amount, "kind": "refund", "status": "success"},
        ],
        "created_at": (ORDER_DATE + timedelta(days=3)).isoformat(),
    }
    refund.update(extra)
    return refund


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def payloads() -> SimpleNamespace:
    """Shopify payload builders"""
    return SimpleNamespace(
        variant=build_variant,
        product=build_product,
        customer=build_customer,
        line_item=build_line_item,
        order=build_order,
        refund=build_refund,
    )


@pytest.fixture
def shop() -> str:
    return SHOP


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no waiting between retries or requests"""
    return Settings(
        shopify=ShopifySettings(
            page_size=2,
            page_timeout_seconds=5,
            max_retries=2,
            retry_backoff_seconds=0,
            retry_backoff_max_seconds=0,
            rate_limit_delay_seconds=0,
        ),
        pipeline=PipelineSettings(
            ingestion_deadline_seconds=30,
            metrics_concurrency=4,
        ),
    )


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite engine; every session gets its own connection"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(test_engine) -> SQLAlchemyTenantStore:
    return SQLAlchemyTenantStore(create_session_factory(test_engine))


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(CredentialCipher.generate_key())


@pytest.fixture
def tenant_service(store, cipher) -> TenantService:
    return TenantService(store, cipher)


@pytest.fixture
async def installed_shop(tenant_service) -> str:
    """A shop with an active installation"""
    await tenant_service.register_installation(SHOP, "shpat_test_token", scope="read_products,read_orders")
    return SHOP


@pytest.fixture
def source_client() -> InMemorySourceClient:
    """Two products, one customer, three orders; one order has a refund"""
    products = [
        build_product(1, [build_variant(11, price="50.00", cost="20.00")]),
        build_product(2, [build_variant(21, price="30.00", cost="12.00"), build_variant(22, price="35.00", cost=None)]),
    ]
    customers = [build_customer(100)]
    orders = [
        build_order(500, [build_line_item(5001, 1, 11, quantity=2, price="50.00")], total_price="100.00"),
        build_order(501, [build_line_item(5011, 2, 21, quantity=1, price="30.00")], total_price="30.00"),
        build_order(502, [build_line_item(5021, 1, 11, quantity=1, price="50.00")], total_price="50.00", customer_id=None),
    ]
    refunds = {"500": [build_refund(900, 500, amount="10.00", line_item_id=5001, quantity=1)]}
    return InMemorySourceClient(
        products=products,
        customers=customers,
        orders=orders,
        refunds=refunds,
        page_size=2,
    )
