"""
Database Models - Tenant Mirror Schema

One table per mirrored Shopify collection plus the tenant metadata table.

Mirrored Tables (natural key: shop + upstream_id):
- ProductRecord: Products with embedded variants
- CustomerRecord: Customers with LTV and segment
- OrderRecord: Orders with profit metrics
- LineItemRecord: Order line items, linked by upstream order id
- RefundRecord: Refunds, linked by upstream order id

Tenant Table:
- TenantRecord: Encrypted access token, install state, sync and metrics flags

Each mirrored table carries two disjoint column groups: raw-mirror columns,
written only by ingestion, and derived columns, written only by the metrics
jobs.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Portable column types
PrimaryKey = BigInteger().with_variant(Integer, "sqlite")
Money = Numeric(14, 2)
Percent = Numeric(9, 2)
JSONDocument = JSON().with_variant(JSONB, "postgresql")


# =============================================================================
# ENUMERATIONS
# =============================================================================

class CustomerSegment(str, Enum):
    """Customer segment enumeration"""
    NEW = "new"
    ACTIVE = "active"
    AT_RISK = "at_risk"
    LOST = "lost"
    VIP = "vip"


class SyncStatus(str, Enum):
    """Tenant sync status enumeration"""
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


# =============================================================================
# MIRRORED TABLES
# =============================================================================

class MirroredMixin:
    """Columns shared by every tenant-scoped mirrored table"""

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    upstream_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mirrored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class ProductRecord(MirroredMixin, Base):
    """
    Product Table

    Variants are embedded as a JSON list; each variant carries its raw
    Shopify fields, a unit cost and the derived profit_per_unit/gross_margin.
    """
    __tablename__ = "products"

    # Raw mirror
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    handle: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    vendor: Mapped[Optional[str]] = mapped_column(String(255))
    product_type: Mapped[Optional[str]] = mapped_column(String(255))
    tags: Mapped[List[str]] = mapped_column(JSONDocument, default=list)
    status: Mapped[str] = mapped_column(String(20), default="active")
    images: Mapped[List[Dict[str, Any]]] = mapped_column(JSONDocument, default=list)
    variants: Mapped[List[Dict[str, Any]]] = mapped_column(JSONDocument, default=list)
    seo_title: Mapped[Optional[str]] = mapped_column(String(255))
    seo_description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Derived performance
    total_quantity_sold: Mapped[int] = mapped_column(Integer, default=0)
    total_revenue: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_profit: Mapped[Optional[Decimal]] = mapped_column(Money, default=Decimal("0"))
    profit_margin: Mapped[Optional[Decimal]] = mapped_column(Percent, default=Decimal("0"))
    average_order_value: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    last_sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    average_margin: Mapped[Optional[Decimal]] = mapped_column(Percent)

    __table_args__ = (
        UniqueConstraint("shop", "upstream_id", name="uq_products_shop_upstream"),
        Index("ix_products_shop_status", "shop", "status"),
    )


class CustomerRecord(MirroredMixin, Base):
    """
    Customer Table

    reported_* columns hold Shopify's own counters; orders_count/total_spent
    are recomputed from the mirrored orders by the LTV job.
    """
    __tablename__ = "customers"

    # Raw mirror
    email: Mapped[Optional[str]] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(255))
    last_name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    default_address: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument)
    state: Mapped[Optional[str]] = mapped_column(String(20))
    accepts_marketing: Mapped[bool] = mapped_column(Boolean, default=False)
    reported_orders_count: Mapped[int] = mapped_column(Integer, default=0)
    reported_total_spent: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    tags: Mapped[List[str]] = mapped_column(JSONDocument, default=list)
    note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Derived lifetime metrics
    orders_count: Mapped[int] = mapped_column(Integer, default=0)
    total_spent: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    average_order_value: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    lifetime_value: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    predicted_ltv: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    first_order_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_order_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    days_since_first_order: Mapped[Optional[int]] = mapped_column(Integer)
    days_since_last_order: Mapped[Optional[int]] = mapped_column(Integer)
    segment: Mapped[str] = mapped_column(String(20), default=CustomerSegment.NEW.value)

    __table_args__ = (
        UniqueConstraint("shop", "upstream_id", name="uq_customers_shop_upstream"),
        Index("ix_customers_shop_segment", "shop", "segment"),
    )


class OrderRecord(MirroredMixin, Base):
    """
    Order Table

    gross_profit/profit_margin stay null unless every line item of the order
    has a known unit cost (cost_data_available is False).
    """
    __tablename__ = "orders"

    # Raw mirror
    order_number: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    total_price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    subtotal_price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_tax: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_discounts: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    financial_status: Mapped[Optional[str]] = mapped_column(String(30))
    fulfillment_status: Mapped[Optional[str]] = mapped_column(String(30))
    customer_upstream_id: Mapped[Optional[str]] = mapped_column(String(64))
    customer_email: Mapped[Optional[str]] = mapped_column(String(255))
    tags: Mapped[List[str]] = mapped_column(JSONDocument, default=list)
    note: Mapped[Optional[str]] = mapped_column(Text)
    source_url: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Derived profit metrics
    total_cost: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    gross_profit: Mapped[Optional[Decimal]] = mapped_column(Money)
    profit_margin: Mapped[Optional[Decimal]] = mapped_column(Percent)
    refund_impact: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    cost_data_available: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("shop", "upstream_id", name="uq_orders_shop_upstream"),
        Index("ix_orders_shop_customer", "shop", "customer_upstream_id"),
        Index("ix_orders_shop_created", "shop", "created_at"),
    )


class LineItemRecord(MirroredMixin, Base):
    """Line Item Table"""
    __tablename__ = "line_items"

    # Raw mirror
    order_upstream_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_upstream_id: Mapped[Optional[str]] = mapped_column(String(64))
    variant_upstream_id: Mapped[Optional[str]] = mapped_column(String(64))
    title: Mapped[Optional[str]] = mapped_column(String(255))
    variant_title: Mapped[Optional[str]] = mapped_column(String(255))
    sku: Mapped[Optional[str]] = mapped_column(String(255))
    vendor: Mapped[Optional[str]] = mapped_column(String(255))
    product_type: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_discount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    grams: Mapped[int] = mapped_column(Integer, default=0)
    requires_shipping: Mapped[bool] = mapped_column(Boolean, default=True)
    taxable: Mapped[bool] = mapped_column(Boolean, default=True)
    fulfillment_status: Mapped[Optional[str]] = mapped_column(String(30))
    fulfillment_service: Mapped[Optional[str]] = mapped_column(String(100))
    properties: Mapped[List[Dict[str, Any]]] = mapped_column(JSONDocument, default=list)
    order_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Derived profit metrics
    unit_cost: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_cost: Mapped[Optional[Decimal]] = mapped_column(Money)
    gross_profit: Mapped[Optional[Decimal]] = mapped_column(Money)
    profit_margin: Mapped[Optional[Decimal]] = mapped_column(Percent)

    __table_args__ = (
        UniqueConstraint("shop", "upstream_id", name="uq_line_items_shop_upstream"),
        Index("ix_line_items_shop_order", "shop", "order_upstream_id"),
        Index("ix_line_items_shop_product", "shop", "product_upstream_id"),
    )


class RefundRecord(MirroredMixin, Base):
    """Refund Table"""
    __tablename__ = "refunds"

    # Raw mirror
    order_upstream_id: Mapped[str] = mapped_column(String(64), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    refund_line_items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONDocument, default=list)
    transactions: Mapped[List[Dict[str, Any]]] = mapped_column(JSONDocument, default=list)
    total_refund_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_tax_refunded: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Derived profit impact
    cost_recovered: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    profit_impact: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("shop", "upstream_id", name="uq_refunds_shop_upstream"),
        Index("ix_refunds_shop_order", "shop", "order_upstream_id"),
    )


# =============================================================================
# TENANT TABLE
# =============================================================================

class TenantRecord(Base):
    """
    Tenant Table

    One row per shop. Uninstalling flips is_active rather than deleting the
    row; only the cleanup job removes it.
    """
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Installation
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    scope: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_installed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reinstall_count: Mapped[int] = mapped_column(Integer, default=0)
    uninstalled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    uninstall_reason: Mapped[Optional[str]] = mapped_column(String(255))

    # Sync status
    sync_status: Mapped[str] = mapped_column(String(20), default=SyncStatus.PENDING.value)
    sync_state: Mapped[Optional[str]] = mapped_column(String(30))
    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sync_error: Mapped[Optional[str]] = mapped_column(Text)
    sync_stats: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument)

    # Metrics status
    metrics_stale: Mapped[bool] = mapped_column(Boolean, default=False)
    metrics_computed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    metrics_error: Mapped[Optional[str]] = mapped_column(Text)
