"""
Canonical Entity Models

Local shapes of the mirrored entities, produced by the normalizer and
consumed by the upsert writer. They carry raw-mirror fields only; derived
metrics live on the stored rows and are never part of these models.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class CanonicalRecord(BaseModel):
    """Base for canonical records keyed by upstream_id"""

    model_config = ConfigDict(frozen=True)

    # Nested models stored in JSON columns
    embedded_fields: ClassVar[Tuple[str, ...]] = ()

    upstream_id: str

    def raw_fields(self) -> Dict[str, Any]:
        """Raw-mirror columns to write, with embedded models dumped to JSON-safe values"""
        fields = self.model_dump(exclude={"upstream_id", *self.embedded_fields})
        if self.embedded_fields:
            fields.update(self.model_dump(mode="json", include=set(self.embedded_fields)))
        return fields


# =============================================================================
# PRODUCTS
# =============================================================================

class ProductImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    src: Optional[str] = None
    alt: Optional[str] = None
    position: Optional[int] = None


class Variant(BaseModel):
    """Embedded product variant; unit_cost defaults to zero when unknown"""

    model_config = ConfigDict(frozen=True)

    upstream_id: str
    title: Optional[str] = None
    price: Decimal = Decimal("0")
    compare_at_price: Optional[Decimal] = None
    sku: Optional[str] = None
    inventory_quantity: int = 0
    inventory_policy: Optional[str] = None
    inventory_management: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    requires_shipping: bool = True
    taxable: bool = True
    unit_cost: Decimal = Decimal("0")


class Product(CanonicalRecord):
    embedded_fields: ClassVar[Tuple[str, ...]] = ("images", "variants")

    title: str
    handle: Optional[str] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: str = "active"
    images: List[ProductImage] = Field(default_factory=list)
    variants: List[Variant] = Field(default_factory=list)
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None


# =============================================================================
# CUSTOMERS
# =============================================================================

class CustomerAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None
    country_code: Optional[str] = None
    province_code: Optional[str] = None


class Customer(CanonicalRecord):
    embedded_fields: ClassVar[Tuple[str, ...]] = ("default_address",)

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    default_address: Optional[CustomerAddress] = None
    state: Optional[str] = None
    accepts_marketing: bool = False
    reported_orders_count: int = 0
    reported_total_spent: Decimal = Decimal("0")
    tags: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# ORDERS AND LINE ITEMS
# =============================================================================

class LineItemProperty(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    value: Optional[Any] = None


class LineItem(CanonicalRecord):
    embedded_fields: ClassVar[Tuple[str, ...]] = ("properties",)

    order_upstream_id: str
    product_upstream_id: Optional[str] = None
    variant_upstream_id: Optional[str] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    quantity: int = 0
    price: Decimal = Decimal("0")
    total_discount: Decimal = Decimal("0")
    grams: int = 0
    requires_shipping: bool = True
    taxable: bool = True
    fulfillment_status: str = "unfulfilled"
    fulfillment_service: Optional[str] = None
    properties: List[LineItemProperty] = Field(default_factory=list)
    order_created_at: Optional[datetime] = None


class Order(CanonicalRecord):
    order_number: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    total_price: Decimal = Decimal("0")
    subtotal_price: Decimal = Decimal("0")
    total_tax: Decimal = Decimal("0")
    total_discounts: Decimal = Decimal("0")
    currency: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    customer_upstream_id: Optional[str] = None
    customer_email: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    source_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


# =============================================================================
# REFUNDS
# =============================================================================

class RefundedLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    upstream_id: Optional[str] = None
    product_upstream_id: Optional[str] = None
    variant_upstream_id: Optional[str] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    price: Decimal = Decimal("0")


class RefundLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_item_upstream_id: Optional[str] = None
    quantity: int = 0
    restock_type: str = "no_restock"
    subtotal: Decimal = Decimal("0")
    total_tax: Decimal = Decimal("0")
    line_item: Optional[RefundedLineItem] = None


class RefundTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    upstream_id: Optional[str] = None
    amount: Decimal = Decimal("0")
    currency: Optional[str] = None
    kind: str = "refund"
    gateway: Optional[str] = None
    status: str = "success"
    processed_at: Optional[datetime] = None


class Refund(CanonicalRecord):
    embedded_fields: ClassVar[Tuple[str, ...]] = ("refund_line_items", "transactions")

    order_upstream_id: str
    note: Optional[str] = None
    refund_line_items: List[RefundLineItem] = Field(default_factory=list)
    transactions: List[RefundTransaction] = Field(default_factory=list)
    total_refund_amount: Decimal = Decimal("0")
    total_tax_refunded: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
