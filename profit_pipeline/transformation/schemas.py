"""
Upstream Payload Schemas

Pydantic models of the Shopify Admin REST JSON shapes. Validating a payload
against these is the explicit schema step at the ingestion boundary; fields
the pipeline does not mirror are ignored.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, List, Optional, Union

from pydantic import AfterValidator, AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from profit_pipeline.transformation.money import to_decimal


def _coerce_id(value: Any) -> str:
    if isinstance(value, bool) or value is None:
        raise ValueError("id is required")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValueError(f"invalid id {value!r}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


ShopifyId = Annotated[str, BeforeValidator(_coerce_id)]
Amount = Annotated[Decimal, BeforeValidator(to_decimal)]
NonNegativeAmount = Annotated[Decimal, BeforeValidator(to_decimal), Field(ge=0)]
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
Tags = Union[str, List[str], None]


class ShopifyModel(BaseModel):
    """Base for upstream shapes: unknown keys are dropped"""

    model_config = ConfigDict(extra="ignore")


# =============================================================================
# PRODUCTS
# =============================================================================

class ShopifyImage(ShopifyModel):
    src: Optional[str] = None
    alt: Optional[str] = None
    position: Optional[int] = None


class ShopifyVariant(ShopifyModel):
    id: ShopifyId
    title: Optional[str] = None
    price: NonNegativeAmount = Decimal("0")
    compare_at_price: Optional[Amount] = None
    sku: Optional[str] = None
    inventory_quantity: Optional[int] = None
    inventory_policy: Optional[str] = None
    inventory_management: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    requires_shipping: Optional[bool] = None
    taxable: Optional[bool] = None
    # Inventory item cost, when the payload was enriched with it
    cost: NonNegativeAmount = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("cost", "unit_cost"),
    )


class ShopifyProduct(ShopifyModel):
    id: ShopifyId
    title: str = Field(min_length=1)
    handle: Optional[str] = None
    body_html: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("body_html", "description"),
    )
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: Tags = None
    status: Optional[str] = None
    images: Optional[List[ShopifyImage]] = None
    variants: Optional[List[ShopifyVariant]] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None
    published_at: Optional[UtcDatetime] = None


# =============================================================================
# CUSTOMERS
# =============================================================================

class ShopifyAddress(ShopifyModel):
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None
    country_code: Optional[str] = None
    province_code: Optional[str] = None


class ShopifyCustomer(ShopifyModel):
    id: ShopifyId
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    default_address: Optional[ShopifyAddress] = None
    state: Optional[str] = None
    accepts_marketing: Optional[bool] = None
    orders_count: Optional[int] = Field(default=None, ge=0)
    total_spent: NonNegativeAmount = Decimal("0")
    tags: Tags = None
    note: Optional[str] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


# =============================================================================
# ORDERS AND LINE ITEMS
# =============================================================================

class ShopifyCustomerRef(ShopifyModel):
    id: Optional[ShopifyId] = None
    email: Optional[str] = None


class ShopifyProperty(ShopifyModel):
    name: Optional[str] = None
    value: Optional[Any] = None


class ShopifyLineItem(ShopifyModel):
    id: ShopifyId
    product_id: Optional[ShopifyId] = None
    variant_id: Optional[ShopifyId] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    price: NonNegativeAmount = Decimal("0")
    total_discount: NonNegativeAmount = Decimal("0")
    grams: Optional[int] = None
    requires_shipping: Optional[bool] = None
    taxable: Optional[bool] = None
    fulfillment_status: Optional[str] = None
    fulfillment_service: Optional[str] = None
    properties: Optional[List[ShopifyProperty]] = None


class ShopifyOrder(ShopifyModel):
    id: ShopifyId
    order_number: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    total_price: NonNegativeAmount = Decimal("0")
    subtotal_price: NonNegativeAmount = Decimal("0")
    total_tax: NonNegativeAmount = Decimal("0")
    total_discounts: NonNegativeAmount = Decimal("0")
    currency: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    customer: Optional[ShopifyCustomerRef] = None
    line_items: Optional[List[ShopifyLineItem]] = None
    tags: Tags = None
    note: Optional[str] = None
    source_url: Optional[str] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None
    processed_at: Optional[UtcDatetime] = None


# =============================================================================
# REFUNDS
# =============================================================================

class ShopifyRefundedLineItem(ShopifyModel):
    id: Optional[ShopifyId] = None
    product_id: Optional[ShopifyId] = None
    variant_id: Optional[ShopifyId] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    price: Amount = Decimal("0")


class ShopifyRefundLineItem(ShopifyModel):
    line_item_id: Optional[ShopifyId] = None
    quantity: int = Field(default=0, ge=0)
    restock_type: Optional[str] = None
    subtotal: Amount = Decimal("0")
    total_tax: Amount = Decimal("0")
    line_item: Optional[ShopifyRefundedLineItem] = None


class ShopifyTransaction(ShopifyModel):
    id: Optional[ShopifyId] = None
    amount: Amount = Decimal("0")
    currency: Optional[str] = None
    kind: Optional[str] = None
    gateway: Optional[str] = None
    status: Optional[str] = None
    processed_at: Optional[UtcDatetime] = None


class ShopifyRefund(ShopifyModel):
    id: ShopifyId
    order_id: Optional[ShopifyId] = None
    note: Optional[str] = None
    refund_line_items: Optional[List[ShopifyRefundLineItem]] = None
    transactions: Optional[List[ShopifyTransaction]] = None
    created_at: Optional[UtcDatetime] = None
    processed_at: Optional[UtcDatetime] = None
