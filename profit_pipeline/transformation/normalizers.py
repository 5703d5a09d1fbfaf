"""
Entity Normalizer

Maps Shopify payloads to canonical records. Every payload is validated
against its upstream schema first; the result is either a valid canonical
record or the validation errors for that one record. No I/O happens here.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Generic, List, Mapping, Optional, Tuple, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from profit_pipeline.exceptions import NormalizationError
from profit_pipeline.transformation.models import (
    Customer,
    CustomerAddress,
    LineItem,
    LineItemProperty,
    Order,
    Product,
    ProductImage,
    Refund,
    RefundedLineItem,
    RefundLineItem,
    RefundTransaction,
    Variant,
)
from profit_pipeline.transformation.money import ZERO, split_tags
from profit_pipeline.transformation.schemas import (
    ShopifyCustomer,
    ShopifyLineItem,
    ShopifyOrder,
    ShopifyProduct,
    ShopifyRefund,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")
S = TypeVar("S", bound=BaseModel)


@dataclass(frozen=True)
class NormalizationResult(Generic[T]):
    """Either a valid canonical record or the reasons the payload was rejected"""

    entity: str
    record: Optional[T] = None
    upstream_id: Optional[str] = None
    errors: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def valid(cls, entity: str, record: T, upstream_id: str) -> "NormalizationResult[T]":
        return cls(entity=entity, record=record, upstream_id=upstream_id)

    @classmethod
    def invalid(cls, entity: str, upstream_id: Optional[str], errors: List[str]) -> "NormalizationResult[T]":
        return cls(entity=entity, upstream_id=upstream_id, errors=tuple(errors))

    @property
    def is_valid(self) -> bool:
        return self.record is not None

    def unwrap(self) -> T:
        """
        Return the record.

        Raises:
            NormalizationError: If the payload was invalid
        """
        if self.record is None:
            raise NormalizationError(self.entity, self.upstream_id, list(self.errors))
        return self.record


@dataclass(frozen=True)
class NormalizedOrder:
    """An order together with the line items embedded in its payload"""

    order: Order
    line_items: List[LineItem]


def _format_errors(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
        for error in exc.errors()
    ]


def _payload_id(payload: Any) -> Optional[str]:
    if isinstance(payload, Mapping) and payload.get("id") is not None:
        return str(payload["id"])
    return None


class EntityNormalizer:
    """
    Pure upstream-to-canonical mapping for one tenant.

    Example:
        normalizer = EntityNormalizer("demo.myshopify.com")
        result = normalizer.normalize_product(payload)
        if result.is_valid:
            await writer.upsert(EntityType.PRODUCTS, result.upstream_id, result.record)
    """

    def __init__(self, tenant: str):
        self.tenant = tenant

    def _validate(self, entity: str, schema: Type[S], payload: Any) -> Tuple[Optional[S], List[str]]:
        if not isinstance(payload, Mapping):
            return None, [f"<root>: expected an object, got {type(payload).__name__}"]
        try:
            return schema.model_validate(payload), []
        except ValidationError as exc:
            errors = _format_errors(exc)
            logger.warning(
                "Rejected upstream record",
                tenant=self.tenant,
                entity=entity,
                upstream_id=_payload_id(payload),
                errors=errors,
            )
            return None, errors

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def normalize_product(self, payload: Any) -> NormalizationResult[Product]:
        source, errors = self._validate("product", ShopifyProduct, payload)
        if source is None:
            return NormalizationResult.invalid("product", _payload_id(payload), errors)

        variants = [
            Variant(
                upstream_id=variant.id,
                title=variant.title,
                price=variant.price,
                compare_at_price=variant.compare_at_price,
                sku=variant.sku,
                inventory_quantity=variant.inventory_quantity or 0,
                inventory_policy=variant.inventory_policy,
                inventory_management=variant.inventory_management,
                weight=variant.weight,
                weight_unit=variant.weight_unit,
                requires_shipping=variant.requires_shipping if variant.requires_shipping is not None else True,
                taxable=variant.taxable if variant.taxable is not None else True,
                unit_cost=variant.cost,
            )
            for variant in source.variants or []
        ]
        images = [
            ProductImage(src=image.src, alt=image.alt, position=image.position)
            for image in source.images or []
        ]

        product = Product(
            upstream_id=source.id,
            title=source.title,
            handle=source.handle,
            description=source.body_html,
            vendor=source.vendor,
            product_type=source.product_type,
            tags=split_tags(source.tags),
            status=source.status or "active",
            images=images,
            variants=variants,
            seo_title=source.seo_title,
            seo_description=source.seo_description,
            created_at=source.created_at,
            updated_at=source.updated_at,
            published_at=source.published_at,
        )
        return NormalizationResult.valid("product", product, source.id)

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    def normalize_customer(self, payload: Any) -> NormalizationResult[Customer]:
        source, errors = self._validate("customer", ShopifyCustomer, payload)
        if source is None:
            return NormalizationResult.invalid("customer", _payload_id(payload), errors)

        address = None
        if source.default_address is not None:
            address = CustomerAddress(**source.default_address.model_dump())

        customer = Customer(
            upstream_id=source.id,
            email=source.email,
            first_name=source.first_name,
            last_name=source.last_name,
            phone=source.phone,
            default_address=address,
            state=source.state,
            accepts_marketing=bool(source.accepts_marketing),
            reported_orders_count=source.orders_count or 0,
            reported_total_spent=source.total_spent,
            tags=split_tags(source.tags),
            note=source.note,
            created_at=source.created_at,
            updated_at=source.updated_at,
        )
        return NormalizationResult.valid("customer", customer, source.id)

    # =========================================================================
    # ORDERS
    # =========================================================================

    def normalize_order(self, payload: Any) -> NormalizationResult[NormalizedOrder]:
        """Normalize an order and the line items embedded in it."""
        source, errors = self._validate("order", ShopifyOrder, payload)
        if source is None:
            return NormalizationResult.invalid("order", _payload_id(payload), errors)

        customer = source.customer
        order = Order(
            upstream_id=source.id,
            order_number=source.order_number,
            name=source.name,
            email=source.email,
            total_price=source.total_price,
            subtotal_price=source.subtotal_price,
            total_tax=source.total_tax,
            total_discounts=source.total_discounts,
            currency=source.currency,
            financial_status=source.financial_status,
            fulfillment_status=source.fulfillment_status,
            customer_upstream_id=customer.id if customer else None,
            customer_email=customer.email if customer else None,
            tags=split_tags(source.tags),
            note=source.note,
            source_url=source.source_url,
            created_at=source.created_at,
            updated_at=source.updated_at,
            processed_at=source.processed_at,
        )
        line_items = [
            self._line_item(item, source) for item in source.line_items or []
        ]
        return NormalizationResult.valid("order", NormalizedOrder(order, line_items), source.id)

    @staticmethod
    def _line_item(item: ShopifyLineItem, order: ShopifyOrder) -> LineItem:
        return LineItem(
            upstream_id=item.id,
            order_upstream_id=order.id,
            product_upstream_id=item.product_id,
            variant_upstream_id=item.variant_id,
            title=item.title,
            variant_title=item.variant_title,
            sku=item.sku,
            vendor=item.vendor,
            product_type=item.product_type,
            quantity=item.quantity,
            price=item.price,
            total_discount=item.total_discount,
            grams=item.grams or 0,
            requires_shipping=item.requires_shipping if item.requires_shipping is not None else True,
            taxable=item.taxable if item.taxable is not None else True,
            fulfillment_status=item.fulfillment_status or "unfulfilled",
            fulfillment_service=item.fulfillment_service,
            properties=[
                LineItemProperty(name=prop.name, value=prop.value)
                for prop in item.properties or []
            ],
            order_created_at=order.created_at,
        )

    # =========================================================================
    # REFUNDS
    # =========================================================================

    def normalize_refund(self, payload: Any, order_id: str) -> NormalizationResult[Refund]:
        """
        Normalize a refund of the given order.

        total_refund_amount sums successful transactions only;
        total_tax_refunded sums the tax of every refunded line item.
        """
        source, errors = self._validate("refund", ShopifyRefund, payload)
        if source is None:
            return NormalizationResult.invalid("refund", _payload_id(payload), errors)

        refund_line_items = []
        for item in source.refund_line_items or []:
            refunded = None
            if item.line_item is not None:
                refunded = RefundedLineItem(
                    upstream_id=item.line_item.id,
                    product_upstream_id=item.line_item.product_id,
                    variant_upstream_id=item.line_item.variant_id,
                    title=item.line_item.title,
                    variant_title=item.line_item.variant_title,
                    sku=item.line_item.sku,
                    price=item.line_item.price,
                )
            refund_line_items.append(
                RefundLineItem(
                    line_item_upstream_id=item.line_item_id or (refunded.upstream_id if refunded else None),
                    quantity=item.quantity,
                    restock_type=item.restock_type or "no_restock",
                    subtotal=item.subtotal,
                    total_tax=item.total_tax,
                    line_item=refunded,
                )
            )

        transactions = [
            RefundTransaction(
                upstream_id=txn.id,
                amount=txn.amount,
                currency=txn.currency,
                kind=txn.kind or "refund",
                gateway=txn.gateway,
                status=txn.status or "success",
                processed_at=txn.processed_at,
            )
            for txn in source.transactions or []
        ]

        total_refund_amount = sum(
            (txn.amount for txn in transactions if txn.status == "success"), ZERO
        )
        total_tax_refunded = sum((item.total_tax for item in refund_line_items), ZERO)

        refund = Refund(
            upstream_id=source.id,
            order_upstream_id=str(order_id),
            note=source.note,
            refund_line_items=refund_line_items,
            transactions=transactions,
            total_refund_amount=Decimal(total_refund_amount),
            total_tax_refunded=Decimal(total_tax_refunded),
            created_at=source.created_at,
            processed_at=source.processed_at,
        )
        return NormalizationResult.valid("refund", refund, source.id)
