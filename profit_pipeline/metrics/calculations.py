"""
Metric Calculations

Pure Decimal implementations of the profit, refund, customer lifetime and
product performance formulas. Money results are rounded to cents and
percentages to two places.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from profit_pipeline.database.models import CustomerSegment
from profit_pipeline.transformation.money import ZERO, percentage, quantize_money, to_decimal

RESTOCKED_TYPES = frozenset({"return", "cancel"})


@dataclass(frozen=True)
class LineItemProfit:
    revenue: Decimal
    total_cost: Optional[Decimal]
    gross_profit: Optional[Decimal]
    profit_margin: Optional[Decimal]

    @property
    def cost_known(self) -> bool:
        return self.total_cost is not None


@dataclass(frozen=True)
class OrderProfit:
    total_cost: Decimal
    gross_profit: Optional[Decimal]
    profit_margin: Optional[Decimal]
    refund_impact: Decimal
    cost_data_available: bool


@dataclass(frozen=True)
class RefundImpact:
    cost_recovered: Decimal
    profit_impact: Decimal


@dataclass(frozen=True)
class VariantProfit:
    profit_per_unit: Decimal
    gross_margin: Decimal


@dataclass(frozen=True)
class CustomerLifetime:
    orders_count: int
    total_spent: Decimal
    average_order_value: Decimal
    lifetime_value: Decimal
    predicted_ltv: Decimal
    first_order_date: Optional[datetime]
    last_order_date: Optional[datetime]
    days_since_first_order: Optional[int]
    days_since_last_order: Optional[int]


@dataclass(frozen=True)
class ProductPerformance:
    total_quantity_sold: int
    total_revenue: Decimal
    total_profit: Optional[Decimal]
    profit_margin: Optional[Decimal]
    average_order_value: Decimal
    last_sold_at: Optional[datetime]


# =============================================================================
# ORDERS AND LINE ITEMS
# =============================================================================

def line_item_profit(price, quantity: int, total_discount, unit_cost) -> LineItemProfit:
    """
    Profit of one line item.

    revenue = price x qty - discount, cost = unit_cost x qty. A missing or
    zero unit cost means the cost is unknown, and cost, profit and margin
    are None.

    Example:
        >>> line_item_profit(Decimal("50"), 2, Decimal("0"), Decimal("20")).gross_profit
        Decimal('60.00')
    """
    price, total_discount, unit_cost = to_decimal(price), to_decimal(total_discount), to_decimal(unit_cost)
    revenue = price * quantity - total_discount
    if unit_cost <= ZERO:
        return LineItemProfit(revenue=quantize_money(revenue), total_cost=None, gross_profit=None, profit_margin=None)

    total_cost = unit_cost * quantity
    gross_profit = revenue - total_cost
    return LineItemProfit(
        revenue=quantize_money(revenue),
        total_cost=quantize_money(total_cost),
        gross_profit=quantize_money(gross_profit),
        profit_margin=percentage(gross_profit, revenue),
    )


def order_profit(total_price, total_cost, refund_impact=ZERO, cost_data_available: bool = True) -> OrderProfit:
    """
    Profit of an order after refunds.

    Unless every line item has a known cost the profit is unknown, and
    gross_profit and profit_margin are None rather than a guess.
    """
    total_price, total_cost, refund_impact = to_decimal(total_price), to_decimal(total_cost), to_decimal(refund_impact)

    gross_profit: Optional[Decimal] = None
    profit_margin: Optional[Decimal] = None
    if cost_data_available:
        profit = total_price - total_cost - refund_impact
        gross_profit = quantize_money(profit)
        profit_margin = percentage(profit, total_price)

    return OrderProfit(
        total_cost=quantize_money(total_cost),
        gross_profit=gross_profit,
        profit_margin=profit_margin,
        refund_impact=quantize_money(refund_impact),
        cost_data_available=cost_data_available,
    )


# =============================================================================
# REFUNDS
# =============================================================================

def refund_profit_impact(
    total_refund_amount,
    refund_line_items: Sequence[Mapping],
    unit_costs: Mapping[str, Decimal],
    order_total_cost=ZERO,
) -> RefundImpact:
    """
    Profit impact of one refund.

    Restocked units (restock_type return or cancel) recover their cost: the
    mirrored line item's unit cost when known, otherwise the order's total
    cost spread evenly over the refund's line items.
    """
    fallback_unit_cost = ZERO
    if refund_line_items:
        fallback_unit_cost = to_decimal(order_total_cost) / len(refund_line_items)

    cost_recovered = ZERO
    for item in refund_line_items:
        if item.get("restock_type") not in RESTOCKED_TYPES:
            continue
        unit_cost = unit_costs.get(item.get("line_item_upstream_id") or "")
        if unit_cost is None or unit_cost <= ZERO:
            unit_cost = fallback_unit_cost
        cost_recovered += unit_cost * int(item.get("quantity") or 0)

    profit_impact = to_decimal(total_refund_amount) - cost_recovered
    return RefundImpact(
        cost_recovered=quantize_money(cost_recovered),
        profit_impact=quantize_money(profit_impact),
    )


# =============================================================================
# PRODUCTS
# =============================================================================

def variant_profit(price, unit_cost) -> Optional[VariantProfit]:
    """Per-unit profit of a variant; None while its cost is unknown"""
    price, unit_cost = to_decimal(price), to_decimal(unit_cost)
    if unit_cost <= ZERO:
        return None
    profit = price - unit_cost
    return VariantProfit(
        profit_per_unit=quantize_money(profit),
        gross_margin=percentage(profit, price),
    )


def average_margin(margins: Iterable[Decimal]) -> Optional[Decimal]:
    """Mean of the positive variant margins"""
    positive = [to_decimal(m) for m in margins if m is not None and to_decimal(m) > ZERO]
    if not positive:
        return None
    return quantize_money(sum(positive, ZERO) / len(positive))


def product_performance(line_items: Sequence[Mapping]) -> ProductPerformance:
    """
    Sales aggregates of one product over its mirrored line items.

    Each line item mapping needs quantity, price, total_discount,
    gross_profit, order_upstream_id and order_created_at. Profit and margin
    only cover line items with a gross_profit; when items were sold but none
    of them has one, both are None.
    """
    total_quantity = 0
    total_revenue = ZERO
    costed_revenue = ZERO
    total_profit = ZERO
    costed_items = 0
    orders = set()
    last_sold_at: Optional[datetime] = None

    for item in line_items:
        quantity = int(item.get("quantity") or 0)
        revenue = to_decimal(item.get("price")) * quantity - to_decimal(item.get("total_discount"))
        total_quantity += quantity
        total_revenue += revenue
        if item.get("gross_profit") is not None:
            costed_items += 1
            costed_revenue += revenue
            total_profit += to_decimal(item.get("gross_profit"))
        orders.add(item.get("order_upstream_id"))
        sold_at = item.get("order_created_at")
        if sold_at is not None and (last_sold_at is None or sold_at > last_sold_at):
            last_sold_at = sold_at

    average_order_value = total_revenue / len(orders) if orders else ZERO
    profit_known = costed_items > 0 or not line_items
    return ProductPerformance(
        total_quantity_sold=total_quantity,
        total_revenue=quantize_money(total_revenue),
        total_profit=quantize_money(total_profit) if profit_known else None,
        profit_margin=percentage(total_profit, costed_revenue) if profit_known else None,
        average_order_value=quantize_money(average_order_value),
        last_sold_at=last_sold_at,
    )


# =============================================================================
# CUSTOMERS
# =============================================================================

def customer_lifetime(orders: Sequence[Tuple[Optional[datetime], Decimal]], now: datetime) -> CustomerLifetime:
    """
    Lifetime metrics from a customer's (created_at, total_price) order pairs.

    predicted_ltv = average_order_value x max(orders_count x 2, 5)
    """
    orders_count = len(orders)
    total_spent = sum((to_decimal(total) for _, total in orders), ZERO)
    average_order_value = total_spent / orders_count if orders_count else ZERO
    predicted_ltv = average_order_value * max(orders_count * 2, 5) if orders_count else ZERO

    dates: List[datetime] = sorted(created for created, _ in orders if created is not None)
    first_order_date = dates[0] if dates else None
    last_order_date = dates[-1] if dates else None

    return CustomerLifetime(
        orders_count=orders_count,
        total_spent=quantize_money(total_spent),
        average_order_value=quantize_money(average_order_value),
        lifetime_value=quantize_money(total_spent),
        predicted_ltv=quantize_money(predicted_ltv),
        first_order_date=first_order_date,
        last_order_date=last_order_date,
        days_since_first_order=(now - first_order_date).days if first_order_date else None,
        days_since_last_order=(now - last_order_date).days if last_order_date else None,
    )


def assign_segment(
    orders_count: int,
    total_spent,
    days_since_last_order: Optional[int],
    vip_threshold=Decimal("1000"),
    active_days: int = 30,
    at_risk_days: int = 90,
) -> CustomerSegment:
    """
    Segment a customer. Rules apply in order, so spend beats recency.

    Example:
        >>> assign_segment(1, Decimal("1500"), 5)
        <CustomerSegment.VIP: 'vip'>
    """
    if orders_count == 0:
        return CustomerSegment.NEW
    if to_decimal(total_spent) > to_decimal(vip_threshold):
        return CustomerSegment.VIP
    if days_since_last_order is None:
        return CustomerSegment.LOST
    if days_since_last_order <= active_days:
        return CustomerSegment.ACTIVE
    if days_since_last_order <= at_risk_days:
        return CustomerSegment.AT_RISK
    return CustomerSegment.LOST
