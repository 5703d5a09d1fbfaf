"""
Unit Tests - Metric Calculations
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from profit_pipeline.database.models import CustomerSegment
from profit_pipeline.metrics.calculations import (
    assign_segment,
    average_margin,
    customer_lifetime,
    line_item_profit,
    order_profit,
    product_performance,
    refund_profit_impact,
    variant_profit,
)

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


class TestOrderProfit:
    """Tests for line item and order profit"""

    def test_line_item_profit(self):
        profit = line_item_profit(Decimal("50"), 2, Decimal("0"), Decimal("20"))

        assert profit.total_cost == Decimal("40.00")
        assert profit.gross_profit == Decimal("60.00")
        assert profit.profit_margin == Decimal("60.00")

    def test_line_item_discount_reduces_revenue(self):
        profit = line_item_profit("25.00", 4, "10.00", "5.00")

        assert profit.revenue == Decimal("90.00")
        assert profit.gross_profit == Decimal("70.00")
        assert profit.profit_margin == Decimal("77.78")

    def test_order_profit_after_refund(self):
        """total_price - total_cost - refund impact"""
        profit = order_profit(Decimal("100"), Decimal("60"), Decimal("10"))

        assert profit.gross_profit == Decimal("30.00")
        assert profit.profit_margin == Decimal("30.00")
        assert profit.refund_impact == Decimal("10.00")

    def test_order_without_cost_data(self):
        """Unknown cost leaves profit empty instead of guessing"""
        profit = order_profit(Decimal("100"), Decimal("0"), cost_data_available=False)

        assert profit.gross_profit is None
        assert profit.profit_margin is None
        assert profit.cost_data_available is False

    def test_free_order_margin_is_zero(self):
        profit = order_profit(Decimal("0"), Decimal("5"))

        assert profit.gross_profit == Decimal("-5.00")
        assert profit.profit_margin == Decimal("0.00")

    @pytest.mark.parametrize("unit_cost", [None, "0", Decimal("0")])
    def test_line_item_without_cost(self, unit_cost):
        """Unknown cost is not treated as free"""
        profit = line_item_profit("50.00", 1, "0.00", unit_cost)

        assert profit.revenue == Decimal("50.00")
        assert not profit.cost_known
        assert profit.total_cost is None
        assert profit.gross_profit is None
        assert profit.profit_margin is None


class TestRefundImpact:
    """Tests for refund cost recovery"""

    def test_no_restock_recovers_nothing(self):
        items = [{"line_item_upstream_id": "1", "quantity": 1, "restock_type": "no_restock"}]

        impact = refund_profit_impact(Decimal("10"), items, {"1": Decimal("4")})

        assert impact.cost_recovered == Decimal("0.00")
        assert impact.profit_impact == Decimal("10.00")

    def test_returned_units_recover_their_cost(self):
        items = [{"line_item_upstream_id": "1", "quantity": 2, "restock_type": "return"}]

        impact = refund_profit_impact(Decimal("50"), items, {"1": Decimal("15")})

        assert impact.cost_recovered == Decimal("30.00")
        assert impact.profit_impact == Decimal("20.00")

    def test_unknown_unit_cost_falls_back_to_order_average(self):
        items = [
            {"line_item_upstream_id": "1", "quantity": 1, "restock_type": "cancel"},
            {"line_item_upstream_id": "2", "quantity": 1, "restock_type": "no_restock"},
        ]

        impact = refund_profit_impact(Decimal("40"), items, {}, order_total_cost=Decimal("30"))

        assert impact.cost_recovered == Decimal("15.00")
        assert impact.profit_impact == Decimal("25.00")


class TestProductMetrics:
    """Tests for variant and product aggregates"""

    def test_variant_profit(self):
        profit = variant_profit("50.00", "20.00")

        assert profit.profit_per_unit == Decimal("30.00")
        assert profit.gross_margin == Decimal("60.00")

    def test_variant_without_cost(self):
        assert variant_profit("50.00", "0") is None

    def test_average_margin_ignores_non_positive(self):
        assert average_margin([Decimal("60"), Decimal("40"), Decimal("-5"), None]) == Decimal("50.00")
        assert average_margin([]) is None

    def test_product_performance(self):
        sold = datetime(2025, 1, 10, tzinfo=timezone.utc)
        items = [
            {"quantity": 2, "price": Decimal("50"), "total_discount": Decimal("0"),
             "gross_profit": Decimal("60"), "order_upstream_id": "500", "order_created_at": sold},
            {"quantity": 1, "price": Decimal("50"), "total_discount": Decimal("10"),
             "gross_profit": Decimal("20"), "order_upstream_id": "500", "order_created_at": sold},
            {"quantity": 1, "price": Decimal("50"), "total_discount": Decimal("0"),
             "gross_profit": Decimal("30"), "order_upstream_id": "501",
             "order_created_at": sold + timedelta(days=5)},
        ]

        performance = product_performance(items)

        assert performance.total_quantity_sold == 4
        assert performance.total_revenue == Decimal("190.00")
        assert performance.total_profit == Decimal("110.00")
        assert performance.profit_margin == Decimal("57.89")
        assert performance.average_order_value == Decimal("95.00")
        assert performance.last_sold_at == sold + timedelta(days=5)

    def test_unsold_product(self):
        performance = product_performance([])

        assert performance.total_quantity_sold == 0
        assert performance.average_order_value == Decimal("0.00")
        assert performance.last_sold_at is None

    def test_uncosted_items_stay_out_of_profit(self):
        items = [
            {"quantity": 1, "price": Decimal("50"), "total_discount": Decimal("0"),
             "gross_profit": Decimal("20"), "order_upstream_id": "500"},
            {"quantity": 1, "price": Decimal("50"), "total_discount": Decimal("0"),
             "gross_profit": None, "order_upstream_id": "501"},
        ]

        performance = product_performance(items)

        assert performance.total_revenue == Decimal("100.00")
        assert performance.total_profit == Decimal("20.00")
        assert performance.profit_margin == Decimal("40.00")

    def test_sold_without_any_cost(self):
        items = [{"quantity": 2, "price": Decimal("50"), "total_discount": Decimal("0"),
                  "gross_profit": None, "order_upstream_id": "500"}]

        performance = product_performance(items)

        assert performance.total_revenue == Decimal("100.00")
        assert performance.total_profit is None
        assert performance.profit_margin is None


class TestCustomerMetrics:
    """Tests for lifetime value and segmentation"""

    def test_customer_lifetime(self):
        orders = [
            (NOW - timedelta(days=40), Decimal("100")),
            (NOW - timedelta(days=10), Decimal("50")),
        ]

        lifetime = customer_lifetime(orders, NOW)

        assert lifetime.orders_count == 2
        assert lifetime.total_spent == Decimal("150.00")
        assert lifetime.average_order_value == Decimal("75.00")
        assert lifetime.predicted_ltv == Decimal("375.00")
        assert lifetime.days_since_first_order == 40
        assert lifetime.days_since_last_order == 10

    def test_customer_without_orders(self):
        lifetime = customer_lifetime([], NOW)

        assert lifetime.orders_count == 0
        assert lifetime.predicted_ltv == Decimal("0.00")
        assert lifetime.last_order_date is None

    @pytest.mark.parametrize(
        "orders_count,spent,days,expected",
        [
            (0, "0", None, CustomerSegment.NEW),
            (1, "1000.01", 200, CustomerSegment.VIP),
            (1, "1000.00", 5, CustomerSegment.ACTIVE),
            (1, "10", 30, CustomerSegment.ACTIVE),
            (1, "10", 31, CustomerSegment.AT_RISK),
            (1, "10", 90, CustomerSegment.AT_RISK),
            (1, "10", 91, CustomerSegment.LOST),
            (1, "10", None, CustomerSegment.LOST),
        ],
    )
    def test_segment_rules(self, orders_count, spent, days, expected):
        """VIP needs spend strictly above the threshold"""
        assert assign_segment(orders_count, Decimal(spent), days) == expected
