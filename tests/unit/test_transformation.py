"""
Unit Tests - Payload Normalization
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from profit_pipeline.exceptions import NormalizationError
from profit_pipeline.transformation.money import percentage, quantize_money, split_tags, to_decimal
from profit_pipeline.transformation.normalizers import EntityNormalizer

SHOP = "demo.myshopify.com"


class TestMoneyHelpers:
    """Tests for the Decimal helpers"""

    def test_to_decimal_handles_strings_and_floats(self):
        """Floats keep their printed value"""
        assert to_decimal("19.99") == Decimal("19.99")
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("") == Decimal("0")

    @pytest.mark.parametrize("value", ["abc", True, "NaN", object()])
    def test_to_decimal_rejects_non_numbers(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)

    def test_quantize_rounds_half_up(self):
        assert quantize_money(Decimal("2.345")) == Decimal("2.35")
        assert quantize_money("10") == Decimal("10.00")

    def test_percentage_of_zero_whole(self):
        """A zero or negative base yields 0.00 instead of dividing"""
        assert percentage(Decimal("5"), Decimal("0")) == Decimal("0.00")
        assert percentage(Decimal("30"), Decimal("100")) == Decimal("30.00")

    def test_split_tags(self):
        assert split_tags(" vip, wholesale,,vip ") == ["vip", "wholesale"]
        assert split_tags(["a", " b "]) == ["a", "b"]
        assert split_tags(None) == []


class TestProductNormalization:
    """Tests for product payloads"""

    def test_valid_product(self, payloads):
        """Variants carry their unit cost and ids become strings"""
        result = EntityNormalizer(SHOP).normalize_product(payloads.product(1))

        assert result.is_valid
        assert result.upstream_id == "1"
        product = result.unwrap()
        assert product.description == "<p>Organic cotton</p>"
        assert product.tags == ["summer", "cotton"]
        assert product.variants[0].upstream_id == "11"
        assert product.variants[0].unit_cost == Decimal("20.00")
        assert product.created_at == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def test_missing_cost_defaults_to_zero(self, payloads):
        payload = payloads.product(1, [payloads.variant(11, cost=None)])

        product = EntityNormalizer(SHOP).normalize_product(payload).unwrap()

        assert product.variants[0].unit_cost == Decimal("0")

    def test_raw_fields_exclude_derived_metrics(self, payloads):
        """Embedded variants are JSON-safe and no derived field leaks in"""
        product = EntityNormalizer(SHOP).normalize_product(payloads.product(1)).unwrap()

        fields = product.raw_fields()

        assert "upstream_id" not in fields
        assert "total_revenue" not in fields
        assert fields["variants"][0]["price"] == "50.00"
        assert "profit_per_unit" not in fields["variants"][0]

    @pytest.mark.parametrize(
        "change",
        [
            {"id": None},
            {"title": ""},
            {"variants": [{"id": 11, "price": "-1.00"}]},
        ],
    )
    def test_invalid_product_is_rejected(self, payloads, change):
        payload = payloads.product(1)
        payload.update(change)

        result = EntityNormalizer(SHOP).normalize_product(payload)

        assert not result.is_valid
        assert result.errors
        with pytest.raises(NormalizationError):
            result.unwrap()

    def test_non_mapping_payload(self):
        result = EntityNormalizer(SHOP).normalize_product(["not", "a", "product"])

        assert not result.is_valid
        assert result.upstream_id is None


class TestOrderNormalization:
    """Tests for orders and their embedded line items"""

    def test_order_with_line_items(self, payloads):
        payload = payloads.order(500, [payloads.line_item(5001), payloads.line_item(5002, quantity=1)])

        normalized = EntityNormalizer(SHOP).normalize_order(payload).unwrap()

        assert normalized.order.total_price == Decimal("100.00")
        assert normalized.order.customer_upstream_id == "100"
        assert [item.upstream_id for item in normalized.line_items] == ["5001", "5002"]
        item = normalized.line_items[0]
        assert item.order_upstream_id == "500"
        assert item.product_upstream_id == "1"
        assert item.order_created_at == normalized.order.created_at
        assert item.fulfillment_status == "unfulfilled"

    def test_guest_order_has_no_customer(self, payloads):
        normalized = EntityNormalizer(SHOP).normalize_order(payloads.order(501, customer_id=None)).unwrap()

        assert normalized.order.customer_upstream_id is None

    def test_bad_line_item_rejects_order(self, payloads):
        payload = payloads.order(500, [payloads.line_item(5001, quantity=-1)])

        result = EntityNormalizer(SHOP).normalize_order(payload)

        assert not result.is_valid
        assert result.upstream_id == "500"
        assert any("quantity" in error for error in result.errors)


class TestRefundNormalization:
    """Tests for refund payloads"""

    def test_refund_totals(self, payloads):
        """Only successful transactions count towards the refunded amount"""
        payload = payloads.refund(900, 500, amount="10.00", line_item_id=5001)
        payload["transactions"].append({"id": 2, "amount": "99.00", "status": "failure"})
        payload["refund_line_items"][0]["total_tax"] = "0.80"

        refund = EntityNormalizer(SHOP).normalize_refund(payload, "500").unwrap()

        assert refund.order_upstream_id == "500"
        assert refund.total_refund_amount == Decimal("10.00")
        assert refund.total_tax_refunded == Decimal("0.80")
        assert refund.refund_line_items[0].line_item_upstream_id == "5001"
        assert refund.refund_line_items[0].restock_type == "no_restock"

    def test_customer_normalization(self, payloads):
        customer = EntityNormalizer(SHOP).normalize_customer(payloads.customer(100)).unwrap()

        assert customer.reported_orders_count == 3
        assert customer.reported_total_spent == Decimal("250.00")
        assert customer.default_address.city == "Austin"
        assert customer.raw_fields()["default_address"]["country_code"] == "US"
