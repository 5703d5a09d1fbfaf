"""
Unit Tests - Upsert Writer
"""
from decimal import Decimal

import pytest

from profit_pipeline.database.store import Collection
from profit_pipeline.exceptions import DuplicateKeyError
from profit_pipeline.ingestion.source import EntityType
from profit_pipeline.ingestion.writer import UpsertWriter, merge_variants
from profit_pipeline.transformation.normalizers import EntityNormalizer

SHOP = "demo.myshopify.com"


class RacingStore:
    """Store wrapper whose first upsert loses an insert race"""

    def __init__(self, store):
        self.store = store
        self.raced = False

    async def upsert(self, collection, tenant, upstream_id, fields):
        if not self.raced:
            self.raced = True
            await self.store.upsert(collection, tenant, upstream_id, fields)
            raise DuplicateKeyError("lost the race")
        return await self.store.upsert(collection, tenant, upstream_id, fields)

    def __getattr__(self, name):
        return getattr(self.store, name)


class TestMergeVariants:
    """Tests for embedded variant merging"""

    def test_derived_fields_carry_over(self):
        stored = [{"upstream_id": "11", "unit_cost": "20.00", "profit_per_unit": "30.00", "gross_margin": "60.00"}]
        incoming = [{"upstream_id": "11", "unit_cost": "20.00", "price": "55.00"}]

        merged = merge_variants(stored, incoming)

        assert merged[0]["price"] == "55.00"
        assert merged[0]["profit_per_unit"] == "30.00"
        assert merged[0]["gross_margin"] == "60.00"

    def test_known_cost_is_not_erased(self):
        stored = [{"upstream_id": "11", "unit_cost": "20.00"}]
        incoming = [{"upstream_id": "11", "unit_cost": "0"}]

        assert merge_variants(stored, incoming)[0]["unit_cost"] == "20.00"

    def test_new_cost_wins(self):
        stored = [{"upstream_id": "11", "unit_cost": "20.00"}]
        incoming = [{"upstream_id": "11", "unit_cost": "22.50"}]

        assert merge_variants(stored, incoming)[0]["unit_cost"] == "22.50"

    def test_removed_variants_are_dropped(self):
        stored = [{"upstream_id": "11"}, {"upstream_id": "12"}]

        merged = merge_variants(stored, [{"upstream_id": "12"}])

        assert [v["upstream_id"] for v in merged] == ["12"]


class TestUpsertWriter:
    """Tests for idempotent writes"""

    async def test_rewrite_preserves_derived_fields(self, store, payloads):
        normalizer = EntityNormalizer(SHOP)
        writer = UpsertWriter(store, SHOP)
        order = normalizer.normalize_order(payloads.order(500)).unwrap().order

        await writer.upsert(EntityType.ORDERS, "500", order)
        await store.update(Collection.ORDERS, SHOP, "500", {"gross_profit": Decimal("30.00"), "cost_data_available": True})
        await writer.upsert(EntityType.ORDERS, "500", order)

        stored = await store.find_one(Collection.ORDERS, SHOP, "500")
        assert stored["gross_profit"] == Decimal("30.00")
        assert stored["cost_data_available"] is True
        assert await store.count(Collection.ORDERS, SHOP) == 1

    async def test_product_rewrite_keeps_variant_metrics(self, store, payloads):
        normalizer = EntityNormalizer(SHOP)
        writer = UpsertWriter(store, SHOP)
        product = normalizer.normalize_product(payloads.product(1)).unwrap()

        stored = await writer.upsert(EntityType.PRODUCTS, "1", product)
        variants = [dict(stored["variants"][0], profit_per_unit="30.00", gross_margin="60.00")]
        await store.update(Collection.PRODUCTS, SHOP, "1", {"variants": variants})

        without_cost = normalizer.normalize_product(payloads.product(1, [payloads.variant(11, cost=None)])).unwrap()
        rewritten = await writer.upsert(EntityType.PRODUCTS, "1", without_cost)

        variant = rewritten["variants"][0]
        assert variant["profit_per_unit"] == "30.00"
        assert Decimal(variant["unit_cost"]) == Decimal("20.00")

    async def test_duplicate_key_retries_as_update(self, store, payloads):
        racing = RacingStore(store)
        writer = UpsertWriter(racing, SHOP)
        order = EntityNormalizer(SHOP).normalize_order(payloads.order(500)).unwrap().order

        record = await writer.upsert(EntityType.ORDERS, "500", order)

        assert racing.raced
        assert record["upstream_id"] == "500"
        assert await store.count(Collection.ORDERS, SHOP) == 1

    async def test_unresolvable_duplicate(self, store, payloads):
        class AlwaysDuplicate(RacingStore):
            async def upsert(self, collection, tenant, upstream_id, fields):
                raise DuplicateKeyError("constraint")

        writer = UpsertWriter(AlwaysDuplicate(store), SHOP)
        order = EntityNormalizer(SHOP).normalize_order(payloads.order(500)).unwrap().order

        with pytest.raises(DuplicateKeyError):
            await writer.upsert(EntityType.ORDERS, "500", order)
