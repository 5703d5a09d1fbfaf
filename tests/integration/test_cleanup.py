"""
Integration Tests - Tenant Cleanup
"""
from profit_pipeline.database.store import Collection
from profit_pipeline.exceptions import StoreError
from profit_pipeline.ingestion.orchestrator import IngestionOrchestrator
from profit_pipeline.lifecycle.cleanup import DELETION_ORDER, CleanupOrchestrator

OTHER_SHOP = "other.myshopify.com"


class SelectiveStore:
    """Store wrapper that breaks delete_many for one collection"""

    def __init__(self, store, collection: Collection, mode: str):
        self.store = store
        self.collection = collection
        self.mode = mode
        self.deleted = []

    async def delete_many(self, collection, tenant):
        if collection is self.collection:
            if self.mode == "raise":
                raise StoreError("connection reset")
            return 0
        self.deleted.append(collection)
        return await self.store.delete_many(collection, tenant)

    def __getattr__(self, name):
        return getattr(self.store, name)


class TestCleanupOrchestrator:
    """Tests for full tenant data removal"""

    async def test_removes_everything(self, store, installed_shop, source_client, test_settings):
        await IngestionOrchestrator(installed_shop, source_client, store, test_settings).run()

        result = await CleanupOrchestrator(store, installed_shop).run()

        assert result.success
        assert result.verified is True
        assert result.error is None
        stats = result.stats
        assert (stats.products, stats.customers, stats.orders) == (2, 1, 3)
        assert (stats.line_items, stats.refunds, stats.tenant_records) == (3, 1, 1)
        assert result.processed_count == 11
        for collection in DELETION_ORDER:
            assert await store.count(collection, installed_shop) == 0
        assert result.to_payload()["stats"]["tenantRecords"] == 1

    async def test_other_tenants_untouched(self, store, shop, source_client, test_settings):
        await IngestionOrchestrator(shop, source_client, store, test_settings).run()
        await IngestionOrchestrator(OTHER_SHOP, source_client, store, test_settings).run()

        await CleanupOrchestrator(store, shop).run()

        assert await store.count(Collection.ORDERS, OTHER_SHOP) == 3

    async def test_rerun_is_safe(self, store, installed_shop, source_client, test_settings):
        await IngestionOrchestrator(installed_shop, source_client, store, test_settings).run()
        await CleanupOrchestrator(store, installed_shop).run()

        result = await CleanupOrchestrator(store, installed_shop).run()

        assert result.success
        assert result.verified is True
        assert result.processed_count == 0

    async def test_failed_step_stops_cleanup(self, store, installed_shop, source_client, test_settings):
        await IngestionOrchestrator(installed_shop, source_client, store, test_settings).run()
        broken = SelectiveStore(store, Collection.ORDERS, "raise")

        result = await CleanupOrchestrator(broken, installed_shop).run()

        assert not result.success
        assert result.error.startswith("failed deleting orders")
        assert broken.deleted == [Collection.REFUNDS, Collection.LINE_ITEMS]
        assert result.verified is None
        assert "verified" not in result.to_payload()
        assert await store.count(Collection.PRODUCTS, installed_shop) == 2
        assert await store.get_tenant_record(installed_shop) is not None

    async def test_verification_failure(self, store, shop, source_client, test_settings):
        await IngestionOrchestrator(shop, source_client, store, test_settings).run()
        leaky = SelectiveStore(store, Collection.CUSTOMERS, "skip")

        result = await CleanupOrchestrator(leaky, shop).run()

        assert not result.success
        assert result.verified is False
        assert result.error == "verification failed: 1 records remain"
