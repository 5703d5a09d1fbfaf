"""
Integration Tests - Historical Sync
"""
from decimal import Decimal

from profit_pipeline.database.store import Collection
from profit_pipeline.exceptions import SourceError, TransientSourceError
from profit_pipeline.ingestion.orchestrator import IngestionOrchestrator, SyncState, run_day1_sync
from profit_pipeline.ingestion.source import EntityType, InMemorySourceClient
from profit_pipeline.security import CredentialCipher


class RecordingRunner:
    """Stands in for the metrics job runner"""

    def __init__(self):
        self.enqueued = []

    def enqueue(self, tenant: str) -> None:
        self.enqueued.append(tenant)


class TestIngestionOrchestrator:
    """Tests for a full tenant sync"""

    async def test_full_sync(self, store, shop, source_client, test_settings):
        runner = RecordingRunner()
        orchestrator = IngestionOrchestrator(shop, source_client, store, test_settings, metrics_runner=runner)

        result = await orchestrator.run()

        assert result.success
        assert result.error is None
        assert (result.stats.products, result.stats.customers, result.stats.orders) == (2, 1, 3)
        assert (result.stats.line_items, result.stats.refunds, result.stats.errors) == (3, 1, 0)
        assert result.processed_count == 10
        assert orchestrator.history == [
            SyncState.NOT_STARTED,
            SyncState.FETCHING_PRODUCTS,
            SyncState.FETCHING_CUSTOMERS,
            SyncState.FETCHING_ORDERS,
            SyncState.FETCHING_REFUNDS,
            SyncState.COMPLETED,
        ]
        assert runner.enqueued == [shop]

        refunds_checked = [call for call in source_client.calls if call[0] is EntityType.REFUNDS]
        assert {order_id for _, order_id in refunds_checked} == {"500", "501", "502"}

        line_item = await store.find_one(Collection.LINE_ITEMS, shop, "5001")
        assert line_item["order_upstream_id"] == "500"
        assert line_item["order_created_at"] is not None
        refund = await store.find_one(Collection.REFUNDS, shop, "900")
        assert refund["total_refund_amount"] == Decimal("10.00")

    async def test_rerun_is_idempotent(self, store, shop, source_client, test_settings):
        """A second sync leaves the same records and keeps derived fields"""
        await IngestionOrchestrator(shop, source_client, store, test_settings).run()
        await store.update(Collection.ORDERS, shop, "500", {"gross_profit": Decimal("42.00")})
        await store.update(Collection.CUSTOMERS, shop, "100", {"segment": "vip"})

        result = await IngestionOrchestrator(shop, source_client, store, test_settings).run()

        assert result.success
        for collection, expected in (
            (Collection.PRODUCTS, 2),
            (Collection.CUSTOMERS, 1),
            (Collection.ORDERS, 3),
            (Collection.LINE_ITEMS, 3),
            (Collection.REFUNDS, 1),
        ):
            assert await store.count(collection, shop) == expected
        assert (await store.find_one(Collection.ORDERS, shop, "500"))["gross_profit"] == Decimal("42.00")
        assert (await store.find_one(Collection.CUSTOMERS, shop, "100"))["segment"] == "vip"

    async def test_order_failure_fails_sync_and_keeps_products(self, store, shop, source_client, test_settings):
        runner = RecordingRunner()
        source_client.failures[EntityType.ORDERS] = SourceError("orders forbidden", status_code=403)

        orchestrator = IngestionOrchestrator(shop, source_client, store, test_settings, metrics_runner=runner)
        result = await orchestrator.run()

        assert not result.success
        assert "orders" in result.error
        assert orchestrator.state is SyncState.FAILED
        assert result.stats.products == 2
        assert await store.count(Collection.PRODUCTS, shop) == 2
        assert runner.enqueued == []

    async def test_product_failure_after_retries(self, store, shop, source_client, test_settings):
        source_client.failures[EntityType.PRODUCTS] = TransientSourceError("503", status_code=503)

        result = await IngestionOrchestrator(shop, source_client, store, test_settings).run()

        assert not result.success
        assert result.error.startswith("products ingestion failed")
        product_calls = [call for call in source_client.calls if call[0] is EntityType.PRODUCTS]
        assert len(product_calls) == test_settings.shopify.max_retries + 1

    async def test_customer_failure_degrades(self, store, shop, source_client, test_settings):
        source_client.failures[EntityType.CUSTOMERS] = SourceError("customers scope missing", status_code=403)

        result = await IngestionOrchestrator(shop, source_client, store, test_settings).run()

        assert result.success
        assert result.stats.customers == 0
        assert result.stats.orders == 3
        assert result.stats.errors == 1

    async def test_refund_failure_for_one_order(self, store, shop, source_client, test_settings):
        source_client.refund_failures.add("500")

        result = await IngestionOrchestrator(shop, source_client, store, test_settings).run()

        assert result.success
        assert result.stats.refunds == 0
        assert result.stats.errors == 1

    async def test_invalid_records_are_skipped(self, store, shop, payloads, test_settings):
        client = InMemorySourceClient(
            products=[payloads.product(1), {"id": 2, "title": ""}, "garbage"],
            orders=[payloads.order(500), payloads.order(501, [payloads.line_item(5011, quantity=-3)])],
            page_size=2,
        )

        result = await IngestionOrchestrator(shop, client, store, test_settings).run()

        assert result.success
        assert result.stats.products == 1
        assert result.stats.orders == 1
        assert result.stats.errors == 3
        assert await store.find_one(Collection.ORDERS, shop, "501") is None

    async def test_deadline(self, store, shop, source_client, test_settings):
        test_settings.pipeline.ingestion_deadline_seconds = 0.05
        source_client.delays[EntityType.PRODUCTS] = 1.0

        orchestrator = IngestionOrchestrator(shop, source_client, store, test_settings)
        result = await orchestrator.run()

        assert not result.success
        assert "deadline" in result.error
        assert orchestrator.state is SyncState.FAILED


class TestTenantRecordOutcome:
    """Tests for sync flags on the tenant record"""

    async def test_success_marks_metrics_stale(self, store, installed_shop, source_client, test_settings):
        await IngestionOrchestrator(installed_shop, source_client, store, test_settings).run()

        record = await store.get_tenant_record(installed_shop)
        assert record["sync_status"] == "synced"
        assert record["sync_state"] == "completed"
        assert record["sync_error"] is None
        assert record["metrics_stale"] is True
        assert record["sync_stats"]["lineItems"] == 3

    async def test_failure_records_error(self, store, installed_shop, source_client, test_settings):
        source_client.failures[EntityType.ORDERS] = SourceError("boom", status_code=400)

        await IngestionOrchestrator(installed_shop, source_client, store, test_settings).run()

        record = await store.get_tenant_record(installed_shop)
        assert record["sync_status"] == "error"
        assert record["sync_state"] == "failed"
        assert "boom" in record["sync_error"]


class TestDay1Sync:
    """Tests for the Day-1 entry point"""

    async def test_runs_with_stored_token(self, store, cipher, installed_shop, source_client, test_settings):
        tokens = []

        def factory(tenant, access_token):
            tokens.append(access_token)
            return source_client

        result = await run_day1_sync(installed_shop, store, cipher, source_factory=factory, settings=test_settings)

        assert result.success
        assert tokens == ["shpat_test_token"]

    async def test_no_installation(self, store, cipher, shop, source_client, test_settings):
        result = await run_day1_sync(shop, store, cipher, source_factory=lambda t, a: source_client, settings=test_settings)

        assert not result.success
        assert result.error == "no active installation with an access token"
        assert source_client.calls == []

    async def test_undecryptable_token(self, store, installed_shop, source_client, test_settings):
        wrong = CredentialCipher(CredentialCipher.generate_key())
        result = await run_day1_sync(installed_shop, store, wrong, source_factory=lambda t, a: source_client, settings=test_settings)

        assert not result.success
        assert "decrypted" in result.error
