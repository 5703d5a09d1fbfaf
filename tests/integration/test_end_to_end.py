"""
Integration Tests - Install, Sync, Metrics, Cleanup
"""
import json
from decimal import Decimal

import pytest

from profit_pipeline import cli
from profit_pipeline.config import get_settings
from profit_pipeline.data.generators import generate_dataset
from profit_pipeline.database.store import Collection
from profit_pipeline.ingestion.orchestrator import run_day1_sync
from profit_pipeline.lifecycle.cleanup import CleanupOrchestrator
from profit_pipeline.metrics.jobs import MetricsJobRunner
from profit_pipeline.security import CredentialCipher


class TestTenantLifecycle:
    """One shop through its whole lifecycle"""

    async def test_install_sync_metrics_cleanup(self, store, cipher, tenant_service, shop, source_client, test_settings):
        await tenant_service.register_installation(shop, "shpat_lifecycle")
        assert await tenant_service.needs_initial_sync(shop)

        runner = MetricsJobRunner(store, test_settings)
        result = await run_day1_sync(
            shop,
            store,
            cipher,
            source_factory=lambda tenant, token: source_client,
            settings=test_settings,
            metrics_runner=runner,
        )
        runs = await runner.drain()

        assert result.success
        assert all(job.success for job in runs[0])
        assert not await tenant_service.needs_initial_sync(shop)

        line_item = await store.find_one(Collection.LINE_ITEMS, shop, "5001")
        assert line_item["gross_profit"] == Decimal("60.00")
        assert line_item["profit_margin"] == Decimal("60.00")
        order = await store.find_one(Collection.ORDERS, shop, "500")
        assert order["gross_profit"] == Decimal("50.00")
        assert order["profit_margin"] == Decimal("50.00")
        status = await tenant_service.sync_status(shop)
        assert status["metrics_stale"] is False

        await tenant_service.deactivate(shop, "uninstalled")
        cleanup = await CleanupOrchestrator(store, shop).run()

        assert cleanup.success
        assert cleanup.verified is True
        assert await store.get_tenant_record(shop) is None

    async def test_generated_store_syncs(self, store, cipher, tenant_service, shop, test_settings):
        dataset = generate_dataset(seed=7, products=5, customers=8, orders=30)
        await tenant_service.register_installation(shop, "shpat_generated")

        runner = MetricsJobRunner(store, test_settings)
        result = await run_day1_sync(
            shop,
            store,
            cipher,
            source_factory=lambda tenant, token: dataset.to_source_client(page_size=7),
            settings=test_settings,
            metrics_runner=runner,
        )
        runs = await runner.drain()

        assert result.success
        assert result.stats.orders == 30
        assert result.stats.products == 5
        assert all(job.success for job in runs[0])


class TestCommandLine:
    """Tests for the profit-pipeline command"""

    @pytest.fixture
    def cli_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ENCRYPTION_KEY", CredentialCipher.generate_key())
        monkeypatch.setenv("SHOPIFY_RATE_LIMIT_DELAY_SECONDS", "0")
        get_settings.cache_clear()
        yield f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
        get_settings.cache_clear()

    def _run(self, capsys, *argv):
        code = cli.main(list(argv))
        return code, json.loads(capsys.readouterr().out)

    def test_fixture_sync_round_trip(self, cli_env, tmp_path, capsys):
        shop = "cli.myshopify.com"
        fixtures = generate_dataset(seed=3, products=4, customers=5, orders=12).save(tmp_path / "shop.json")

        code, record = self._run(capsys, "--database-url", cli_env, "install", shop, "--token", "shpat_cli")
        assert code == 0
        assert record["shop"] == shop
        assert "access_token" not in record

        code, synced = self._run(capsys, "--database-url", cli_env, "sync", shop, "--fixtures", str(fixtures))
        assert code == 0
        assert synced["success"] is True
        assert synced["stats"]["orders"] == 12
        assert [job["job"] for job in synced["metrics"]] == ["profit_metrics", "customer_ltv", "product_performance"]

        code, status = self._run(capsys, "--database-url", cli_env, "status", shop)
        assert code == 0
        assert status["sync_status"] == "synced"
        assert status["metrics_stale"] is False

        code, cleaned = self._run(capsys, "--database-url", cli_env, "cleanup", shop)
        assert code == 0
        assert cleaned["verified"] is True

    def test_status_for_unknown_shop(self, cli_env, capsys):
        code, payload = self._run(capsys, "--database-url", cli_env, "status", "missing.myshopify.com")

        assert code == 1
        assert payload["success"] is False

    def test_sync_without_install(self, cli_env, capsys):
        code, payload = self._run(capsys, "--database-url", cli_env, "sync", "missing.myshopify.com")

        assert code == 1
        assert payload["error"] == "no active installation with an access token"
