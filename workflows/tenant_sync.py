"""
Prefect Workflow Orchestration - Tenant Sync

Deployable flows for the per-shop jobs:
- Day-1 sync after install, retried with exponential backoff
- Metrics recompute on demand or on a schedule
- Full data cleanup after uninstall
"""

from typing import Optional

from prefect import flow, task, get_run_logger
from prefect.tasks import exponential_backoff

from profit_pipeline.database import (
    SQLAlchemyTenantStore,
    close_database,
    create_tables,
    get_session_factory,
    init_database,
)
from profit_pipeline.exceptions import JobFailed
from profit_pipeline.ingestion import run_day1_sync
from profit_pipeline.lifecycle import CleanupOrchestrator, TenantService
from profit_pipeline.metrics import MetricsJobRunner
from profit_pipeline.security import get_cipher


async def _open_store(database_url: Optional[str]) -> SQLAlchemyTenantStore:
    await init_database(database_url)
    await create_tables()
    return SQLAlchemyTenantStore(get_session_factory())


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="day1_sync",
    description="Ingest products, customers, orders and refunds for a shop",
    retries=2,
    retry_delay_seconds=exponential_backoff(backoff_factor=30),
)
async def day1_sync_task(tenant: str, database_url: Optional[str] = None) -> dict:
    """One sync attempt; an unsuccessful result raises so Prefect retries it"""
    logger = get_run_logger()

    store = await _open_store(database_url)
    try:
        runner = MetricsJobRunner(store)
        result = await run_day1_sync(tenant, store, metrics_runner=runner)
        await runner.drain()
    finally:
        await close_database()

    logger.info(
        f"Sync for {tenant}: success={result.success}, "
        f"processed={result.processed_count}, errors={result.stats.errors}"
    )
    if not result.success:
        raise JobFailed(result.job, tenant, result.error)
    return result.to_payload()


@task(
    name="compute_metrics",
    description="Recompute profit, customer LTV and product performance",
    retries=1,
    retry_delay_seconds=60,
)
async def metrics_task(tenant: str, database_url: Optional[str] = None) -> list:
    logger = get_run_logger()

    store = await _open_store(database_url)
    try:
        results = await MetricsJobRunner(store).run_all(tenant)
    finally:
        await close_database()

    for result in results:
        logger.info(f"{result.job}: success={result.success}, processed={result.processed_count}")
    failed = [result for result in results if not result.success]
    if failed:
        raise JobFailed(failed[0].job, tenant, failed[0].error)
    return [result.to_payload() for result in results]


@task(
    name="cleanup_tenant",
    description="Delete every record a shop owns and verify",
    retries=2,
    retry_delay_seconds=exponential_backoff(backoff_factor=10),
)
async def cleanup_task(tenant: str, reason: Optional[str] = None, database_url: Optional[str] = None) -> dict:
    logger = get_run_logger()

    store = await _open_store(database_url)
    try:
        if reason is not None and await store.get_tenant_record(tenant) is not None:
            await TenantService(store, get_cipher()).deactivate(tenant, reason)
        result = await CleanupOrchestrator(store, tenant).run()
    finally:
        await close_database()

    logger.info(f"Cleanup for {tenant}: deleted={result.processed_count}, verified={result.verified}")
    if not result.success:
        raise JobFailed(result.job, tenant, result.error)
    return result.to_payload()


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="day1_sync",
    description="Initial data sync for a newly installed shop",
)
async def day1_sync_flow(tenant: str, database_url: Optional[str] = None) -> dict:
    """
    Day-1 sync pipeline.

    Steps:
    1. Ingest the shop's catalog, customers, orders and refunds
    2. Recompute derived metrics once ingestion succeeded
    """
    logger = get_run_logger()
    logger.info(f"Starting Day-1 sync for {tenant}")
    return await day1_sync_task(tenant, database_url)


@flow(
    name="metrics_recompute",
    description="Recompute a shop's derived metrics",
)
async def metrics_flow(tenant: str, database_url: Optional[str] = None) -> list:
    return await metrics_task(tenant, database_url)


@flow(
    name="tenant_cleanup",
    description="Remove a shop's data after uninstall",
)
async def cleanup_flow(tenant: str, reason: Optional[str] = "uninstalled", database_url: Optional[str] = None) -> dict:
    """
    Uninstall pipeline.

    Marks the installation inactive, then deletes children before parents
    and verifies nothing is left.
    """
    logger = get_run_logger()
    logger.info(f"Starting cleanup for {tenant}")
    return await cleanup_task(tenant, reason, database_url)


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio
    import sys

    asyncio.run(day1_sync_flow(sys.argv[1]))
