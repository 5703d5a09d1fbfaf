"""
Cleanup Orchestrator

Removes every record a tenant owns, children before parents, then verifies
that nothing is left. A failed delete step and a failed verification are
reported as different failures.
"""

import time
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import structlog

from profit_pipeline.config.logging import job_context
from profit_pipeline.database.store import Collection, TenantStore
from profit_pipeline.results import JobResult, JobStats

logger = structlog.get_logger(__name__)

JOB_NAME = "cleanup"

# Reverse dependency order
DELETION_ORDER = (
    Collection.REFUNDS,
    Collection.LINE_ITEMS,
    Collection.ORDERS,
    Collection.CUSTOMERS,
    Collection.PRODUCTS,
    Collection.TENANTS,
)

_STATS_FIELDS = {
    Collection.REFUNDS: "refunds",
    Collection.LINE_ITEMS: "line_items",
    Collection.ORDERS: "orders",
    Collection.CUSTOMERS: "customers",
    Collection.PRODUCTS: "products",
    Collection.TENANTS: "tenant_records",
}


class CleanupOrchestrator:
    """
    Full-tenant data removal, safe to re-run.

    Example:
        result = await CleanupOrchestrator(store, shop).run()
        if result.verified is False:
            ...  # something wrote data while we were deleting
    """

    def __init__(self, store: TenantStore, tenant: str):
        self.store = store
        self.tenant = tenant

    async def count_all(self) -> Dict[Collection, int]:
        return {
            collection: await self.store.count(collection, self.tenant)
            for collection in DELETION_ORDER
        }

    async def verify(self, stats: JobStats) -> Tuple[Optional[bool], Optional[str]]:
        """
        Re-count every collection after the deletes.

        Returns (verified, error); verified is None when counting itself failed.
        """
        try:
            remaining = await self.count_all()
        except Exception as exc:
            stats.errors += 1
            logger.error("Cleanup verification failed to run", error=str(exc))
            return None, f"verification could not count records: {exc}"

        leftover = sum(remaining.values())
        if leftover:
            logger.error(
                "Cleanup verification found remaining records",
                remaining={c.value: n for c, n in remaining.items() if n},
            )
            return False, f"verification failed: {leftover} records remain"
        return True, None

    async def run(self) -> JobResult:
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        stats = JobStats()
        error: Optional[str] = None
        verified: Optional[bool] = None

        with job_context(self.tenant, JOB_NAME):
            try:
                before = await self.count_all()
                logger.info(
                    "Starting tenant data cleanup",
                    **{collection.value: count for collection, count in before.items()},
                )
            except Exception as exc:
                logger.warning("Could not count records before cleanup", error=str(exc))

            for collection in DELETION_ORDER:
                try:
                    deleted = await self.store.delete_many(collection, self.tenant)
                except Exception as exc:
                    stats.errors += 1
                    error = f"failed deleting {collection.value}: {exc}"
                    logger.error("Cleanup delete step failed", collection=collection.value, error=str(exc))
                    break
                setattr(stats, _STATS_FIELDS[collection], deleted)
                logger.info("Deleted tenant records", collection=collection.value, deleted=deleted)

            if error is None:
                verified, error = await self.verify(stats)

            result = JobResult(
                job=JOB_NAME,
                tenant=self.tenant,
                success=error is None,
                stats=stats,
                duration_seconds=round(time.perf_counter() - start, 3),
                error=error,
                processed_count=sum(getattr(stats, name) for name in _STATS_FIELDS.values()),
                verified=verified,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )
            logger.info("Tenant data cleanup finished", success=result.success, verified=verified)
            return result
