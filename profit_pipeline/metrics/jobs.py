"""
Metrics Derivation Jobs

Three recompute-from-scratch passes over a tenant's mirrored data:

- profit_metrics: line item and order profit, refund profit impact
- customer_ltv: lifetime value, recency and segment per customer
- product_performance: sales aggregates and variant margins per product

Each pass runs its records through a BoundedExecutor and writes only
derived fields. Every job returns a JobResult; per-record failures are
counted, never raised.
"""

import asyncio
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple

import structlog
from prometheus_client import Counter, Histogram

from profit_pipeline.config import Settings, get_settings
from profit_pipeline.config.logging import job_context
from profit_pipeline.database.store import Collection, Document, TenantStore
from profit_pipeline.exceptions import StoreError
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
from profit_pipeline.metrics.executor import BoundedExecutor
from profit_pipeline.results import JobResult, JobStats
from profit_pipeline.transformation.money import ZERO, to_decimal

logger = structlog.get_logger(__name__)

METRICS_RECORDS = Counter(
    "profit_pipeline_metrics_records_total",
    "Records processed by metrics jobs",
    ["job", "status"],
)
JOB_DURATION = Histogram(
    "profit_pipeline_job_duration_seconds",
    "Metrics job duration",
    ["job"],
)

PROFIT_JOB = "profit_metrics"
CUSTOMER_LTV_JOB = "customer_ltv"
PRODUCT_PERFORMANCE_JOB = "product_performance"


async def _run_pass(
    job: str,
    tenant: str,
    settings: Settings,
    concurrency: Optional[int],
    load: Callable[[], Awaitable[List[Document]]],
    handler: Callable[[Document], Awaitable[Any]],
    stats_field: str,
    stats: Optional[JobStats] = None,
) -> JobResult:
    started_at = datetime.now(timezone.utc)
    start = time.perf_counter()
    stats = stats or JobStats()

    with job_context(tenant, job):
        logger.info("Metrics job started")
        with JOB_DURATION.labels(job=job).time():
            try:
                records = await load()
            except Exception as exc:
                logger.error("Metrics job could not load records", error=str(exc))
                return JobResult(
                    job=job,
                    tenant=tenant,
                    success=False,
                    stats=stats,
                    duration_seconds=round(time.perf_counter() - start, 3),
                    error=f"could not load records: {exc}",
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc),
                )

            executor = BoundedExecutor(
                concurrency=concurrency or settings.pipeline.metrics_concurrency,
                progress_every=settings.pipeline.metrics_progress_every,
                label=job,
            )
            outcome = await executor.map(records, handler, key=lambda record: record.get("upstream_id"))

        METRICS_RECORDS.labels(job=job, status="processed").inc(outcome.processed)
        METRICS_RECORDS.labels(job=job, status="failed").inc(outcome.errors)
        stats.increment(stats_field, outcome.processed)
        stats.errors += outcome.errors

        result = JobResult(
            job=job,
            tenant=tenant,
            success=True,
            stats=stats,
            duration_seconds=round(time.perf_counter() - start, 3),
            processed_count=outcome.processed,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Metrics job completed",
            processed=outcome.processed,
            errors=outcome.errors,
            duration=result.duration_seconds,
        )
        return result


# =============================================================================
# PROFIT
# =============================================================================

def build_variant_cost_index(products: List[Document]) -> Dict[Tuple[str, str], Decimal]:
    """(product upstream id, variant upstream id) -> known unit cost"""
    index: Dict[Tuple[str, str], Decimal] = {}
    for product in products:
        for variant in product.get("variants") or []:
            unit_cost = to_decimal(variant.get("unit_cost"))
            if unit_cost > ZERO:
                index[(product["upstream_id"], str(variant.get("upstream_id")))] = unit_cost
    return index


async def compute_profit_metrics(
    store: TenantStore,
    tenant: str,
    concurrency: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> JobResult:
    """
    Recompute line item, refund and order profit for every order.

    Line item unit costs come from the matching product variant when the
    catalog knows one; otherwise the stored line item cost is kept. An
    order only gets a profit when every one of its line items has a cost.
    """
    settings = settings or get_settings()
    stats = JobStats()
    cost_index: Dict[Tuple[str, str], Decimal] = {}

    async def load() -> List[Document]:
        cost_index.update(build_variant_cost_index(await store.find_many(Collection.PRODUCTS, tenant)))
        return await store.find_many(Collection.ORDERS, tenant, order_by="-created_at")

    async def compute_order(order: Document) -> None:
        order_id = order["upstream_id"]
        line_items = await store.find_many(Collection.LINE_ITEMS, tenant, {"order_upstream_id": order_id})

        total_cost = ZERO
        cost_data_available = bool(line_items)
        unit_costs: Dict[str, Decimal] = {}
        for item in line_items:
            unit_cost = cost_index.get(
                (item.get("product_upstream_id"), item.get("variant_upstream_id")),
                to_decimal(item.get("unit_cost")),
            )
            profit = line_item_profit(item["price"], item["quantity"], item["total_discount"], unit_cost)
            await store.update(
                Collection.LINE_ITEMS,
                tenant,
                item["upstream_id"],
                {
                    "unit_cost": unit_cost,
                    "total_cost": profit.total_cost,
                    "gross_profit": profit.gross_profit,
                    "profit_margin": profit.profit_margin,
                },
            )
            stats.line_items += 1
            if profit.cost_known:
                total_cost += profit.total_cost
                unit_costs[item["upstream_id"]] = unit_cost
            else:
                cost_data_available = False

        refund_impact = ZERO
        refunds = await store.find_many(Collection.REFUNDS, tenant, {"order_upstream_id": order_id})
        for refund in refunds:
            impact = refund_profit_impact(
                refund["total_refund_amount"],
                refund.get("refund_line_items") or [],
                unit_costs,
                order_total_cost=total_cost,
            )
            await store.update(
                Collection.REFUNDS,
                tenant,
                refund["upstream_id"],
                {"cost_recovered": impact.cost_recovered, "profit_impact": impact.profit_impact},
            )
            stats.refunds += 1
            refund_impact += impact.profit_impact

        profit = order_profit(order["total_price"], total_cost, refund_impact, cost_data_available)
        await store.update(
            Collection.ORDERS,
            tenant,
            order_id,
            {
                "total_cost": profit.total_cost,
                "gross_profit": profit.gross_profit,
                "profit_margin": profit.profit_margin,
                "refund_impact": profit.refund_impact,
                "cost_data_available": profit.cost_data_available,
            },
        )

    return await _run_pass(PROFIT_JOB, tenant, settings, concurrency, load, compute_order, "orders", stats)


# =============================================================================
# CUSTOMER LTV
# =============================================================================

async def compute_customer_ltv(
    store: TenantStore,
    tenant: str,
    now: Optional[datetime] = None,
    concurrency: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> JobResult:
    """Recompute lifetime value, recency and segment for every customer."""
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)
    pipeline = settings.pipeline

    async def load() -> List[Document]:
        return await store.find_many(Collection.CUSTOMERS, tenant)

    async def compute_customer(customer: Document) -> None:
        orders = await store.find_many(
            Collection.ORDERS,
            tenant,
            {"customer_upstream_id": customer["upstream_id"]},
            order_by="created_at",
        )
        lifetime = customer_lifetime([(o.get("created_at"), o["total_price"]) for o in orders], now)
        segment = assign_segment(
            lifetime.orders_count,
            lifetime.total_spent,
            lifetime.days_since_last_order,
            vip_threshold=to_decimal(pipeline.vip_spend_threshold),
            active_days=pipeline.active_days,
            at_risk_days=pipeline.at_risk_days,
        )
        await store.update(
            Collection.CUSTOMERS,
            tenant,
            customer["upstream_id"],
            {
                "orders_count": lifetime.orders_count,
                "total_spent": lifetime.total_spent,
                "average_order_value": lifetime.average_order_value,
                "lifetime_value": lifetime.lifetime_value,
                "predicted_ltv": lifetime.predicted_ltv,
                "first_order_date": lifetime.first_order_date,
                "last_order_date": lifetime.last_order_date,
                "days_since_first_order": lifetime.days_since_first_order,
                "days_since_last_order": lifetime.days_since_last_order,
                "segment": segment.value,
            },
        )

    return await _run_pass(CUSTOMER_LTV_JOB, tenant, settings, concurrency, load, compute_customer, "customers")


# =============================================================================
# PRODUCT PERFORMANCE
# =============================================================================

def derive_variants(variants: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Copy of the variants with profit_per_unit/gross_margin recomputed"""
    derived = []
    for variant in variants:
        variant = dict(variant)
        profit = variant_profit(variant.get("price"), variant.get("unit_cost"))
        if profit is None:
            variant.pop("profit_per_unit", None)
            variant.pop("gross_margin", None)
        else:
            variant["profit_per_unit"] = str(profit.profit_per_unit)
            variant["gross_margin"] = str(profit.gross_margin)
        derived.append(variant)
    return derived


async def compute_product_performance(
    store: TenantStore,
    tenant: str,
    concurrency: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> JobResult:
    """Recompute sales aggregates and variant margins for every product."""
    settings = settings or get_settings()

    async def load() -> List[Document]:
        return await store.find_many(Collection.PRODUCTS, tenant)

    async def compute_product(product: Document) -> None:
        line_items = await store.find_many(
            Collection.LINE_ITEMS, tenant, {"product_upstream_id": product["upstream_id"]}
        )
        performance = product_performance(line_items)
        variants = derive_variants(product.get("variants") or [])
        await store.update(
            Collection.PRODUCTS,
            tenant,
            product["upstream_id"],
            {
                "total_quantity_sold": performance.total_quantity_sold,
                "total_revenue": performance.total_revenue,
                "total_profit": performance.total_profit,
                "profit_margin": performance.profit_margin,
                "average_order_value": performance.average_order_value,
                "last_sold_at": performance.last_sold_at,
                "variants": variants,
                "average_margin": average_margin(v.get("gross_margin") for v in variants),
            },
        )

    return await _run_pass(
        PRODUCT_PERFORMANCE_JOB, tenant, settings, concurrency, load, compute_product, "products"
    )


# Run order matters: product performance sums the line item profit
METRICS_JOBS: Dict[str, Callable[..., Awaitable[JobResult]]] = {
    PROFIT_JOB: compute_profit_metrics,
    CUSTOMER_LTV_JOB: compute_customer_ltv,
    PRODUCT_PERFORMANCE_JOB: compute_product_performance,
}


class MetricsJobRunner:
    """
    Runs the metrics jobs for a tenant after a successful sync and records
    the outcome on the tenant record.

    Example:
        runner = MetricsJobRunner(store)
        runner.enqueue(shop)
        await runner.drain()
    """

    def __init__(self, store: TenantStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self._tasks: Set[asyncio.Task] = set()

    async def run_all(self, tenant: str) -> List[JobResult]:
        """Run every job in order; metrics stay stale if any job or record failed."""
        results = []
        for name, job in METRICS_JOBS.items():
            try:
                results.append(await job(self.store, tenant, settings=self.settings))
            except Exception as exc:
                logger.exception("Metrics job crashed", tenant=tenant, job=name)
                results.append(JobResult(job=name, tenant=tenant, success=False, error=str(exc)))

        problems = [
            f"{result.job}: {result.error or f'{result.stats.errors} record errors'}"
            for result in results
            if not result.success or result.stats.errors
        ]
        try:
            await self.store.update_tenant_record(
                tenant,
                {
                    "metrics_stale": bool(problems),
                    "metrics_computed_at": datetime.now(timezone.utc),
                    "metrics_error": "; ".join(problems) or None,
                },
            )
        except StoreError as exc:
            logger.error("Could not record metrics outcome on tenant record", tenant=tenant, error=str(exc))
        return results

    def enqueue(self, tenant: str) -> asyncio.Task:
        """Schedule run_all on the running loop"""
        task = asyncio.get_running_loop().create_task(self.run_all(tenant))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Metrics jobs enqueued", tenant=tenant)
        return task

    async def drain(self) -> List[List[JobResult]]:
        """Wait for every enqueued run"""
        if not self._tasks:
            return []
        return list(await asyncio.gather(*list(self._tasks)))
