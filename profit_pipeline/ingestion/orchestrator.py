"""
Ingestion Orchestrator

Drives one tenant's historical sync: products, customers, orders with their
line items, then refunds per mirrored order. Products and orders are
load-bearing and fail the run; customers and refunds are enrichments whose
failure only degrades it. The run always ends in a JobResult.
"""

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import structlog
from prometheus_client import Counter

from profit_pipeline.config import Settings, get_settings
from profit_pipeline.config.logging import job_context
from profit_pipeline.database.models import SyncStatus
from profit_pipeline.database.store import Collection, TenantStore
from profit_pipeline.exceptions import (
    CredentialError,
    IngestionDeadlineExceeded,
    IngestionFailed,
    SourceError,
    StoreError,
)
from profit_pipeline.ingestion.reader import PaginatedReader
from profit_pipeline.ingestion.shopify import ShopifyRestClient
from profit_pipeline.ingestion.source import EntityType, Payload, SourceClient
from profit_pipeline.ingestion.writer import UpsertWriter
from profit_pipeline.lifecycle.installation import TenantService
from profit_pipeline.results import JobResult, JobStats
from profit_pipeline.security import CredentialCipher, get_cipher
from profit_pipeline.transformation.normalizers import EntityNormalizer

logger = structlog.get_logger(__name__)

JOB_NAME = "ingestion"

RECORDS_INGESTED = Counter(
    "profit_pipeline_records_ingested_total",
    "Upstream records processed by ingestion",
    ["entity", "status"],
)


class SyncState(str, Enum):
    """Ingestion state machine"""
    NOT_STARTED = "not_started"
    FETCHING_PRODUCTS = "fetching_products"
    FETCHING_CUSTOMERS = "fetching_customers"
    FETCHING_ORDERS = "fetching_orders"
    FETCHING_REFUNDS = "fetching_refunds"
    COMPLETED = "completed"
    FAILED = "failed"


class MetricsRunner(Protocol):
    def enqueue(self, tenant: str) -> Any:
        ...


SourceFactory = Callable[[str, str], SourceClient]


class IngestionOrchestrator:
    """
    Full historical sync for one tenant.

    Example:
        orchestrator = IngestionOrchestrator(tenant, source, store, metrics_runner=runner)
        result = await orchestrator.run()
    """

    def __init__(
        self,
        tenant: str,
        source: SourceClient,
        store: TenantStore,
        settings: Optional[Settings] = None,
        metrics_runner: Optional[MetricsRunner] = None,
    ):
        self.tenant = tenant
        self.store = store
        self.settings = settings or get_settings()
        self.metrics_runner = metrics_runner

        shopify = self.settings.shopify
        self.reader = PaginatedReader(
            source,
            tenant,
            page_timeout=shopify.page_timeout_seconds,
            max_retries=shopify.max_retries,
            backoff_seconds=shopify.retry_backoff_seconds,
            backoff_max_seconds=shopify.retry_backoff_max_seconds,
        )
        self.normalizer = EntityNormalizer(tenant)
        self.writer = UpsertWriter(store, tenant)

        self.stats = JobStats()
        self.state = SyncState.NOT_STARTED
        self.history: List[SyncState] = [SyncState.NOT_STARTED]

    def _transition(self, state: SyncState) -> None:
        logger.info("Sync state changed", previous=self.state.value, state=state.value)
        self.state = state
        self.history.append(state)

    async def run(self) -> JobResult:
        """Run the sync to a terminal state. Never raises."""
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        deadline = self.settings.pipeline.ingestion_deadline_seconds
        error: Optional[str] = None

        with job_context(self.tenant, JOB_NAME):
            logger.info("Starting historical sync")
            try:
                try:
                    await asyncio.wait_for(self._run_stages(), timeout=deadline)
                except asyncio.TimeoutError as exc:
                    raise IngestionDeadlineExceeded(
                        f"ingestion deadline of {deadline}s exceeded while {self.state.value}"
                    ) from exc
                self._transition(SyncState.COMPLETED)
            except (IngestionFailed, IngestionDeadlineExceeded) as exc:
                error = str(exc)
                logger.error("Historical sync failed", error=error)
                self._transition(SyncState.FAILED)
            except Exception as exc:
                error = f"unexpected error: {exc}"
                logger.exception("Historical sync crashed")
                self._transition(SyncState.FAILED)

            result = JobResult(
                job=JOB_NAME,
                tenant=self.tenant,
                success=error is None,
                stats=self.stats,
                duration_seconds=round(time.perf_counter() - start, 3),
                error=error,
                processed_count=self._processed_count(),
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )
            await self._record_outcome(result)

            if result.success:
                logger.info("Historical sync completed", stats=self.stats.model_dump(), duration=result.duration_seconds)
                if self.metrics_runner is not None:
                    self.metrics_runner.enqueue(self.tenant)
            return result

    def _processed_count(self) -> int:
        s = self.stats
        return s.products + s.customers + s.orders + s.line_items + s.refunds

    # =========================================================================
    # STAGES
    # =========================================================================

    async def _run_stages(self) -> None:
        self._transition(SyncState.FETCHING_PRODUCTS)
        await self._ingest_required(EntityType.PRODUCTS, self._write_product)

        self._transition(SyncState.FETCHING_CUSTOMERS)
        await self._ingest_optional(EntityType.CUSTOMERS, self._ingest_customers)

        self._transition(SyncState.FETCHING_ORDERS)
        await self._ingest_required(EntityType.ORDERS, self._write_order)

        self._transition(SyncState.FETCHING_REFUNDS)
        await self._ingest_optional(EntityType.REFUNDS, self._ingest_refunds)

    async def _ingest_required(self, entity_type: EntityType, handler: Callable[[Payload], Awaitable[None]]) -> None:
        try:
            await self._ingest_pages(entity_type, handler)
        except SourceError as exc:
            self.stats.errors += 1
            raise IngestionFailed(entity_type.value, exc) from exc

    async def _ingest_optional(self, entity_type: EntityType, stage: Callable[[], Awaitable[None]]) -> None:
        try:
            await stage()
        except Exception as exc:
            self.stats.errors += 1
            logger.warning(
                "Enrichment fetch failed, continuing without it",
                entity=entity_type.value,
                error=str(exc),
                kept=getattr(self.stats, entity_type.value),
            )

    async def _ingest_pages(self, entity_type: EntityType, handler: Callable[[Payload], Awaitable[None]]) -> None:
        async for page in self.reader.iter_pages(entity_type):
            for payload in page.items:
                await self._process(entity_type, handler, payload)
        logger.info("Entity fetch completed", entity=entity_type.value, total=getattr(self.stats, entity_type.value))

    async def _process(self, entity_type: EntityType, handler: Callable[[Payload], Awaitable[None]], payload: Payload) -> None:
        """Run one record through its handler; a failure only costs that record"""
        try:
            await handler(payload)
        except Exception as exc:
            self.stats.errors += 1
            RECORDS_INGESTED.labels(entity=entity_type.value, status="failed").inc()
            logger.warning(
                "Record write failed",
                entity=entity_type.value,
                upstream_id=payload.get("id") if isinstance(payload, dict) else None,
                error=str(exc),
            )

    def _rejected(self, entity_type: EntityType) -> None:
        self.stats.errors += 1
        RECORDS_INGESTED.labels(entity=entity_type.value, status="invalid").inc()

    def _written(self, entity_type: EntityType) -> None:
        self.stats.increment(entity_type.value)
        RECORDS_INGESTED.labels(entity=entity_type.value, status="written").inc()

    # =========================================================================
    # RECORD HANDLERS
    # =========================================================================

    async def _write_product(self, payload: Payload) -> None:
        result = self.normalizer.normalize_product(payload)
        if not result.is_valid:
            self._rejected(EntityType.PRODUCTS)
            return
        await self.writer.upsert(EntityType.PRODUCTS, result.upstream_id, result.record)
        self._written(EntityType.PRODUCTS)

    async def _ingest_customers(self) -> None:
        await self._ingest_pages(EntityType.CUSTOMERS, self._write_customer)

    async def _write_customer(self, payload: Payload) -> None:
        result = self.normalizer.normalize_customer(payload)
        if not result.is_valid:
            self._rejected(EntityType.CUSTOMERS)
            return
        await self.writer.upsert(EntityType.CUSTOMERS, result.upstream_id, result.record)
        self._written(EntityType.CUSTOMERS)

    async def _write_order(self, payload: Payload) -> None:
        result = self.normalizer.normalize_order(payload)
        if not result.is_valid:
            self._rejected(EntityType.ORDERS)
            return
        normalized = result.record
        await self.writer.upsert(EntityType.ORDERS, result.upstream_id, normalized.order)
        self._written(EntityType.ORDERS)

        for line_item in normalized.line_items:
            try:
                await self.writer.upsert(EntityType.LINE_ITEMS, line_item.upstream_id, line_item)
            except Exception as exc:
                self.stats.errors += 1
                RECORDS_INGESTED.labels(entity=EntityType.LINE_ITEMS.value, status="failed").inc()
                logger.warning(
                    "Line item write failed",
                    order_id=result.upstream_id,
                    upstream_id=line_item.upstream_id,
                    error=str(exc),
                )
            else:
                self._written(EntityType.LINE_ITEMS)

    async def _ingest_refunds(self) -> None:
        """One refunds call per mirrored order; a failed order only costs its refunds"""
        orders = await self.store.find_many(Collection.ORDERS, self.tenant)
        logger.info("Checking refunds", orders=len(orders))

        for order in orders:
            order_id = order["upstream_id"]
            try:
                refunds = await self.reader.fetch_refunds(order_id)
            except SourceError as exc:
                self.stats.errors += 1
                logger.warning("Could not fetch refunds for order", order_id=order_id, error=str(exc))
                continue

            for payload in refunds:
                await self._process(
                    EntityType.REFUNDS,
                    lambda refund, order_id=order_id: self._write_refund(refund, order_id),
                    payload,
                )
        logger.info("Entity fetch completed", entity=EntityType.REFUNDS.value, total=self.stats.refunds)

    async def _write_refund(self, payload: Payload, order_id: str) -> None:
        result = self.normalizer.normalize_refund(payload, order_id)
        if not result.is_valid:
            self._rejected(EntityType.REFUNDS)
            return
        await self.writer.upsert(EntityType.REFUNDS, result.upstream_id, result.record)
        self._written(EntityType.REFUNDS)

    # =========================================================================
    # TERMINAL ACTIONS
    # =========================================================================

    async def _record_outcome(self, result: JobResult) -> None:
        fields: Dict[str, Any] = {
            "sync_state": self.state.value,
            "synced_at": result.completed_at,
            "sync_stats": self.stats.model_dump(by_alias=True),
        }
        if result.success:
            fields.update(sync_status=SyncStatus.SYNCED.value, sync_error=None, metrics_stale=True)
        else:
            fields.update(sync_status=SyncStatus.ERROR.value, sync_error=result.error)

        try:
            await self.store.update_tenant_record(self.tenant, fields)
        except StoreError as exc:
            logger.error("Could not record sync outcome on tenant record", error=str(exc))


async def run_day1_sync(
    tenant: str,
    store: TenantStore,
    cipher: Optional[CredentialCipher] = None,
    source_factory: Optional[SourceFactory] = None,
    settings: Optional[Settings] = None,
    metrics_runner: Optional[MetricsRunner] = None,
) -> JobResult:
    """
    Day-1 sync entry point for a freshly installed shop.

    Loads and decrypts the shop's access token, builds the upstream client
    and runs the orchestrator. Never raises.
    """
    settings = settings or get_settings()

    try:
        service = TenantService(store, cipher or get_cipher())
        access_token = await service.get_access_token(tenant)
    except (CredentialError, StoreError) as exc:
        logger.error("Cannot start sync", tenant=tenant, error=str(exc))
        return JobResult(job=JOB_NAME, tenant=tenant, success=False, error=str(exc))

    if access_token is None:
        logger.error("Cannot start sync without an active installation", tenant=tenant)
        return JobResult(
            job=JOB_NAME,
            tenant=tenant,
            success=False,
            error="no active installation with an access token",
        )

    if source_factory is None:
        source = ShopifyRestClient(tenant, access_token, settings.shopify)
    else:
        source = source_factory(tenant, access_token)

    try:
        orchestrator = IngestionOrchestrator(
            tenant,
            source,
            store,
            settings=settings,
            metrics_runner=metrics_runner,
        )
        return await orchestrator.run()
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
