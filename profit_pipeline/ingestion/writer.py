"""
Upsert Writer

Persists canonical records keyed by (tenant, upstream_id). Only raw-mirror
fields are written, so derived metrics on a stored record survive
re-ingestion.
"""

from typing import Any, Dict, List, Optional, Union

import structlog

from profit_pipeline.database.store import Collection, Document, TenantStore
from profit_pipeline.exceptions import DuplicateKeyError
from profit_pipeline.ingestion.source import EntityType
from profit_pipeline.transformation.models import CanonicalRecord
from profit_pipeline.transformation.money import to_decimal

logger = structlog.get_logger(__name__)

ENTITY_COLLECTIONS = {
    EntityType.PRODUCTS: Collection.PRODUCTS,
    EntityType.CUSTOMERS: Collection.CUSTOMERS,
    EntityType.ORDERS: Collection.ORDERS,
    EntityType.LINE_ITEMS: Collection.LINE_ITEMS,
    EntityType.REFUNDS: Collection.REFUNDS,
}

# Variant keys owned by the metrics jobs
VARIANT_DERIVED_FIELDS = ("profit_per_unit", "gross_margin")


def merge_variants(
    stored: Optional[List[Dict[str, Any]]],
    incoming: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Merge incoming raw variants with the stored ones, matched by upstream_id.

    Stored derived fields are carried over, and a stored non-zero unit cost
    wins over an incoming zero cost. Variants missing upstream are dropped.
    """
    previous_by_id = {variant.get("upstream_id"): variant for variant in stored or []}
    merged = []
    for variant in incoming:
        variant = dict(variant)
        previous = previous_by_id.get(variant.get("upstream_id"))
        if previous is not None:
            for key in VARIANT_DERIVED_FIELDS:
                if key in previous:
                    variant[key] = previous[key]
            if to_decimal(variant.get("unit_cost")) == 0 and to_decimal(previous.get("unit_cost")) > 0:
                variant["unit_cost"] = previous["unit_cost"]
        merged.append(variant)
    return merged


class UpsertWriter:
    """
    Idempotent writer for one tenant.

    Example:
        writer = UpsertWriter(store, "demo.myshopify.com")
        await writer.upsert(EntityType.PRODUCTS, product.upstream_id, product)
    """

    def __init__(self, store: TenantStore, tenant: str):
        self.store = store
        self.tenant = tenant

    async def upsert(
        self,
        entity_type: Union[EntityType, str],
        upstream_id: str,
        record: CanonicalRecord,
    ) -> Document:
        """
        Write the record's raw-mirror fields, merging into any stored record.

        A duplicate-key race with a concurrent ingestion run is retried once
        as fetch-then-update.
        """
        entity_type = EntityType(entity_type)
        collection = ENTITY_COLLECTIONS[entity_type]
        fields = record.raw_fields()

        if entity_type is EntityType.PRODUCTS:
            existing = await self.store.find_one(collection, self.tenant, upstream_id)
            if existing is not None:
                fields["variants"] = merge_variants(existing.get("variants"), fields["variants"])

        try:
            return await self.store.upsert(collection, self.tenant, upstream_id, fields)
        except DuplicateKeyError:
            logger.info(
                "Concurrent insert detected, retrying as update",
                tenant=self.tenant,
                entity=entity_type.value,
                upstream_id=upstream_id,
            )

        existing = await self.store.find_one(collection, self.tenant, upstream_id)
        if existing is None:
            raise DuplicateKeyError(
                f"{entity_type.value} {upstream_id} conflicted but could not be re-read"
            )
        if entity_type is EntityType.PRODUCTS:
            fields["variants"] = merge_variants(existing.get("variants"), record.raw_fields()["variants"])
        return await self.store.update(collection, self.tenant, upstream_id, fields)
