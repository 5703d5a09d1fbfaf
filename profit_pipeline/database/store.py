"""
Tenant Store Adapter

Document-style access to the tenant-scoped mirror tables. Every mirrored
record is addressed by (shop, upstream_id); every call opens its own short
session so one record's failure never poisons another's write.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type

import structlog
from sqlalchemy import delete, func, inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from profit_pipeline.database.models import (
    Base,
    CustomerRecord,
    LineItemRecord,
    OrderRecord,
    ProductRecord,
    RefundRecord,
    TenantRecord,
)
from profit_pipeline.exceptions import DuplicateKeyError, StoreError, TenantNotFoundError

logger = structlog.get_logger(__name__)

Document = Dict[str, Any]


class Collection(str, Enum):
    """Tenant-scoped collections"""
    PRODUCTS = "products"
    CUSTOMERS = "customers"
    ORDERS = "orders"
    LINE_ITEMS = "line_items"
    REFUNDS = "refunds"
    TENANTS = "tenants"


COLLECTION_MODELS: Dict[Collection, Type[Base]] = {
    Collection.PRODUCTS: ProductRecord,
    Collection.CUSTOMERS: CustomerRecord,
    Collection.ORDERS: OrderRecord,
    Collection.LINE_ITEMS: LineItemRecord,
    Collection.REFUNDS: RefundRecord,
    Collection.TENANTS: TenantRecord,
}

# Columns no caller may write through the field dicts
_KEY_COLUMNS = frozenset({"id", "shop", "upstream_id"})


class TenantStore(ABC):
    """Persistence capability consumed by the pipeline"""

    @abstractmethod
    async def upsert(self, collection: Collection, tenant: str, upstream_id: str, fields: Mapping[str, Any]) -> Document:
        ...

    @abstractmethod
    async def update(self, collection: Collection, tenant: str, upstream_id: str, fields: Mapping[str, Any]) -> Document:
        ...

    @abstractmethod
    async def find_one(self, collection: Collection, tenant: str, upstream_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def find_many(
        self,
        collection: Collection,
        tenant: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    async def count(self, collection: Collection, tenant: str) -> int:
        ...

    @abstractmethod
    async def delete_many(self, collection: Collection, tenant: str) -> int:
        ...

    @abstractmethod
    async def get_tenant_record(self, tenant: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def create_tenant_record(self, tenant: str, fields: Mapping[str, Any]) -> Document:
        ...

    @abstractmethod
    async def update_tenant_record(self, tenant: str, fields: Mapping[str, Any]) -> Document:
        ...


class SQLAlchemyTenantStore(TenantStore):
    """
    TenantStore backed by SQLAlchemy async sessions.

    Works against PostgreSQL (asyncpg) in production and SQLite (aiosqlite)
    in tests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # =========================================================================
    # MIRRORED COLLECTIONS
    # =========================================================================

    async def upsert(self, collection: Collection, tenant: str, upstream_id: str, fields: Mapping[str, Any]) -> Document:
        """
        Insert the record or merge the given fields into the stored one.

        Columns absent from ``fields`` keep their stored values.

        Raises:
            DuplicateKeyError: A concurrent insert won the (shop, upstream_id) race
        """
        model = self._mirrored_model(collection)
        self._check_fields(model, fields)

        async with self._session_factory() as session:
            row = await self._select_one(session, model, tenant, upstream_id)
            if row is None:
                row = model(shop=tenant, upstream_id=upstream_id, **fields)
                session.add(row)
            else:
                self._assign(row, fields)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateKeyError(
                    f"{collection.value} record {upstream_id} already exists for {tenant}"
                ) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Failed to upsert {collection.value} {upstream_id}: {exc}") from exc
            await session.refresh(row)
            return self._to_document(row)

    async def update(self, collection: Collection, tenant: str, upstream_id: str, fields: Mapping[str, Any]) -> Document:
        """Write fields onto an existing record."""
        model = self._mirrored_model(collection)
        self._check_fields(model, fields)

        async with self._session_factory() as session:
            row = await self._select_one(session, model, tenant, upstream_id)
            if row is None:
                raise StoreError(f"{collection.value} record {upstream_id} not found for {tenant}")
            self._assign(row, fields)
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Failed to update {collection.value} {upstream_id}: {exc}") from exc
            await session.refresh(row)
            return self._to_document(row)

    async def find_one(self, collection: Collection, tenant: str, upstream_id: str) -> Optional[Document]:
        model = self._mirrored_model(collection)
        async with self._session_factory() as session:
            row = await self._select_one(session, model, tenant, upstream_id)
            return self._to_document(row) if row is not None else None

    async def find_many(
        self,
        collection: Collection,
        tenant: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Document]:
        """
        Fetch all records of a collection for a tenant.

        Args:
            filters: Column equality filters; list/tuple/set values match any member
            order_by: Column name, prefixed with "-" for descending order
        """
        model = COLLECTION_MODELS[collection]
        query = select(model).where(model.shop == tenant)

        for column_name, value in (filters or {}).items():
            column = self._column(model, column_name)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.where(column.in_(list(value)))
            elif value is None:
                query = query.where(column.is_(None))
            else:
                query = query.where(column == value)

        if order_by:
            descending = order_by.startswith("-")
            column = self._column(model, order_by.lstrip("-"))
            query = query.order_by(column.desc() if descending else column.asc(), model.id)
        else:
            query = query.order_by(model.id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_document(row) for row in result.scalars().all()]

    async def count(self, collection: Collection, tenant: str) -> int:
        model = COLLECTION_MODELS[collection]
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(model).where(model.shop == tenant)
            )
            return int(result.scalar_one())

    async def delete_many(self, collection: Collection, tenant: str) -> int:
        """Delete every record of the collection for the tenant; returns the count."""
        model = COLLECTION_MODELS[collection]
        async with self._session_factory() as session:
            try:
                result = await session.execute(delete(model).where(model.shop == tenant))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Failed to delete {collection.value} for {tenant}: {exc}") from exc
            deleted = result.rowcount or 0
            logger.debug("Deleted records", tenant=tenant, collection=collection.value, deleted=deleted)
            return deleted

    # =========================================================================
    # TENANT RECORD
    # =========================================================================

    async def get_tenant_record(self, tenant: str) -> Optional[Document]:
        async with self._session_factory() as session:
            row = await self._select_tenant(session, tenant)
            return self._to_document(row) if row is not None else None

    async def create_tenant_record(self, tenant: str, fields: Mapping[str, Any]) -> Document:
        self._check_fields(TenantRecord, fields)
        async with self._session_factory() as session:
            row = TenantRecord(shop=tenant, **fields)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateKeyError(f"Tenant record already exists for {tenant}") from exc
            await session.refresh(row)
            logger.info("Tenant record created", tenant=tenant)
            return self._to_document(row)

    async def update_tenant_record(self, tenant: str, fields: Mapping[str, Any]) -> Document:
        """
        Raises:
            TenantNotFoundError: No record exists for the shop
        """
        self._check_fields(TenantRecord, fields)
        async with self._session_factory() as session:
            row = await self._select_tenant(session, tenant)
            if row is None:
                raise TenantNotFoundError(f"No tenant record for {tenant}")
            self._assign(row, fields)
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Failed to update tenant record for {tenant}: {exc}") from exc
            await session.refresh(row)
            return self._to_document(row)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _mirrored_model(collection: Collection) -> Type[Base]:
        if collection is Collection.TENANTS:
            raise StoreError("Tenant records are accessed through the tenant record methods")
        return COLLECTION_MODELS[collection]

    @staticmethod
    def _column(model: Type[Base], name: str):
        if name not in model.__table__.columns:
            raise StoreError(f"{model.__tablename__} has no column {name!r}")
        return getattr(model, name)

    @staticmethod
    def _check_fields(model: Type[Base], fields: Mapping[str, Any]) -> None:
        columns = model.__table__.columns
        unknown = [key for key in fields if key not in columns or key in _KEY_COLUMNS]
        if unknown:
            raise StoreError(f"Cannot write {sorted(unknown)} to {model.__tablename__}")

    @staticmethod
    def _assign(row: Base, fields: Mapping[str, Any]) -> None:
        for key, value in fields.items():
            setattr(row, key, value)

    @staticmethod
    async def _select_one(session: AsyncSession, model: Type[Base], tenant: str, upstream_id: str):
        result = await session.execute(
            select(model).where(model.shop == tenant, model.upstream_id == upstream_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _select_tenant(session: AsyncSession, tenant: str) -> Optional[TenantRecord]:
        result = await session.execute(select(TenantRecord).where(TenantRecord.shop == tenant))
        return result.scalar_one_or_none()

    @staticmethod
    def _to_document(row: Base) -> Document:
        document = {}
        for attr in inspect(type(row)).column_attrs:
            value = getattr(row, attr.key)
            # SQLite drops tzinfo; everything is stored as UTC
            if isinstance(value, datetime) and value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            document[attr.key] = value
        return document
