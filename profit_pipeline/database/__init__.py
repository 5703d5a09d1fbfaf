"""
Database Module
"""
from .connection import (
    init_database,
    close_database,
    create_tables,
    get_db,
    get_session_factory,
    check_database_health,
)
from .models import Base, CustomerSegment, SyncStatus
from .store import Collection, SQLAlchemyTenantStore, TenantStore

__all__ = [
    "init_database",
    "close_database",
    "create_tables",
    "get_db",
    "get_session_factory",
    "check_database_health",
    "Base",
    "CustomerSegment",
    "SyncStatus",
    "Collection",
    "SQLAlchemyTenantStore",
    "TenantStore",
]
