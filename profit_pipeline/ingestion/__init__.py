"""
Data Ingestion Module
"""
from .source import EntityType, InMemorySourceClient, Page, SourceClient
from .shopify import ShopifyRestClient
from .reader import PaginatedReader
from .writer import UpsertWriter
from .orchestrator import IngestionOrchestrator, SyncState, run_day1_sync

__all__ = [
    "EntityType",
    "InMemorySourceClient",
    "Page",
    "SourceClient",
    "ShopifyRestClient",
    "PaginatedReader",
    "UpsertWriter",
    "IngestionOrchestrator",
    "SyncState",
    "run_day1_sync",
]
