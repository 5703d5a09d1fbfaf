"""
Job Result Contract

Uniform result object returned by ingestion, each metrics job and cleanup.
Callers only ever see one of these, never an exception.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStats(BaseModel):
    """Per-entity counters plus an error counter"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    products: int = 0
    customers: int = 0
    orders: int = 0
    line_items: int = 0
    refunds: int = 0
    tenant_records: int = 0
    errors: int = 0

    def increment(self, field: str, by: int = 1) -> None:
        setattr(self, field, getattr(self, field) + by)


class JobResult(BaseModel):
    """Result of one pipeline job for one tenant"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job: str
    tenant: str
    success: bool
    stats: JobStats = Field(default_factory=JobStats)
    duration_seconds: float = 0.0
    error: Optional[str] = None
    processed_count: int = 0
    verified: Optional[bool] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys for route/webhook callers"""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
