"""
Queue schemas: job payload and aggregate counts.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from app.schemas.base import CamelModel


class JobPayload(CamelModel):
    """Data carried by an analysis job."""

    call_event_id: str = Field(..., alias="callEventId", min_length=1)
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    assistant_id: Optional[str] = Field(None, alias="assistantId")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class QueueStats(BaseModel):
    """Job counts by state. `delayed` are waiting jobs scheduled for retry."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    total: int = 0
