"""
Tenant schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class TenantRead(BaseModel):
    id: str
    name: str
    subdomain: str
    inbound_assistant_id: Optional[str] = None
    business_type: str
    timezone: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
