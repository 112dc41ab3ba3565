"""
Base Pydantic schemas with common fields.

These are templates that other schemas inherit from.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CamelModel(BaseModel):
    """
    Base schema for wire shapes exchanged with call providers and the dashboard.

    Fields are snake_case in Python and serialized by their camelCase alias.
    """

    model_config = ConfigDict(populate_by_name=True)


class TenantScopedRead(BaseModel):
    """
    Base schema for reading tenant-scoped data.

    Includes all the auto-generated fields like id, timestamps, etc.
    """

    id: str
    tenant_id: str
    created_at: datetime
    updated_at: datetime

    # This tells Pydantic to work with SQLAlchemy models
    model_config = ConfigDict(from_attributes=True)
