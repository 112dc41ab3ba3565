"""
Tenant model.

A tenant is one business. Rows are provisioned out-of-band (seed script,
admin tooling) and are read-only from the ingestion pipeline.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType, TimestampMixin


class Tenant(TimestampMixin, Base):
    """
    Tenant table - the isolation boundary for every other row.

    subdomain routes dashboard traffic; inbound_assistant_id routes
    webhook events that carry no host context.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # e.g. "taxfirm123" for taxfirm123.example.ai
    subdomain: Mapped[str] = mapped_column(
        String(63),
        nullable=False,
        unique=True,
        index=True,
    )

    # Voice assistant id used by the call provider
    inbound_assistant_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        unique=True,
        index=True,
    )

    # Drives prompt selection downstream (tax, dental, restaurant, ...)
    business_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="general",
        server_default="general",
    )

    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
        server_default="UTC",
    )

    metadata_json: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, subdomain={self.subdomain})>"
