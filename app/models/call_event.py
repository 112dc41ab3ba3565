"""
CallEvent model.

The durable raw record of one inbound call notification. Payload columns
are written once at ingestion; the analysis block starts NULL and is
filled exactly once by the analysis worker.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import JSONType, TenantScopedModel


class AnalysisStatus:
    """Lifecycle of the analysis block."""
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"

    ALL = [PENDING, DONE, FAILED]


class CallEvent(TenantScopedModel):
    """
    call_events table - one row per upstream call id.

    The upstream id is the primary key, so redelivery of the same call
    cannot create a second row.
    """

    __tablename__ = "call_events"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="vapi")
    assistant_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    caller_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="completed")
    transcript: Mapped[str] = mapped_column(Text, nullable=False, default="")
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recording_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    raw_metadata: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Analysis block (pending -> done | failed, written once)
    analysis_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AnalysisStatus.PENDING,
        server_default=AnalysisStatus.PENDING,
    )
    sentiment_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sentiment_label: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    products_mentioned: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    issues_identified: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    opportunity_value: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    analysis_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_call_events_tenant_created", "tenant_id", "created_at"),
        Index("ix_call_events_tenant_analysis_status", "tenant_id", "analysis_status"),
    )
