"""
AnalysisJob model.

Durable queue entry for deferred AI analysis of a call event.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import JSONType, TenantScopedModel


class JobStatus:
    """Job state machine: waiting -> active -> completed | failed."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    LIVE = [WAITING, ACTIVE]
    ALL = [WAITING, ACTIVE, COMPLETED, FAILED]


class AnalysisJob(TenantScopedModel):
    """
    analysis_jobs table.

    A failed attempt below max_attempts goes back to waiting with run_at in
    the future (reported as delayed); the last failed attempt stays in
    failed until explicit cleanup.
    """

    __tablename__ = "analysis_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    call_event_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("call_events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    queue_name: Mapped[str] = mapped_column(String(100), nullable=False, default="ai-processing")
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, default="process-call")

    # <tenant_id>:<call_event_id>; unique among live jobs
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)

    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.WAITING,
        index=True,
    )

    # lower = higher priority
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_analysis_jobs_queue_status_run_at", "queue_name", "status", "run_at"),
        Index("ix_analysis_jobs_status_lease", "status", "lease_expires_at"),
        Index(
            "uq_analysis_jobs_live_key",
            "idempotency_key",
            unique=True,
            postgresql_where=text("status IN ('waiting','active')"),
            sqlite_where=text("status IN ('waiting','active')"),
        ),
    )
