"""Repository for the analysis_jobs durable queue."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, case, delete, func, literal_column, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import dialect_insert
from app.models.analysis_job import AnalysisJob, JobStatus

LIVE_STATUS_WHERE = text("status IN ('waiting','active')")


class AnalysisJobRepository:
    """Queue primitives: insert, claim with lease, transitions and counts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert_live(self, values: dict[str, Any]) -> Optional[str]:
        """
        Insert a waiting job unless a live job already holds its idempotency key.

        Returns the new job id, or None when the insert was skipped.
        """
        stmt = (
            dialect_insert(self.db, AnalysisJob)
            .values(**values)
            .on_conflict_do_nothing(
                index_elements=[AnalysisJob.idempotency_key],
                index_where=LIVE_STATUS_WHERE,
            )
            .returning(AnalysisJob.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, job_id: str) -> Optional[AnalysisJob]:
        return await self.db.get(AnalysisJob, job_id)

    async def get_live_by_key(self, idempotency_key: str) -> Optional[AnalysisJob]:
        result = await self.db.execute(
            select(AnalysisJob).where(
                and_(
                    AnalysisJob.idempotency_key == idempotency_key,
                    AnalysisJob.status.in_(JobStatus.LIVE),
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_for_call_event(self, tenant_id: str, call_event_id: str) -> list[AnalysisJob]:
        result = await self.db.execute(
            select(AnalysisJob)
            .where(
                and_(
                    AnalysisJob.tenant_id == tenant_id,
                    AnalysisJob.call_event_id == call_event_id,
                )
            )
            .order_by(AnalysisJob.enqueued_at.asc())
        )
        return list(result.scalars().all())

    async def claim_next(
        self,
        queue_name: str,
        worker_id: str,
        now: datetime,
        lease_expires_at: datetime,
    ) -> Optional[AnalysisJob]:
        """
        Claim the next due waiting job (FOR UPDATE SKIP LOCKED), moving it to
        active and counting the attempt.
        """
        result = await self.db.execute(
            select(AnalysisJob)
            .where(
                and_(
                    AnalysisJob.queue_name == queue_name,
                    AnalysisJob.status == JobStatus.WAITING,
                    AnalysisJob.run_at <= now,
                )
            )
            .order_by(AnalysisJob.priority.asc(), AnalysisJob.run_at.asc(), AnalysisJob.enqueued_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        job = result.scalar_one_or_none()
        if not job:
            return None

        job.status = JobStatus.ACTIVE
        job.attempt_count = (job.attempt_count or 0) + 1
        job.locked_at = now
        job.locked_by = worker_id
        job.lease_expires_at = lease_expires_at
        await self.db.flush()
        return job

    async def list_expired_leases(self, queue_name: str, now: datetime) -> list[AnalysisJob]:
        result = await self.db.execute(
            select(AnalysisJob)
            .where(
                and_(
                    AnalysisJob.queue_name == queue_name,
                    AnalysisJob.status == JobStatus.ACTIVE,
                    or_(
                        AnalysisJob.lease_expires_at.is_(None),
                        AnalysisJob.lease_expires_at < now,
                    ),
                )
            )
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def count_by_state(self, queue_name: str, now: datetime) -> dict[str, int]:
        """Counts keyed by job state, splitting waiting jobs not yet due into 'delayed'."""
        bucket = case(
            (
                and_(AnalysisJob.status == JobStatus.WAITING, AnalysisJob.run_at > now),
                literal_column("'delayed'"),
            ),
            else_=AnalysisJob.status,
        ).label("state")
        states = select(bucket).where(AnalysisJob.queue_name == queue_name).subquery()
        result = await self.db.execute(
            select(states.c.state, func.count()).group_by(states.c.state)
        )
        return {state: int(count) for state, count in result.all()}

    async def delete_completed_before(self, queue_name: str, cutoff: datetime) -> int:
        stmt = (
            delete(AnalysisJob)
            .where(
                and_(
                    AnalysisJob.queue_name == queue_name,
                    AnalysisJob.status == JobStatus.COMPLETED,
                    AnalysisJob.finished_at < cutoff,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return int(result.rowcount or 0)

    async def delete_completed_beyond(self, queue_name: str, keep: int) -> int:
        """Keep only the newest `keep` completed jobs."""
        overflow = (
            select(AnalysisJob.id)
            .where(
                and_(
                    AnalysisJob.queue_name == queue_name,
                    AnalysisJob.status == JobStatus.COMPLETED,
                )
            )
            .order_by(AnalysisJob.finished_at.desc(), AnalysisJob.id.desc())
            .offset(keep)
        )
        stmt = (
            delete(AnalysisJob)
            .where(AnalysisJob.id.in_(overflow.scalar_subquery()))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return int(result.rowcount or 0)

    async def delete_failed(self, queue_name: str, before: Optional[datetime] = None) -> int:
        """Explicit cleanup of terminal-failed jobs."""
        filters = [AnalysisJob.queue_name == queue_name, AnalysisJob.status == JobStatus.FAILED]
        if before is not None:
            filters.append(AnalysisJob.finished_at < before)
        result = await self.db.execute(
            delete(AnalysisJob).where(and_(*filters)).execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)
