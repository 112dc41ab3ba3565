"""
Repository for CallEvent database operations.

Every query is scoped by an explicit tenant_id, except the cross-tenant
backfill scan used by the worker.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import dialect_insert
from app.models.call_event import AnalysisStatus, CallEvent
from app.schemas.analysis import CallAnalysis
from app.utils.time import utc_now


class CallEventRepository:
    """Repository for CallEvent operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert_if_absent(self, values: dict[str, Any]) -> bool:
        """
        INSERT ... ON CONFLICT (id) DO NOTHING.

        Returns True when a new row was written, False when the id already
        existed (redelivery).
        """
        stmt = (
            dialect_insert(self.db, CallEvent)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[CallEvent.id])
            .returning(CallEvent.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_by_id(self, tenant_id: str, call_event_id: str) -> Optional[CallEvent]:
        """Get a call event by ID, scoped to tenant."""
        result = await self.db.execute(
            select(CallEvent).where(
                and_(
                    CallEvent.id == call_event_id,
                    CallEvent.tenant_id == tenant_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def apply_analysis(
        self,
        tenant_id: str,
        call_event_id: str,
        analysis: CallAnalysis,
        version: str,
        from_status: str = AnalysisStatus.PENDING,
    ) -> bool:
        """
        Write the analysis block. Only a row still in `from_status` (pending by
        default) is updated, so a second writer (duplicate job, late retry) is
        a no-op.
        """
        stmt = (
            update(CallEvent)
            .where(
                and_(
                    CallEvent.id == call_event_id,
                    CallEvent.tenant_id == tenant_id,
                    CallEvent.analysis_status == from_status,
                )
            )
            .values(
                analysis_status=AnalysisStatus.DONE,
                sentiment_score=analysis.sentiment_score,
                sentiment_label=analysis.sentiment_label,
                products_mentioned=list(analysis.products_mentioned),
                issues_identified=list(analysis.issues_identified),
                opportunity_value=analysis.opportunity_value,
                analysis_summary=analysis.summary,
                processed_at=utc_now(),
                processing_version=version,
                processing_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return (result.rowcount or 0) == 1

    async def mark_analysis_failed(self, tenant_id: str, call_event_id: str, error: str) -> bool:
        """pending -> failed once the job has exhausted its retries."""
        stmt = (
            update(CallEvent)
            .where(
                and_(
                    CallEvent.id == call_event_id,
                    CallEvent.tenant_id == tenant_id,
                    CallEvent.analysis_status == AnalysisStatus.PENDING,
                )
            )
            .values(
                analysis_status=AnalysisStatus.FAILED,
                processing_error=error[:2000],
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return (result.rowcount or 0) == 1

    async def list_pending(self, limit: int = 100, tenant_id: Optional[str] = None) -> list[CallEvent]:
        return await self.list_by_analysis_status(AnalysisStatus.PENDING, limit=limit, tenant_id=tenant_id)

    async def list_by_analysis_status(
        self,
        analysis_status: str,
        limit: int = 100,
        tenant_id: Optional[str] = None,
    ) -> list[CallEvent]:
        """Oldest call events in the given analysis state first, optionally for one tenant."""
        query = select(CallEvent).where(CallEvent.analysis_status == analysis_status)
        if tenant_id:
            query = query.where(CallEvent.tenant_id == tenant_id)
        query = query.order_by(CallEvent.created_at.asc(), CallEvent.id.asc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_for_tenant(
        self,
        tenant_id: str,
        analysis_status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[CallEvent], int]:
        """Newest first, with the total count for paging."""
        filters = [CallEvent.tenant_id == tenant_id]
        if analysis_status:
            filters.append(CallEvent.analysis_status == analysis_status)

        total_result = await self.db.execute(
            select(func.count()).select_from(CallEvent).where(and_(*filters))
        )
        total = int(total_result.scalar_one())

        result = await self.db.execute(
            select(CallEvent)
            .where(and_(*filters))
            .order_by(CallEvent.created_at.desc(), CallEvent.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def aggregate_stats(self, tenant_id: str) -> dict[str, Any]:
        result = await self.db.execute(
            select(
                func.count(CallEvent.id),
                func.avg(CallEvent.duration_seconds),
                func.avg(CallEvent.sentiment_score),
                func.avg(CallEvent.opportunity_value),
            ).where(CallEvent.tenant_id == tenant_id)
        )
        total, avg_duration, avg_sentiment, avg_opportunity = result.one()

        status_counts = await self.count_by_analysis_status(tenant_id)
        return {
            "total_calls": int(total or 0),
            "analyzed_calls": status_counts.get(AnalysisStatus.DONE, 0),
            "pending_calls": status_counts.get(AnalysisStatus.PENDING, 0),
            "failed_calls": status_counts.get(AnalysisStatus.FAILED, 0),
            "average_sentiment": _round(avg_sentiment, 3),
            "average_duration_seconds": _round(avg_duration, 1),
            "average_opportunity_value": _round(avg_opportunity, 1),
        }

    async def count_by_analysis_status(self, tenant_id: str) -> dict[str, int]:
        result = await self.db.execute(
            select(CallEvent.analysis_status, func.count(CallEvent.id))
            .where(CallEvent.tenant_id == tenant_id)
            .group_by(CallEvent.analysis_status)
        )
        return {status: int(count) for status, count in result.all()}

    async def count_by_sentiment(self, tenant_id: str) -> dict[str, int]:
        result = await self.db.execute(
            select(CallEvent.sentiment_label, func.count(CallEvent.id))
            .where(
                and_(
                    CallEvent.tenant_id == tenant_id,
                    CallEvent.analysis_status == AnalysisStatus.DONE,
                )
            )
            .group_by(CallEvent.sentiment_label)
        )
        return {label: int(count) for label, count in result.all() if label}

    async def top_opportunities(self, tenant_id: str, min_value: int = 0, limit: int = 20) -> list[CallEvent]:
        result = await self.db.execute(
            select(CallEvent)
            .where(
                and_(
                    CallEvent.tenant_id == tenant_id,
                    CallEvent.analysis_status == AnalysisStatus.DONE,
                    CallEvent.opportunity_value >= min_value,
                )
            )
            .order_by(CallEvent.opportunity_value.desc(), CallEvent.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def volume_by_day(self, tenant_id: str, since: datetime) -> list[tuple[Any, int]]:
        day = func.date(CallEvent.created_at)
        result = await self.db.execute(
            select(day, func.count(CallEvent.id))
            .where(
                and_(
                    CallEvent.tenant_id == tenant_id,
                    CallEvent.created_at >= since,
                )
            )
            .group_by(day)
            .order_by(day)
        )
        return [(row[0], int(row[1])) for row in result.all()]

    async def count_by_call_status(self, tenant_id: str, since: datetime) -> dict[str, int]:
        result = await self.db.execute(
            select(CallEvent.status, func.count(CallEvent.id))
            .where(
                and_(
                    CallEvent.tenant_id == tenant_id,
                    CallEvent.created_at >= since,
                )
            )
            .group_by(CallEvent.status)
        )
        return {status: int(count) for status, count in result.all()}


def _round(value: Any, digits: int) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), digits)
