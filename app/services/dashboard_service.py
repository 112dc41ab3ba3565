"""
Dashboard reads. Everything here is precomputed by the analysis worker;
this layer only shapes tenant-scoped rows for the dashboard API.
"""

from datetime import date, datetime, timedelta
from typing import Optional

from app.db.session import Database
from app.models.call_event import AnalysisStatus
from app.repositories.call_event_repository import CallEventRepository
from app.schemas.dashboard import (
    CallEventPage,
    CallEventRead,
    CallVolume,
    CallVolumePoint,
    DashboardStats,
    OpportunityRead,
    SentimentBreakdown,
)
from app.utils.time import utc_now


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class DashboardService:
    def __init__(self, database: Database):
        self.database = database

    async def list_calls(
        self,
        tenant_id: str,
        analysis_status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> CallEventPage:
        async with self.database.session() as session:
            items, total = await CallEventRepository(session).list_for_tenant(
                tenant_id,
                analysis_status=analysis_status,
                skip=offset,
                limit=limit,
            )
            return CallEventPage(
                items=[CallEventRead.model_validate(item) for item in items],
                total=total,
                limit=limit,
                offset=offset,
            )

    async def get_call(self, tenant_id: str, call_id: str) -> Optional[CallEventRead]:
        async with self.database.session() as session:
            call = await CallEventRepository(session).get_by_id(tenant_id, call_id)
            return CallEventRead.model_validate(call) if call else None

    async def stats(self, tenant_id: str) -> DashboardStats:
        async with self.database.session() as session:
            data = await CallEventRepository(session).aggregate_stats(tenant_id)
        return DashboardStats(**data)

    async def sentiment(self, tenant_id: str) -> SentimentBreakdown:
        async with self.database.session() as session:
            repo = CallEventRepository(session)
            by_label = await repo.count_by_sentiment(tenant_id)
            by_status = await repo.count_by_analysis_status(tenant_id)
        return SentimentBreakdown(
            positive=by_label.get("positive", 0),
            neutral=by_label.get("neutral", 0),
            negative=by_label.get("negative", 0),
            pending=by_status.get(AnalysisStatus.PENDING, 0),
        )

    async def opportunities(self, tenant_id: str, min_value: int = 0, limit: int = 20) -> list[OpportunityRead]:
        async with self.database.session() as session:
            calls = await CallEventRepository(session).top_opportunities(tenant_id, min_value=min_value, limit=limit)
        return [
            OpportunityRead(
                call_id=call.id,
                caller_number=call.caller_number,
                customer_name=call.customer_name,
                opportunity_value=call.opportunity_value or 0,
                sentiment_label=call.sentiment_label,
                products_mentioned=list(call.products_mentioned or []),
                analysis_summary=call.analysis_summary,
                created_at=call.created_at,
            )
            for call in calls
        ]

    async def call_volume(self, tenant_id: str, days: int = 30) -> CallVolume:
        since = utc_now() - timedelta(days=days)
        async with self.database.session() as session:
            repo = CallEventRepository(session)
            rows = await repo.volume_by_day(tenant_id, since)
            by_status = await repo.count_by_call_status(tenant_id, since)
        return CallVolume(
            days=days,
            points=[CallVolumePoint(day=_as_date(day), calls=count) for day, count in rows if day is not None],
            by_status=by_status,
        )
