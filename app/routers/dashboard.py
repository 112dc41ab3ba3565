"""
Dashboard router - read-only, tenant-scoped views of analyzed calls.

The tenant comes from the request host (or the override header in
development); rows of other tenants are never visible.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_current_tenant, get_dashboard_service
from app.errors import raise_app_error
from app.models.call_event import AnalysisStatus
from app.models.tenant import Tenant
from app.schemas.dashboard import (
    CallEventPage,
    CallEventRead,
    CallVolume,
    DashboardStats,
    OpportunityRead,
    SentimentBreakdown,
)
from app.schemas.tenant import TenantRead
from app.services.dashboard_service import DashboardService

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/tenant", response_model=TenantRead)
async def current_tenant(tenant: Tenant = Depends(get_current_tenant)):
    """The tenant this request resolved to."""
    return tenant


@router.get("/calls", response_model=CallEventPage)
async def list_calls(
    tenant: Tenant = Depends(get_current_tenant),
    service: DashboardService = Depends(get_dashboard_service),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    analysis_status: Optional[str] = None,
):
    """
    List calls, newest first.

    Analysis fields are null while analysis_status is "pending".
    """
    if analysis_status and analysis_status not in AnalysisStatus.ALL:
        raise_app_error(
            422,
            "invalid_analysis_status",
            f"analysis_status must be one of: {', '.join(AnalysisStatus.ALL)}",
        )
    return await service.list_calls(tenant.id, analysis_status=analysis_status, limit=limit, offset=offset)


@router.get("/calls/{call_id}", response_model=CallEventRead)
async def get_call(
    call_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    service: DashboardService = Depends(get_dashboard_service),
):
    call = await service.get_call(tenant.id, call_id)
    if not call:
        raise_app_error(404, "call_not_found", f"Call {call_id} not found for this tenant")
    return call


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    tenant: Tenant = Depends(get_current_tenant),
    service: DashboardService = Depends(get_dashboard_service),
):
    return await service.stats(tenant.id)


@router.get("/sentiment", response_model=SentimentBreakdown)
async def sentiment_breakdown(
    tenant: Tenant = Depends(get_current_tenant),
    service: DashboardService = Depends(get_dashboard_service),
):
    return await service.sentiment(tenant.id)


@router.get("/opportunities", response_model=List[OpportunityRead])
async def opportunities(
    tenant: Tenant = Depends(get_current_tenant),
    service: DashboardService = Depends(get_dashboard_service),
    min_value: int = Query(0, ge=0, le=100),
    limit: int = Query(20, ge=1, le=100),
):
    """Analyzed calls ordered by opportunity value."""
    return await service.opportunities(tenant.id, min_value=min_value, limit=limit)


@router.get("/call-volume", response_model=CallVolume)
async def call_volume(
    tenant: Tenant = Depends(get_current_tenant),
    service: DashboardService = Depends(get_dashboard_service),
    days: int = Query(30, ge=1, le=365),
):
    return await service.call_volume(tenant.id, days=days)
