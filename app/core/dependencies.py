"""
FastAPI dependency accessors.

Process-scoped components are created in the application lifespan and kept
on app.state; these helpers hand them to route handlers.
"""

from fastapi import Depends, Request

from app.core.config import Settings
from app.db.session import Database
from app.errors import AppError
from app.models.tenant import Tenant
from app.services.dashboard_service import DashboardService
from app.services.event_ingestor import EventIngestor
from app.services.job_dispatcher import JobDispatcher
from app.services.tenant_resolver import TenantResolver


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


def get_resolver(request: Request) -> TenantResolver:
    return request.app.state.resolver


def get_ingestor(request: Request) -> EventIngestor:
    return request.app.state.ingestor


def get_dashboard_service(request: Request) -> DashboardService:
    return request.app.state.dashboard


async def get_current_tenant(
    request: Request,
    resolver: TenantResolver = Depends(get_resolver),
    settings: Settings = Depends(get_app_settings),
) -> Tenant:
    """
    Resolve the tenant for a dashboard request from the Host header, or the
    override header in development.

    Raises:
        AppError: 404 tenant_not_found when nothing matches
    """
    host = request.headers.get("host")
    explicit = request.headers.get(settings.TENANT_OVERRIDE_HEADER)

    tenant = await resolver.resolve(host_header=host, explicit_tenant_id=explicit)
    if tenant is None:
        raise AppError(
            404,
            "tenant_not_found",
            "No tenant matches this request",
            {"host": host},
        )
    return tenant
