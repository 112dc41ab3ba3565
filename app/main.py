"""
Main FastAPI application.

This is the entry point for the API server.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import Settings, get_settings
from app.core.logging_config import configure_logging
from app.db.session import Database
from app.errors import AppError, app_error_handler
from app.routers import dashboard, health, webhooks
from app.services.dashboard_service import DashboardService
from app.services.event_ingestor import EventIngestor
from app.services.job_dispatcher import JobDispatcher
from app.services.tenant_resolver import TenantResolver

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: connect the database before the first request.
    Shutdown: drain pooled connections (only when this app created them).
    """
    settings: Settings = app.state.settings
    configure_logging(settings.LOG_LEVEL)
    app.state.database.connect()
    app.state.started_at = time.monotonic()
    logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)

    yield

    logger.info("Shutting down %s...", settings.APP_NAME)
    if app.state.owns_database:
        await app.state.database.dispose()


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """
    Build the application with its process-scoped components.

    Tests pass their own settings and an already-connected database.
    """
    settings = settings or get_settings()
    owns_database = database is None
    database = database or Database(settings.DATABASE_URL, echo=settings.DEBUG)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Multi-tenant call webhook ingestion and analysis pipeline",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    dispatcher = JobDispatcher(database, settings)
    resolver = TenantResolver(database, settings)

    app.state.settings = settings
    app.state.database = database
    app.state.owns_database = owns_database
    app.state.dispatcher = dispatcher
    app.state.resolver = resolver
    app.state.ingestor = EventIngestor(database, dispatcher, resolver, settings)
    app.state.dashboard = DashboardService(database)
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(webhooks.router)
    app.include_router(dashboard.router)

    @app.get("/")
    async def root():
        return {"name": settings.APP_NAME, "version": settings.APP_VERSION}

    return app


app = create_app()
