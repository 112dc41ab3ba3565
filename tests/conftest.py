"""
Pytest configuration and shared fixtures.

Every db test gets a fresh in-memory SQLite database with the full schema.
"""

import os

# Settings are read at import time by app.main
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio

from app.core.config import Settings
from app.db.session import Database
from app.models.tenant import Tenant
from app.services.call_analyzer import HeuristicCallAnalyzer
from app.services.event_ingestor import EventIngestor
from app.services.job_dispatcher import JobDispatcher
from app.services.tenant_resolver import TenantResolver
from app.workers.analysis_worker import AnalysisWorker

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests, no external deps")
    config.addinivalue_line("markers", "db: runs against an in-memory SQLite database")


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": TEST_DATABASE_URL,
        "MOCK_AI": True,
        "OPENAI_API_KEY": None,
        "VAPI_WEBHOOK_SECRET": None,
        "QUEUE_STATS_TIMEOUT_SECONDS": 1.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def call_payload(call_id: str = "c1", assistant_id: str = "asst-1", **call_overrides) -> dict:
    call = {
        "id": call_id,
        "assistantId": assistant_id,
        "transcript": "Customer: I'd like to book a tax consultation. Agent: Great, thanks for calling!",
        "duration": 120,
        "status": "completed",
        "createdAt": "2024-01-01T00:00:00Z",
    }
    call.update(call_overrides)
    return {"type": "call.ended", "call": call}


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings.DATABASE_URL).connect()
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def tenants(database):
    """Two tenants so isolation can be checked."""
    rows = [
        Tenant(
            id="tenant-acme",
            name="Acme Tax",
            subdomain="acme",
            inbound_assistant_id="asst-1",
            business_type="tax",
        ),
        Tenant(
            id="tenant-smile",
            name="Smile Dental",
            subdomain="smile",
            inbound_assistant_id="asst-2",
            business_type="dental",
        ),
    ]
    async with database.session() as session:
        session.add_all(rows)
    return {"acme": "tenant-acme", "smile": "tenant-smile"}


@pytest.fixture
def dispatcher(database, settings) -> JobDispatcher:
    return JobDispatcher(database, settings)


@pytest.fixture
def resolver(database, settings) -> TenantResolver:
    return TenantResolver(database, settings)


@pytest.fixture
def ingestor(database, dispatcher, resolver, settings) -> EventIngestor:
    return EventIngestor(database, dispatcher, resolver, settings)


@pytest.fixture
def worker(database, dispatcher, settings) -> AnalysisWorker:
    return AnalysisWorker(database, dispatcher, HeuristicCallAnalyzer(), settings, worker_id="test-worker")
