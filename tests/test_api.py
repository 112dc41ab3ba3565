"""HTTP surface: webhook acknowledgments, health and tenant-scoped dashboard."""

import asyncio
import time

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from app.main import create_app
from app.models.call_event import CallEvent
from app.routers import health
from tests.conftest import call_payload, make_settings


@pytest_asyncio.fixture
async def client(settings, database):
    app = create_app(settings=settings, database=database)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def _post_call(client, call_id="c1", assistant_id="asst-1", **overrides):
    response = await client.post("/webhooks/vapi", json=call_payload(call_id, assistant_id, **overrides))
    assert response.status_code == 200
    return response.json()


async def _call_count(database) -> int:
    async with database.session() as session:
        return int((await session.execute(select(func.count()).select_from(CallEvent))).scalar_one())


@pytest.mark.db
@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["version"] == "2.0.0"


@pytest.mark.db
@pytest.mark.asyncio
async def test_webhook_ack_uses_camel_case(client, tenants):
    body = await _post_call(client)

    assert body["received"] is True
    assert body["callId"] == "c1"
    assert body["businessId"] == tenants["acme"]
    assert body["processingQueued"] is True
    assert body["duration"].endswith("ms")
    assert "error" not in body


@pytest.mark.db
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "provider, content, expected",
    [
        ("vapi", b"{broken", {"received": True, "error": "Invalid JSON"}),
        ("vapi", b'{"type": "status-update"}', {"received": True, "message": "Event type ignored"}),
        ("vapi", b'{"type": "call.ended"}', {"received": True, "error": "Missing call data"}),
        ("botpress", b"{}", {"received": True, "message": "Botpress webhook not implemented yet"}),
        ("twilio", b"{}", {"received": False, "error": "Unknown provider"}),
    ],
)
async def test_webhook_always_200(client, tenants, provider, content, expected):
    response = await client.post(
        f"/webhooks/{provider}",
        content=content,
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 200
    body = response.json()
    for key, value in expected.items():
        assert body[key] == value


@pytest.mark.db
@pytest.mark.asyncio
async def test_webhook_unknown_assistant(client, tenants):
    body = await _post_call(client, assistant_id="asst-nobody")
    assert body["error"] == "Unknown assistant"
    assert body["assistantId"] == "asst-nobody"


@pytest.mark.db
@pytest.mark.asyncio
async def test_webhook_unknown_assistant_on_tenant_host_not_stored(client, database, tenants):
    response = await client.post(
        "/webhooks/vapi",
        json=call_payload("c1", "asst-unregistered"),
        headers={"host": "acme.example.ai"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["error"] == "Unknown assistant"
    assert "businessId" not in body
    assert await _call_count(database) == 0


@pytest.mark.db
@pytest.mark.asyncio
async def test_webhook_foreign_assistant_on_tenant_host_not_stored(client, database, tenants):
    response = await client.post(
        "/webhooks/vapi",
        json=call_payload("c1", "asst-2"),
        headers={"host": "acme.example.ai"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["error"] == "Tenant mismatch"
    assert body["assistantId"] == "asst-2"
    assert "businessId" not in body
    assert await _call_count(database) == 0


@pytest.mark.db
@pytest.mark.asyncio
async def test_override_header_ignored_in_production(database, tenants):
    app = create_app(settings=make_settings(ENVIRONMENT="production"), database=database)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        dashboard = await http.get("/api/dashboard/tenant", headers={"X-Business-ID": tenants["acme"]})
        assert dashboard.status_code == 404

        webhook = await http.post(
            "/webhooks/vapi",
            json=call_payload("c1", "asst-1"),
            headers={"X-Business-ID": tenants["smile"]},
        )
        assert webhook.json()["businessId"] == tenants["acme"]


@pytest.mark.db
@pytest.mark.asyncio
async def test_health_reports_queue(client, tenants):
    await _post_call(client)

    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()

    assert body["status"] == "healthy"
    assert body["version"] == "2.0.0"
    assert body["environment"] == "development"
    assert body["uptime"] >= 0
    assert body["timestamp"]
    assert body["queue"]["waiting"] == 1
    assert body["checks"]["database"] == "ok"
    assert body["checks"]["queue"] == "ok"
    # schema came from create_all, not migrations
    assert body["checks"]["alembic_current"] is None
    assert body["checks"]["alembic_head_ok"] is False


@pytest.mark.db
@pytest.mark.asyncio
async def test_health_degraded_without_database(client, database):
    await database.dispose()

    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["queue"] == {"error": "Queue unavailable"}
    assert body["checks"]["database"] == "unavailable"


@pytest.mark.db
@pytest.mark.asyncio
async def test_health_bounded_when_database_hangs(client, database, settings, monkeypatch):
    async def hanging_ping():
        await asyncio.sleep(10)
        return True

    monkeypatch.setattr(database, "ping", hanging_ping)

    started = time.monotonic()
    response = await client.get("/health")
    elapsed = time.monotonic() - started

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"] == "unavailable"
    assert elapsed < settings.QUEUE_STATS_TIMEOUT_SECONDS + 2


@pytest.mark.db
@pytest.mark.asyncio
async def test_health_bounded_when_version_lookup_hangs(client, settings, tenants, monkeypatch):
    async def hanging_version(database):
        await asyncio.sleep(10)

    monkeypatch.setattr(health, "_alembic_current", hanging_version)

    started = time.monotonic()
    response = await client.get("/health")
    elapsed = time.monotonic() - started

    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["alembic_current"] is None
    assert elapsed < settings.QUEUE_STATS_TIMEOUT_SECONDS + 2


@pytest.mark.db
@pytest.mark.asyncio
async def test_queue_stats(client, tenants):
    await _post_call(client, "c1")
    await _post_call(client, "c2")

    response = await client.get("/queue/stats")
    assert response.status_code == 200
    assert response.json() == {"waiting": 2, "active": 0, "completed": 0, "failed": 0, "delayed": 0, "total": 2}


@pytest.mark.db
@pytest.mark.asyncio
async def test_dashboard_requires_tenant(client, tenants):
    response = await client.get("/api/dashboard/calls")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "tenant_not_found"


@pytest.mark.db
@pytest.mark.asyncio
async def test_dashboard_tenant_from_subdomain(client, tenants):
    response = await client.get("/api/dashboard/tenant", headers={"host": "smile.example.ai"})
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == tenants["smile"]
    assert body["business_type"] == "dental"
    assert body["timezone"] == "UTC"


@pytest.mark.db
@pytest.mark.asyncio
async def test_pending_call_has_null_analysis(client, tenants):
    await _post_call(client)

    response = await client.get("/api/dashboard/calls", headers={"X-Business-ID": tenants["acme"]})
    assert response.status_code == 200
    page = response.json()

    assert page["total"] == 1
    call = page["items"][0]
    assert call["id"] == "c1"
    assert call["analysis_status"] == "pending"
    assert call["caller_number"] == "Unknown"
    for field in ("sentiment_score", "sentiment_label", "products_mentioned", "opportunity_value", "processed_at"):
        assert call[field] is None


@pytest.mark.db
@pytest.mark.asyncio
async def test_dashboard_is_tenant_isolated(client, worker, tenants):
    await _post_call(client, "c1", "asst-1")
    await _post_call(client, "c2", "asst-2")
    await worker.run_once()
    await worker.run_once()

    acme = {"host": "acme.example.ai"}
    page = (await client.get("/api/dashboard/calls", headers=acme)).json()
    assert [item["id"] for item in page["items"]] == ["c1"]
    assert page["items"][0]["tenant_id"] == tenants["acme"]

    assert (await client.get("/api/dashboard/calls/c1", headers=acme)).status_code == 200
    other = await client.get("/api/dashboard/calls/c2", headers=acme)
    assert other.status_code == 404
    assert other.json()["error"]["code"] == "call_not_found"


@pytest.mark.db
@pytest.mark.asyncio
async def test_dashboard_aggregates(client, worker, tenants):
    await _post_call(client, "c1")
    await _post_call(client, "c2")
    await _post_call(client, "c3", duration=60)
    await worker.run_once()
    await worker.run_once()

    headers = {"X-Business-ID": tenants["acme"]}

    stats = (await client.get("/api/dashboard/stats", headers=headers)).json()
    assert stats["total_calls"] == 3
    assert stats["analyzed_calls"] == 2
    assert stats["pending_calls"] == 1
    assert stats["failed_calls"] == 0
    assert stats["average_duration_seconds"] == 100.0
    assert stats["average_sentiment"] > 0.3

    sentiment = (await client.get("/api/dashboard/sentiment", headers=headers)).json()
    assert sentiment == {"positive": 2, "neutral": 0, "negative": 0, "pending": 1}

    opportunities = (await client.get("/api/dashboard/opportunities", headers=headers)).json()
    assert len(opportunities) == 2
    assert all(item["products_mentioned"] == ["Tax Consultation"] for item in opportunities)
    assert opportunities[0]["opportunity_value"] >= opportunities[1]["opportunity_value"]

    volume = (await client.get("/api/dashboard/call-volume", headers=headers, params={"days": 7})).json()
    assert volume["days"] == 7
    assert sum(point["calls"] for point in volume["points"]) == 3
    assert volume["by_status"] == {"completed": 3}


@pytest.mark.db
@pytest.mark.asyncio
async def test_list_calls_filters_by_analysis_status(client, worker, tenants):
    await _post_call(client, "c1")
    await _post_call(client, "c2")
    await worker.run_once()

    headers = {"X-Business-ID": tenants["acme"]}
    done = (await client.get("/api/dashboard/calls", headers=headers, params={"analysis_status": "done"})).json()
    pending = (await client.get("/api/dashboard/calls", headers=headers, params={"analysis_status": "pending"})).json()
    assert done["total"] == 1
    assert pending["total"] == 1
    assert done["items"][0]["id"] != pending["items"][0]["id"]

    bad = await client.get("/api/dashboard/calls", headers=headers, params={"analysis_status": "weird"})
    assert bad.status_code == 422
    assert bad.json()["error"]["code"] == "invalid_analysis_status"
