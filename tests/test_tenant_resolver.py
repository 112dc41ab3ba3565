"""Tenant resolution: subdomain extraction and lookup order."""

import pytest

from app.services.tenant_resolver import TenantResolver, extract_subdomain
from tests.conftest import make_settings


@pytest.mark.unit
@pytest.mark.parametrize(
    "host, expected",
    [
        ("localhost:3001", None),
        ("localhost", None),
        ("127.0.0.1:8000", None),
        ("10.0.0.5", None),
        ("[::1]:3001", None),
        ("foo.example.com", "foo"),
        ("Foo.Example.com:443", "foo"),
        ("foo.example.com.", "foo"),
        ("example.com", None),
        ("www.example.com", None),
        ("api.example.com", None),
        ("admin.example.com", None),
        ("app.example.com", None),
        ("a.b.example.com", "a"),
        ("", None),
        (None, None),
    ],
)
def test_extract_subdomain(host, expected):
    assert extract_subdomain(host) == expected


@pytest.mark.unit
def test_extract_subdomain_uses_configured_reserved_labels():
    assert extract_subdomain("demo.example.ai", reserved={"demo"}) is None
    assert extract_subdomain("www.example.ai", reserved={"demo"}) == "www"


@pytest.mark.db
@pytest.mark.asyncio
async def test_resolve_by_subdomain(resolver, tenants):
    tenant = await resolver.resolve(host_header="acme.example.ai")
    assert tenant is not None
    assert tenant.id == tenants["acme"]


@pytest.mark.db
@pytest.mark.asyncio
async def test_resolve_falls_back_to_assistant_id(resolver, tenants):
    # unknown subdomain, known assistant
    tenant = await resolver.resolve(host_header="nobody.example.ai", assistant_id="asst-2")
    assert tenant.id == tenants["smile"]

    tenant = await resolver.resolve(host_header="api.example.ai", assistant_id="asst-1")
    assert tenant.id == tenants["acme"]


@pytest.mark.db
@pytest.mark.asyncio
async def test_subdomain_wins_over_assistant_id(resolver, tenants):
    tenant = await resolver.resolve(host_header="smile.example.ai", assistant_id="asst-1")
    assert tenant.id == tenants["smile"]


@pytest.mark.db
@pytest.mark.asyncio
async def test_explicit_tenant_id_first(resolver, tenants):
    tenant = await resolver.resolve(
        host_header="acme.example.ai",
        assistant_id="asst-1",
        explicit_tenant_id=tenants["smile"],
    )
    assert tenant.id == tenants["smile"]


@pytest.mark.db
@pytest.mark.asyncio
async def test_unknown_explicit_id_falls_through(resolver, tenants):
    tenant = await resolver.resolve(host_header="acme.example.ai", explicit_tenant_id="missing")
    assert tenant.id == tenants["acme"]


@pytest.mark.db
@pytest.mark.asyncio
async def test_explicit_id_ignored_when_override_disabled(database, tenants):
    resolver = TenantResolver(database, make_settings(TENANT_OVERRIDE_ENABLED=False))
    assert await resolver.resolve(explicit_tenant_id=tenants["acme"]) is None


@pytest.mark.db
@pytest.mark.asyncio
async def test_not_found_is_none(resolver, tenants):
    assert await resolver.resolve() is None
    assert await resolver.resolve(host_header="localhost:3001", assistant_id="asst-unknown") is None


@pytest.mark.db
@pytest.mark.asyncio
async def test_explicit_id_ignored_in_production(database, tenants):
    resolver = TenantResolver(database, make_settings(ENVIRONMENT="production"))

    assert await resolver.resolve(explicit_tenant_id=tenants["acme"]) is None
    tenant = await resolver.resolve(host_header="acme.example.ai", explicit_tenant_id=tenants["smile"])
    assert tenant.id == tenants["acme"]


@pytest.mark.db
@pytest.mark.asyncio
async def test_event_owner_comes_from_assistant_id(resolver, tenants):
    match = await resolver.resolve_for_event("asst-2")
    assert match.tenant.id == tenants["smile"]
    assert match.hinted_tenant_id is None
    assert match.conflict is False

    match = await resolver.resolve_for_event("asst-2", host_header="smile.example.ai")
    assert match.tenant.id == tenants["smile"]
    assert match.conflict is False


@pytest.mark.db
@pytest.mark.asyncio
async def test_event_for_unknown_assistant_has_no_owner(resolver, tenants):
    match = await resolver.resolve_for_event(
        "asst-unknown",
        host_header="acme.example.ai",
        explicit_tenant_id=tenants["acme"],
    )
    assert match.tenant is None
    assert match.conflict is False


@pytest.mark.db
@pytest.mark.asyncio
async def test_event_host_naming_another_tenant_conflicts(resolver, tenants):
    match = await resolver.resolve_for_event("asst-2", host_header="acme.example.ai")
    assert match.tenant.id == tenants["smile"]
    assert match.hinted_tenant_id == tenants["acme"]
    assert match.conflict is True

    match = await resolver.resolve_for_event("asst-1", explicit_tenant_id=tenants["smile"])
    assert match.conflict is True


@pytest.mark.db
@pytest.mark.asyncio
async def test_event_override_not_checked_in_production(database, tenants):
    resolver = TenantResolver(database, make_settings(ENVIRONMENT="production"))

    match = await resolver.resolve_for_event("asst-1", explicit_tenant_id=tenants["smile"])
    assert match.tenant.id == tenants["acme"]
    assert match.conflict is False
