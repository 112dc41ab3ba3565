"""
Tenant resolution.

Maps an inbound request or event to exactly one tenant. "Not found" is an
ordinary outcome (None), never an exception.

Examples of subdomain extraction:
    taxfirm123.example.ai  -> "taxfirm123"
    localhost:3001         -> None (development)
    example.ai             -> None (root domain)
    www.example.ai         -> None (reserved)
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from app.core.config import Settings
from app.db.session import Database
from app.models.tenant import Tenant
from app.repositories.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)

DEFAULT_RESERVED_SUBDOMAINS = frozenset({"www", "api", "admin", "app"})
DEFAULT_DEV_HOST_ALIASES = frozenset({"localhost", "127.0.0.1"})


@dataclass
class EventTenantMatch:
    """Owner of an event by assistant id, plus the tenant the request itself named, if any."""

    tenant: Optional[Tenant]
    hinted_tenant_id: Optional[str] = None

    @property
    def conflict(self) -> bool:
        return (
            self.tenant is not None
            and self.hinted_tenant_id is not None
            and self.hinted_tenant_id != self.tenant.id
        )


def _strip_port(host: str) -> str:
    if host.startswith("["):
        # IPv6 literal, e.g. [::1]:3001
        return host[1:].split("]", 1)[0]
    return host.split(":", 1)[0]


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def extract_subdomain(
    hostname: Optional[str],
    reserved: Iterable[str] = DEFAULT_RESERVED_SUBDOMAINS,
    dev_aliases: Iterable[str] = DEFAULT_DEV_HOST_ALIASES,
) -> Optional[str]:
    """Return the tenant label of a Host header value, or None."""
    if not hostname:
        return None

    host = _strip_port(hostname.strip().lower()).rstrip(".")
    if not host or host in set(dev_aliases) or _is_ip_address(host):
        return None

    parts = host.split(".")
    # <label>.<domain>.<tld>
    if len(parts) < 3 or not parts[0]:
        return None

    label = parts[0]
    if label in set(reserved):
        return None
    return label


class TenantResolver:
    """
    Resolve the tenant of a dashboard request, first match wins:

    1. explicit tenant id (development/testing override; never in production)
    2. subdomain of the Host header
    3. inbound assistant id, when the caller has one

    Provider events go through resolve_for_event, where the assistant id decides.
    """

    def __init__(self, database: Database, settings: Settings):
        self.database = database
        self.settings = settings

    def extract_subdomain(self, host_header: Optional[str]) -> Optional[str]:
        return extract_subdomain(
            host_header,
            reserved=self.settings.reserved_subdomains,
            dev_aliases=self.settings.dev_host_aliases,
        )

    async def resolve(
        self,
        host_header: Optional[str] = None,
        assistant_id: Optional[str] = None,
        explicit_tenant_id: Optional[str] = None,
    ) -> Optional[Tenant]:
        async with self.database.session() as session:
            directory = TenantRepository(session)

            if explicit_tenant_id and self.settings.tenant_override_allowed:
                tenant = await directory.get_by_id(explicit_tenant_id.strip())
                if tenant:
                    return tenant
                logger.warning("Explicit tenant id %s did not match any tenant", explicit_tenant_id)

            subdomain = self.extract_subdomain(host_header)
            if subdomain:
                tenant = await directory.get_by_subdomain(subdomain)
                if tenant:
                    return tenant
                logger.info("No tenant for subdomain %s", subdomain)

            if assistant_id:
                tenant = await directory.get_by_assistant_id(assistant_id)
                if tenant:
                    return tenant

        return None

    async def resolve_for_event(
        self,
        assistant_id: str,
        host_header: Optional[str] = None,
        explicit_tenant_id: Optional[str] = None,
    ) -> EventTenantMatch:
        """
        Resolve the owner of a provider event. The event's assistant id is
        authoritative; a tenant named by the override header or the Host
        subdomain is only checked against it.
        """
        async with self.database.session() as session:
            directory = TenantRepository(session)

            tenant = await directory.get_by_assistant_id(assistant_id)
            if tenant is None:
                return EventTenantMatch(tenant=None)

            hinted = None
            if explicit_tenant_id and self.settings.tenant_override_allowed:
                hinted = await directory.get_by_id(explicit_tenant_id.strip())
            if hinted is None:
                subdomain = self.extract_subdomain(host_header)
                if subdomain:
                    hinted = await directory.get_by_subdomain(subdomain)

        return EventTenantMatch(tenant=tenant, hinted_tenant_id=hinted.id if hinted else None)
