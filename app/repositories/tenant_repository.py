"""
Repository for Tenant lookups (the tenant directory).

Read-only: tenants are provisioned out-of-band.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tenant import Tenant


class TenantRepository:
    """Indexed lookups of a tenant by id, subdomain or inbound assistant id."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        return await self.db.get(Tenant, tenant_id)

    async def get_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        result = await self.db.execute(
            select(Tenant).where(Tenant.subdomain == subdomain.lower())
        )
        return result.scalar_one_or_none()

    async def get_by_assistant_id(self, assistant_id: str) -> Optional[Tenant]:
        result = await self.db.execute(
            select(Tenant).where(Tenant.inbound_assistant_id == assistant_id)
        )
        return result.scalar_one_or_none()
