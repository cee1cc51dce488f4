from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import Tenant


logger = logging.getLogger(__name__)

SYSTEM_TENANT_SLUG = "system"


async def get_system_tenant(session: AsyncSession) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.slug == SYSTEM_TENANT_SLUG))
    return result.scalar_one_or_none()


async def ensure_system_tenant(session: AsyncSession) -> str:
    """Return the platform tenant id, creating the tenant on first use.

    Platform-wide AI credentials, prompt templates and response schemas hang off
    this tenant rather than any customer tenant.
    """
    existing = await get_system_tenant(session)
    if existing is not None:
        return existing.id
    tenant = Tenant(
        slug=SYSTEM_TENANT_SLUG,
        name="System (Platform)",
        tenant_type="group",
        plan_tier="enterprise",
        status="active",
        metadata_json={"system": True},
    )
    session.add(tenant)
    try:
        await session.commit()
    except IntegrityError:
        # Another request created it concurrently.
        await session.rollback()
        existing = await get_system_tenant(session)
        if existing is None:
            raise
        return existing.id
    logger.info("system_tenant_created tenant_id=%s", tenant.id)
    return tenant.id
