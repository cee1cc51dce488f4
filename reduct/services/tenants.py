from __future__ import annotations

from datetime import datetime
import logging
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import Tenant, TenantInvitation, UserTenantRole, utc_now


logger = logging.getLogger(__name__)

TENANT_TYPES = ("personal", "team", "group")
TENANT_STATUSES = ("active", "inactive", "suspended")
MEMBERSHIP_STATUSES = ("active", "inactive", "suspended", "pending")
INVITATION_STATUSES = ("pending", "accepted", "rejected", "expired", "cancelled")
INVITATION_ROLES = ("owner", "admin", "member", "viewer")

# Status transitions that stamp a timestamp column on the invitation.
_INVITATION_STAMPS = {
    "accepted": "accepted_at",
    "rejected": "rejected_at",
    "cancelled": "cancelled_at",
}


def new_invitation_token() -> str:
    return str(uuid4())


async def refresh_member_count(session: AsyncSession, tenant_id: str) -> int:
    """Recount distinct active members and store the result on the tenant."""
    count = (
        await session.execute(
            select(func.count(func.distinct(UserTenantRole.user_id))).where(
                UserTenantRole.tenant_id == tenant_id,
                UserTenantRole.membership_status == "active",
            )
        )
    ).scalar_one()
    await session.execute(update(Tenant).where(Tenant.id == tenant_id).values(current_member_count=int(count)))
    return int(count)


async def clear_other_primaries(session: AsyncSession, *, user_id: str, keep_id: str) -> None:
    # A user has at most one primary tenant.
    await session.execute(
        update(UserTenantRole)
        .where(UserTenantRole.user_id == user_id, UserTenantRole.id != keep_id)
        .values(is_primary_tenant=False)
    )


async def has_primary_tenant(session: AsyncSession, user_id: str) -> bool:
    found = (
        await session.execute(
            select(UserTenantRole.id)
            .where(UserTenantRole.user_id == user_id, UserTenantRole.is_primary_tenant.is_(True))
            .limit(1)
        )
    ).scalar_one_or_none()
    return found is not None


def apply_invitation_status(invitation: TenantInvitation, status: str, now: datetime | None = None) -> None:
    invitation.status = status
    column = _INVITATION_STAMPS.get(status)
    if column is not None:
        setattr(invitation, column, now or utc_now())
    logger.info("tenant_invitation_status invitation_id=%s status=%s", invitation.id, status)
