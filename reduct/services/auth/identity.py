from __future__ import annotations

from datetime import datetime, timezone
import re

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import Role, Tenant, User, UserRole, UserTenantRole


MAX_TENANT_SLUG_LENGTH = 24
_PERSONAL_SLUG_SUFFIX_LENGTH = 6
OWNER_ROLE_SLUG = "owner"


def slugify_tenant(value: str) -> str:
    cleaned = re.sub(r"[^a-z0-9]+", "-", value.strip().lower())
    return re.sub(r"-+", "-", cleaned).strip("-")


def normalize_tenant_slug(value: str, max_length: int = MAX_TENANT_SLUG_LENGTH) -> str:
    cleaned = slugify_tenant(value)
    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[:max_length].rstrip("-")


def build_personal_tenant_slug(name_or_email: str, user_id: str) -> str:
    # Suffix with the user id so personal slugs never collide.
    suffix = user_id.replace("-", "")[:_PERSONAL_SLUG_SUFFIX_LENGTH]
    max_base = MAX_TENANT_SLUG_LENGTH - (len(suffix) + 1)
    base = normalize_tenant_slug(name_or_email, max_base) if max_base > 0 else ""
    return f"{base}-{suffix}" if base else suffix


async def ensure_owner_role(session: AsyncSession) -> str:
    # The tenant_base owner role is seeded lazily on first signup.
    result = await session.execute(
        select(Role.id).where(Role.scope == "tenant_base", Role.slug == OWNER_ROLE_SLUG).limit(1)
    )
    role_id = result.scalar_one_or_none()
    if role_id is not None:
        return role_id
    role = Role(
        name="소유자",
        slug=OWNER_ROLE_SLUG,
        description="Tenant base role: owner",
        scope="tenant_base",
        tenant_id=None,
        is_system_role=True,
    )
    session.add(role)
    await session.flush()
    return role.id


async def create_personal_tenant(session: AsyncSession, *, user: User) -> Tenant:
    """Create the user's personal tenant and primary owner membership.

    Runs inside the caller's transaction; nothing is committed here.
    """
    owner_role_id = await ensure_owner_role(session)
    tenant_name = user.full_name or user.email
    tenant = Tenant(
        slug=build_personal_tenant_slug(tenant_name, user.id),
        name=tenant_name,
        tenant_type="personal",
        plan_tier="free",
        status="active",
        owner_user_id=user.id,
        current_member_count=1,
        metadata_json={"plan_tier": "free"},
    )
    session.add(tenant)
    await session.flush()
    session.add(
        UserTenantRole(
            user_id=user.id,
            tenant_id=tenant.id,
            role_id=owner_role_id,
            membership_status="active",
            is_primary_tenant=True,
            joined_at=datetime.now(timezone.utc),
        )
    )
    await session.flush()
    return tenant


async def get_primary_tenant_id(session: AsyncSession, user_id: str) -> str | None:
    result = await session.execute(
        select(UserTenantRole.tenant_id)
        .join(Tenant, Tenant.id == UserTenantRole.tenant_id)
        .where(
            UserTenantRole.user_id == user_id,
            UserTenantRole.membership_status == "active",
            Tenant.deleted_at.is_(None),
        )
        .order_by(
            UserTenantRole.is_primary_tenant.desc(),
            UserTenantRole.joined_at.asc(),
            UserTenantRole.granted_at.asc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_platform_role(session: AsyncSession, user_id: str) -> str | None:
    """Return the slug (or name) of the user's newest unexpired platform role."""
    now = datetime.now(timezone.utc)
    result = await session.execute(
        select(Role.slug, Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(
            UserRole.user_id == user_id,
            Role.scope == "platform",
            or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
        )
        .order_by(UserRole.granted_at.desc())
        .limit(1)
    )
    row = result.first()
    if row is None:
        return None
    return row.slug or row.name


async def ensure_platform_role(session: AsyncSession, slug: str) -> str:
    result = await session.execute(
        select(Role.id).where(Role.scope == "platform", Role.slug == slug).limit(1)
    )
    role_id = result.scalar_one_or_none()
    if role_id is not None:
        return role_id
    role = Role(
        name=slug,
        slug=slug,
        description=f"Platform role: {slug}",
        scope="platform",
        tenant_id=None,
        is_system_role=True,
    )
    session.add(role)
    await session.flush()
    return role.id


async def grant_platform_role(
    session: AsyncSession, *, user_id: str, slug: str, granted_by: str | None = None
) -> bool:
    """Attach the platform role to the user; returns False when already granted."""
    role_id = await ensure_platform_role(session, slug)
    existing = await session.execute(
        select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role_id == role_id).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        return False
    session.add(UserRole(user_id=user_id, role_id=role_id, granted_by=granted_by))
    await session.flush()
    return True
