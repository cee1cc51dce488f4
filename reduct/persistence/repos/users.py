from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Select, and_, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import BillingPlan, BillingSubscription, Role, Tenant, User, UserRole, UserTenantRole


MEMBERSHIP_FILTERS = ("none", "has", "single", "multi")


@dataclass
class UserOverview:
    user: User
    platform_role: Role | None
    primary_tenant: Tenant | None
    included_seats: int | None = None


def _is_system(tenant: Tenant) -> bool:
    return bool((tenant.metadata_json or {}).get("system"))


def plan_tier_of(tenant: Tenant) -> str | None:
    meta = tenant.metadata_json or {}
    for key in ("plan_tier", "service_tier", "tier"):
        value = meta.get(key)
        if isinstance(value, str) and value:
            return value
    return tenant.plan_tier or None


async def get_user_by_email(session: AsyncSession, email: str, *, include_deleted: bool = False) -> User | None:
    stmt = select(User).where(func.lower(User.email) == email.strip().lower())
    if not include_deleted:
        stmt = stmt.where(User.deleted_at.is_(None))
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def get_live_user(session: AsyncSession, user_id: str) -> User | None:
    user = await session.get(User, user_id)
    if user is None or user.deleted_at is not None:
        return None
    return user


async def primary_tenants(session: AsyncSession, user_ids: list[str]) -> dict[str, Tenant]:
    """Map user id to the first active, non-system tenant membership."""
    if not user_ids:
        return {}
    result = await session.execute(
        select(UserTenantRole.user_id, Tenant)
        .join(Tenant, Tenant.id == UserTenantRole.tenant_id)
        .where(
            UserTenantRole.user_id.in_(user_ids),
            Tenant.deleted_at.is_(None),
            UserTenantRole.membership_status == "active",
        )
        .order_by(
            UserTenantRole.user_id,
            UserTenantRole.is_primary_tenant.desc(),
            UserTenantRole.joined_at.asc(),
            UserTenantRole.granted_at.asc(),
        )
    )
    mapping: dict[str, Tenant] = {}
    for user_id, tenant in result.all():
        if user_id in mapping or _is_system(tenant):
            continue
        mapping[user_id] = tenant
    return mapping


async def platform_roles(session: AsyncSession, user_ids: list[str]) -> dict[str, Role]:
    if not user_ids:
        return {}
    now = datetime.now(timezone.utc)
    result = await session.execute(
        select(UserRole.user_id, Role)
        .join(Role, Role.id == UserRole.role_id)
        .where(
            UserRole.user_id.in_(user_ids),
            Role.scope == "platform",
            or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
        )
        .order_by(UserRole.user_id, UserRole.granted_at.desc())
    )
    mapping: dict[str, Role] = {}
    for user_id, role in result.all():
        mapping.setdefault(user_id, role)
    return mapping


async def active_plans(session: AsyncSession, tenant_ids: list[str]) -> dict[str, BillingPlan]:
    # Latest non-cancelled subscription decides seats and tier per tenant.
    if not tenant_ids:
        return {}
    result = await session.execute(
        select(BillingSubscription.tenant_id, BillingPlan)
        .join(BillingPlan, BillingPlan.id == BillingSubscription.plan_id)
        .where(BillingSubscription.tenant_id.in_(tenant_ids), BillingSubscription.status != "cancelled")
        .order_by(BillingSubscription.created_at.desc())
    )
    mapping: dict[str, BillingPlan] = {}
    for tenant_id, plan in result.all():
        mapping.setdefault(tenant_id, plan)
    return mapping


def _user_search(stmt: Select, q: str | None, status: str | None) -> Select:
    stmt = stmt.where(User.deleted_at.is_(None))
    if q:
        pattern = f"%{q}%"
        stmt = stmt.where(or_(User.email.ilike(pattern), User.full_name.ilike(pattern)))
    if status:
        stmt = stmt.where(User.status == status)
    return stmt


async def list_user_overviews(
    session: AsyncSession,
    *,
    q: str | None = None,
    status: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[UserOverview], int]:
    total = (await session.execute(_user_search(select(func.count(User.id)), q, status))).scalar_one()
    stmt = _user_search(select(User), q, status).order_by(User.created_at.desc()).offset(offset).limit(limit)
    users = list((await session.execute(stmt)).scalars().all())
    return await build_overviews(session, users), int(total)


async def build_overviews(session: AsyncSession, users: list[User]) -> list[UserOverview]:
    ids = [user.id for user in users]
    tenants = await primary_tenants(session, ids)
    roles = await platform_roles(session, ids)
    plans = await active_plans(session, [tenant.id for tenant in tenants.values()])
    overviews = []
    for user in users:
        tenant = tenants.get(user.id)
        plan = plans.get(tenant.id) if tenant is not None else None
        overviews.append(
            UserOverview(
                user=user,
                platform_role=roles.get(user.id),
                primary_tenant=tenant,
                included_seats=plan.included_seats if plan is not None else (1 if tenant is not None else None),
            )
        )
    return overviews


async def lookup_users(session: AsyncSession, ids: list[str]) -> list[User]:
    if not ids:
        return []
    result = await session.execute(select(User).where(User.id.in_(ids), User.deleted_at.is_(None)))
    return list(result.scalars().all())


def _membership_count():
    return (
        select(func.count(UserTenantRole.id))
        .where(UserTenantRole.user_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )


async def list_users_with_memberships(
    session: AsyncSession,
    *,
    q: str | None = None,
    membership: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[tuple[User, list[tuple[UserTenantRole, Tenant, Role | None, BillingPlan | None]]]], int]:
    conditions = [User.deleted_at.is_(None)]
    if q:
        pattern = f"%{q}%"
        conditions.append(or_(User.email.ilike(pattern), User.full_name.ilike(pattern)))
    has_any = exists().where(UserTenantRole.user_id == User.id)
    if membership == "has":
        conditions.append(has_any)
    elif membership == "none":
        conditions.append(~has_any)
    elif membership == "single":
        conditions.append(_membership_count() == 1)
    elif membership == "multi":
        conditions.append(_membership_count() >= 2)

    where = and_(*conditions)
    total = (await session.execute(select(func.count(User.id)).where(where))).scalar_one()
    users = list(
        (
            await session.execute(
                select(User).where(where).order_by(User.created_at.desc()).offset(offset).limit(limit)
            )
        )
        .scalars()
        .all()
    )
    if not users:
        return [], int(total)

    result = await session.execute(
        select(UserTenantRole, Tenant, Role)
        .join(Tenant, Tenant.id == UserTenantRole.tenant_id)
        .outerjoin(Role, Role.id == UserTenantRole.role_id)
        .where(UserTenantRole.user_id.in_([user.id for user in users]), Tenant.deleted_at.is_(None))
        .order_by(
            UserTenantRole.user_id,
            UserTenantRole.is_primary_tenant.desc(),
            UserTenantRole.joined_at.asc(),
            UserTenantRole.granted_at.asc(),
        )
    )
    rows = result.all()
    plans = await active_plans(session, list({tenant.id for _, tenant, _ in rows}))
    grouped: dict[str, list[tuple[UserTenantRole, Tenant, Role | None, BillingPlan | None]]] = {}
    for membership_row, tenant, role in rows:
        grouped.setdefault(membership_row.user_id, []).append((membership_row, tenant, role, plans.get(tenant.id)))
    return [(user, grouped.get(user.id, [])) for user in users], int(total)
