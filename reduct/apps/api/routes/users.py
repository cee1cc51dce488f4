from __future__ import annotations

import re
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_current_principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, success_response
from reduct.domain.models import Role, User, UserProvider, UserRole
from reduct.persistence.repos.users import (
    MEMBERSHIP_FILTERS,
    UserOverview,
    build_overviews,
    get_live_user,
    get_user_by_email,
    list_user_overviews,
    list_users_with_memberships,
    lookup_users,
    plan_tier_of,
    primary_tenants,
)
from reduct.services.audit import record_event
from reduct.services.auth.identity import create_personal_tenant, normalize_tenant_slug
from reduct.services.auth.passwords import hash_password


router = APIRouter(tags=["users"], responses=DEFAULT_ERROR_RESPONSES)

USER_PROVIDERS = ("google", "kakao", "naver", "local")
_UUID_RE = re.compile(r"^[0-9a-fA-F-]{36}$")


class UserCreateRequest(BaseModel):
    email: str | None = None
    password: str | None = None
    full_name: str | None = None
    status: str | None = None
    email_verified: bool | None = None
    role_id: str | None = None


class UserLookupRequest(BaseModel):
    ids: list[Any] = []


class UserProviderCreateRequest(BaseModel):
    user_id: str | None = None
    provider: str | None = None
    provider_user_id: str | None = None
    extra_data: Any = None


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _user_row(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "status": user.status,
        "email_verified": user.email_verified,
        "last_login_at": iso(user.last_login_at),
        "created_at": iso(user.created_at),
        "updated_at": iso(user.updated_at),
    }


def _overview_payload(overview: UserOverview) -> dict[str, Any]:
    payload = _user_row(overview.user)
    role = overview.platform_role
    tenant = overview.primary_tenant
    payload.update(
        {
            "role_id": role.id if role else None,
            "role_name": role.name if role else None,
            "role_slug": role.slug if role else None,
            "tenant_id": tenant.id if tenant else None,
            "tenant_name": tenant.name if tenant else None,
            "tenant_slug": tenant.slug if tenant else None,
            "tenant_domain": tenant.domain if tenant else None,
            "tenant_type": tenant.tenant_type if tenant else None,
            "tenant_plan_tier": plan_tier_of(tenant) if tenant else None,
            "tenant_included_seats": overview.included_seats,
        }
    )
    return payload


def _clamp_limit(limit: int, default: int, maximum: int = 200) -> int:
    if limit <= 0:
        return default
    return min(limit, maximum)


async def _require_platform_role(session: AsyncSession, role_id: str) -> Role:
    role = await session.get(Role, role_id)
    if role is None or role.scope != "platform":
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_ROLE", "Invalid role_id or not a platform role")
    return role


@router.get("/users", response_model=SuccessEnvelope[dict])
async def list_users(
    request: Request,
    q: str | None = Query(default=None, alias="search"),
    status_filter: str | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    offset = (page - 1) * limit
    overviews, total = await list_user_overviews(db, q=q, status=status_filter, offset=offset, limit=limit)
    data = {
        "users": [_overview_payload(item) for item in overviews],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }
    return success_response(request=request, data=data)


@router.post("/users", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_user(
    request: Request,
    payload: UserCreateRequest,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    email = (payload.email or "").strip().lower()
    if not email:
        raise _error(status.HTTP_400_BAD_REQUEST, "MISSING_EMAIL", "email is required")
    if not payload.password or not payload.password.strip():
        raise _error(status.HTTP_400_BAD_REQUEST, "MISSING_PASSWORD", "password is required")
    if await get_user_by_email(db, email) is not None:
        raise _error(status.HTTP_409_CONFLICT, "USER_EXISTS", "User already exists")

    full_name = (payload.full_name or "").strip()
    try:
        user = User(
            email=email,
            password_hash=hash_password(payload.password),
            full_name=full_name or email,
            status=(payload.status or "").strip() or "active",
            email_verified=bool(payload.email_verified),
        )
        db.add(user)
        await db.flush()
        tenant = await create_personal_tenant(db, user=user)
        role_id = (payload.role_id or "").strip()
        if role_id:
            await _require_platform_role(db, role_id)
            db.add(UserRole(user_id=user.id, role_id=role_id, granted_by=admin.user_id))
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _error(status.HTTP_409_CONFLICT, "USER_EXISTS", "User already exists") from exc
    except Exception:
        await db.rollback()
        raise

    await record_event(
        session=db,
        request=request,
        tenant_id=tenant.id,
        actor_type="user",
        actor_id=admin.user_id,
        actor_role=admin.platform_role,
        event_type="users.created",
        outcome="success",
        resource_type="user",
        resource_id=user.id,
        commit=True,
    )
    data = {"user": _user_row(user), "tenant_id": tenant.id}
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=success_response(request=request, data=data))


@router.post("/users/lookup", response_model=SuccessEnvelope[dict])
async def lookup(
    request: Request,
    payload: UserLookupRequest,
    _principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    cleaned: list[str] = []
    for value in payload.ids:
        candidate = value.strip() if isinstance(value, str) else ""
        if _UUID_RE.match(candidate) and candidate not in cleaned:
            cleaned.append(candidate)
    users = await lookup_users(db, cleaned)
    rows = [{"id": user.id, "email": user.email, "full_name": user.full_name} for user in users]
    return success_response(request=request, data={"ok": True, "rows": rows})


@router.get("/users/memberships", response_model=SuccessEnvelope[dict])
async def list_memberships(
    request: Request,
    q: str | None = None,
    membership: str | None = None,
    limit: int = 50,
    offset: int = Query(default=0, ge=0),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    membership = (membership or "").strip() or None
    if membership and membership not in MEMBERSHIP_FILTERS:
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_MEMBERSHIP_FILTER", "invalid membership filter")
    limit = _clamp_limit(limit, 50)
    rows, total = await list_users_with_memberships(
        db, q=(q or "").strip() or None, membership=membership, offset=offset, limit=limit
    )
    data_rows = []
    for user, memberships in rows:
        items = []
        for link, tenant, role, plan in memberships:
            items.append(
                {
                    "id": link.id,
                    "user_id": link.user_id,
                    "tenant_id": link.tenant_id,
                    "membership_status": link.membership_status or "active",
                    "joined_at": iso(link.joined_at),
                    "left_at": iso(link.left_at),
                    "is_primary_tenant": link.is_primary_tenant,
                    "granted_at": iso(link.granted_at),
                    "tenant_name": tenant.name,
                    "tenant_slug": tenant.slug,
                    "tenant_type": tenant.tenant_type,
                    "plan_tier": plan_tier_of(tenant) or (plan.tier if plan else None),
                    "included_seats": plan.included_seats if plan else 1,
                    "max_seats": plan.max_seats if plan else None,
                    "role_name": role.name if role else None,
                    "role_slug": role.slug if role else None,
                    "role_scope": role.scope if role else None,
                }
            )
        data_rows.append({"user": _user_row(user), "membership_count": len(items), "memberships": items})
    return success_response(
        request=request,
        data={"ok": True, "total": total, "limit": limit, "offset": offset, "rows": data_rows},
    )


@router.get("/users/{user_id}", response_model=SuccessEnvelope[dict])
async def get_user(
    request: Request,
    user_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await get_live_user(db, user_id)
    if user is None:
        raise _error(status.HTTP_404_NOT_FOUND, "USER_NOT_FOUND", "User not found")
    overview = (await build_overviews(db, [user]))[0]
    return success_response(request=request, data=_overview_payload(overview))


@router.put("/users/{user_id}", response_model=SuccessEnvelope[dict])
async def update_user(
    request: Request,
    user_id: str,
    payload: dict[str, Any],
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Absent keys keep their stored value; explicit nulls are ignored like absent ones.
    try:
        user = await get_live_user(db, user_id)
        if user is None:
            raise _error(status.HTTP_404_NOT_FOUND, "USER_NOT_FOUND", "User not found")
        if payload.get("full_name") is not None:
            user.full_name = payload["full_name"]
        if payload.get("status") is not None:
            user.status = payload["status"]
        if payload.get("email_verified") is not None:
            user.email_verified = bool(payload["email_verified"])

        tenant_changes: dict[str, Any] = {}
        if "tenant_name" in payload:
            name = payload["tenant_name"].strip() if isinstance(payload["tenant_name"], str) else ""
            if not name:
                raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_TENANT_NAME", "Invalid tenant_name")
            tenant_changes["name"] = name
        if "tenant_slug" in payload:
            slug = normalize_tenant_slug(payload["tenant_slug"] if isinstance(payload["tenant_slug"], str) else "")
            if not slug:
                raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_TENANT_SLUG", "Invalid tenant_slug")
            tenant_changes["slug"] = slug
        if "tenant_domain" in payload:
            domain = payload["tenant_domain"].strip() if isinstance(payload["tenant_domain"], str) else ""
            tenant_changes["domain"] = domain or None
        if tenant_changes:
            tenant = (await primary_tenants(db, [user.id])).get(user.id)
            if tenant is None:
                raise _error(status.HTTP_404_NOT_FOUND, "TENANT_NOT_FOUND", "User tenant not found")
            for field, value in tenant_changes.items():
                setattr(tenant, field, value)

        if "role_id" in payload:
            role_id = payload["role_id"]
            if role_id:
                await _require_platform_role(db, str(role_id))
            # A user holds at most one platform role.
            await db.execute(delete(UserRole).where(UserRole.user_id == user.id))
            if role_id:
                db.add(UserRole(user_id=user.id, role_id=str(role_id), granted_by=admin.user_id))
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _error(status.HTTP_409_CONFLICT, "CONFLICT", "Tenant slug already in use") from exc
    except Exception:
        await db.rollback()
        raise

    await record_event(
        session=db,
        request=request,
        tenant_id=None,
        actor_type="user",
        actor_id=admin.user_id,
        actor_role=admin.platform_role,
        event_type="users.updated",
        outcome="success",
        resource_type="user",
        resource_id=user.id,
        metadata={"fields": sorted(payload.keys())},
        commit=True,
    )
    return success_response(request=request, data=_user_row(user))


@router.get("/user-providers", response_model=SuccessEnvelope[dict])
async def list_user_providers(
    request: Request,
    q: str | None = None,
    provider: str | None = None,
    user_id: str | None = None,
    limit: int = 50,
    offset: int = Query(default=0, ge=0),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = [User.deleted_at.is_(None)]
    if provider:
        if provider not in USER_PROVIDERS:
            raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_PROVIDER", "Invalid provider")
        conditions.append(UserProvider.provider == provider)
    if user_id:
        conditions.append(UserProvider.user_id == user_id)
    if q:
        pattern = f"%{q.strip()}%"
        conditions.append(
            or_(User.email.ilike(pattern), User.full_name.ilike(pattern), UserProvider.provider_user_id.ilike(pattern))
        )
    limit = _clamp_limit(limit, 50)
    total = (
        await db.execute(
            select(func.count(UserProvider.id)).join(User, User.id == UserProvider.user_id).where(*conditions)
        )
    ).scalar_one()
    result = await db.execute(
        select(UserProvider, User)
        .join(User, User.id == UserProvider.user_id)
        .where(*conditions)
        .order_by(UserProvider.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    rows = [
        {
            "id": link.id,
            "user_id": link.user_id,
            "provider": link.provider,
            "provider_user_id": link.provider_user_id,
            "extra_data": link.extra_data or {},
            "created_at": iso(link.created_at),
            "user_email": user.email,
            "user_name": user.full_name,
        }
        for link, user in result.all()
    ]
    return success_response(
        request=request, data={"ok": True, "total": int(total), "limit": limit, "offset": offset, "rows": rows}
    )


@router.post("/user-providers", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_user_provider(
    request: Request,
    payload: UserProviderCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    user_id = (payload.user_id or "").strip()
    provider = (payload.provider or "").strip()
    provider_user_id = (payload.provider_user_id or "").strip()
    if not user_id:
        raise _error(status.HTTP_400_BAD_REQUEST, "MISSING_USER_ID", "user_id is required")
    if not provider:
        raise _error(status.HTTP_400_BAD_REQUEST, "MISSING_PROVIDER", "provider is required")
    if not provider_user_id:
        raise _error(status.HTTP_400_BAD_REQUEST, "MISSING_PROVIDER_USER_ID", "provider_user_id is required")
    if provider not in USER_PROVIDERS:
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_PROVIDER", "Invalid provider")
    extra_data = payload.extra_data if payload.extra_data else {}
    if not isinstance(extra_data, dict):
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_EXTRA_DATA", "extra_data must be object")
    if await get_live_user(db, user_id) is None:
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_USER_ID", "Invalid user_id")

    link = UserProvider(user_id=user_id, provider=provider, provider_user_id=provider_user_id, extra_data=extra_data)
    db.add(link)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _error(status.HTTP_409_CONFLICT, "PROVIDER_EXISTS", "Provider mapping already exists") from exc
    row = {
        "id": link.id,
        "user_id": link.user_id,
        "provider": link.provider,
        "provider_user_id": link.provider_user_id,
        "extra_data": link.extra_data,
        "created_at": iso(link.created_at),
    }
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data={"ok": True, "row": row}),
    )


@router.delete("/user-providers/{link_id}", response_model=SuccessEnvelope[dict])
async def delete_user_provider(
    request: Request,
    link_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await db.execute(delete(UserProvider).where(UserProvider.id == link_id))
    await db.commit()
    if not result.rowcount:
        raise _error(status.HTTP_404_NOT_FOUND, "PROVIDER_NOT_FOUND", "Provider mapping not found")
    return success_response(request=request, data={"ok": True, "id": link_id})
