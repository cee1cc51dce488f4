from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, success_response
from reduct.domain.models import Role, Tenant, TenantInvitation, User, UserTenantRole, utc_now
from reduct.services.auth.identity import ensure_owner_role, normalize_tenant_slug
from reduct.services.tenants import (
    INVITATION_ROLES,
    INVITATION_STATUSES,
    MEMBERSHIP_STATUSES,
    TENANT_STATUSES,
    TENANT_TYPES,
    apply_invitation_status,
    clear_other_primaries,
    has_primary_tenant,
    new_invitation_token,
    refresh_member_count,
)


logger = logging.getLogger(__name__)

router = APIRouter(tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)

Owner = aliased(User)
Inviter = aliased(User)
Invitee = aliased(User)


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = None
    domain: str | None = None
    tenant_type: str = "team"
    status: str = "active"
    owner_user_id: str | None = None


class TenantUpdateRequest(BaseModel):
    name: str | None = None
    slug: str | None = None
    domain: str | None = None
    tenant_type: str | None = None
    status: str | None = None


class MembershipCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    role_id: str = Field(min_length=1)
    membership_status: str = "active"
    is_primary_tenant: bool = False
    expires_at: datetime | None = None


class MembershipUpdateRequest(BaseModel):
    role_id: str | None = None
    membership_status: str | None = None
    left_at: datetime | None = None
    is_primary_tenant: bool | None = None
    expires_at: datetime | None = None


class InvitationCreateRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    invitee_email: str = Field(min_length=3, max_length=255)
    invitee_user_id: str | None = None
    membership_role: str = "member"
    expires_at: datetime
    metadata: dict[str, Any] | None = None


class InvitationUpdateRequest(BaseModel):
    membership_role: str | None = None
    status: str | None = None
    expires_at: datetime | None = None
    metadata: dict[str, Any] | None = None


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def _require_choice(value: str, choices: tuple[str, ...], field: str) -> str:
    if value not in choices:
        raise _bad_request(f"INVALID_{field.upper()}", f"invalid {field}")
    return value


def _page(rows: list[Any], total: int, limit: int, offset: int) -> dict[str, Any]:
    return {"ok": True, "total": int(total), "limit": limit, "offset": offset, "rows": rows}


async def _commit_or_conflict(db: AsyncSession, code: str, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": code, "message": message}) from exc


def _tenant_payload(tenant: Tenant, owner: User | None = None) -> dict[str, Any]:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "slug": tenant.slug,
        "domain": tenant.domain,
        "tenant_type": tenant.tenant_type,
        "plan_tier": tenant.plan_tier,
        "status": tenant.status,
        "owner_user_id": tenant.owner_user_id,
        "owner_email": owner.email if owner is not None else None,
        "owner_name": owner.full_name if owner is not None else None,
        "current_member_count": tenant.current_member_count,
        "created_at": iso(tenant.created_at),
        "updated_at": iso(tenant.updated_at),
        "deleted_at": iso(tenant.deleted_at),
    }


def _membership_payload(
    link: UserTenantRole, user: User | None = None, tenant: Tenant | None = None, role: Role | None = None
) -> dict[str, Any]:
    return {
        "id": link.id,
        "user_id": link.user_id,
        "tenant_id": link.tenant_id,
        "role_id": link.role_id,
        "membership_status": link.membership_status,
        "is_primary_tenant": link.is_primary_tenant,
        "joined_at": iso(link.joined_at),
        "left_at": iso(link.left_at),
        "expires_at": iso(link.expires_at),
        "granted_by": link.granted_by,
        "user_email": user.email if user is not None else None,
        "user_name": user.full_name if user is not None else None,
        "tenant_name": tenant.name if tenant is not None else None,
        "tenant_slug": tenant.slug if tenant is not None else None,
        "role_name": role.name if role is not None else None,
        "role_slug": role.slug if role is not None else None,
    }


def _invitation_payload(
    invitation: TenantInvitation,
    tenant: Tenant | None = None,
    inviter: User | None = None,
    invitee: User | None = None,
) -> dict[str, Any]:
    return {
        "id": invitation.id,
        "tenant_id": invitation.tenant_id,
        "inviter_id": invitation.inviter_id,
        "invitee_email": invitation.invitee_email,
        "invitee_user_id": invitation.invitee_user_id,
        "invitation_token": invitation.invitation_token,
        "membership_role": invitation.membership_role,
        "status": invitation.status,
        "expires_at": iso(invitation.expires_at),
        "accepted_at": iso(invitation.accepted_at),
        "rejected_at": iso(invitation.rejected_at),
        "cancelled_at": iso(invitation.cancelled_at),
        "metadata": invitation.metadata_json or {},
        "tenant_name": tenant.name if tenant is not None else None,
        "tenant_slug": tenant.slug if tenant is not None else None,
        "tenant_type": tenant.tenant_type if tenant is not None else None,
        "inviter_email": inviter.email if inviter is not None else None,
        "inviter_name": inviter.full_name if inviter is not None else None,
        "invitee_name": invitee.full_name if invitee is not None else None,
        "created_at": iso(invitation.created_at),
        "updated_at": iso(invitation.updated_at),
    }


async def _live_tenant(db: AsyncSession, tenant_id: str) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None or tenant.deleted_at is not None:
        raise _not_found("TENANT_NOT_FOUND", "Tenant not found")
    return tenant


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


@router.get("/tenants", response_model=SuccessEnvelope[dict])
async def list_tenants(
    request: Request,
    q: str | None = None,
    tenant_type: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = [Tenant.deleted_at.is_(None)]
    if tenant_type:
        conditions.append(Tenant.tenant_type == tenant_type)
    if status_filter:
        conditions.append(Tenant.status == status_filter)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        conditions.append(or_(Tenant.name.ilike(pattern), Tenant.slug.ilike(pattern)))
    total = (await db.execute(select(func.count()).select_from(Tenant).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(Tenant, Owner)
            .outerjoin(Owner, Owner.id == Tenant.owner_user_id)
            .where(*conditions)
            .order_by(Tenant.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).all()
    data = [_tenant_payload(tenant, owner) for tenant, owner in rows]
    return success_response(request=request, data=_page(data, total, limit, offset))


@router.get("/tenants/{tenant_id}", response_model=SuccessEnvelope[dict])
async def get_tenant(
    request: Request,
    tenant_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await _live_tenant(db, tenant_id)
    owner = await db.get(User, tenant.owner_user_id) if tenant.owner_user_id else None
    return success_response(request=request, data=_tenant_payload(tenant, owner))


@router.post("/tenants", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_tenant(
    request: Request,
    payload: TenantCreateRequest,
    principal: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    name = payload.name.strip()
    slug = normalize_tenant_slug(payload.slug or name)
    if not name or not slug:
        raise _bad_request("INVALID_TENANT", "name and slug are required")
    owner_id = payload.owner_user_id or principal.user_id
    owner = await db.get(User, owner_id)
    if owner is None or owner.deleted_at is not None:
        raise _bad_request("INVALID_OWNER", "owner user not found")
    tenant = Tenant(
        name=name,
        slug=slug,
        domain=payload.domain,
        tenant_type=_require_choice(payload.tenant_type, TENANT_TYPES, "tenant_type"),
        status=_require_choice(payload.status, TENANT_STATUSES, "status"),
        owner_user_id=owner.id,
        current_member_count=1,
    )
    try:
        db.add(tenant)
        await db.flush()
        # The owner membership only becomes primary for users without one.
        make_primary = not await has_primary_tenant(db, owner.id)
        db.add(
            UserTenantRole(
                user_id=owner.id,
                tenant_id=tenant.id,
                role_id=await ensure_owner_role(db),
                membership_status="active",
                is_primary_tenant=make_primary,
                joined_at=utc_now(),
                granted_by=principal.user_id,
            )
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "TENANT_EXISTS", "message": "Tenant slug already exists"},
        ) from exc
    logger.info("tenant_created tenant_id=%s owner_id=%s", tenant.id, owner.id)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_tenant_payload(tenant, owner)),
    )


@router.put("/tenants/{tenant_id}", response_model=SuccessEnvelope[dict])
async def update_tenant(
    request: Request,
    tenant_id: str,
    payload: TenantUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    tenant = await _live_tenant(db, tenant_id)
    if "name" in patch:
        name = patch["name"].strip()
        if not name:
            raise _bad_request("INVALID_TENANT", "name must be non-empty")
        tenant.name = name
    if "slug" in patch:
        slug = normalize_tenant_slug(patch["slug"])
        if not slug:
            raise _bad_request("INVALID_TENANT", "slug must be non-empty")
        tenant.slug = slug
    if "domain" in patch:
        tenant.domain = patch["domain"]
    if "tenant_type" in patch:
        tenant.tenant_type = _require_choice(patch["tenant_type"], TENANT_TYPES, "tenant_type")
    if "status" in patch:
        tenant.status = _require_choice(patch["status"], TENANT_STATUSES, "status")
    await _commit_or_conflict(db, "TENANT_EXISTS", "Tenant slug already exists")
    owner = await db.get(User, tenant.owner_user_id) if tenant.owner_user_id else None
    return success_response(request=request, data=_tenant_payload(tenant, owner))


@router.delete("/tenants/{tenant_id}", response_model=SuccessEnvelope[dict])
async def delete_tenant(
    request: Request,
    tenant_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await _live_tenant(db, tenant_id)
    tenant.deleted_at = utc_now()
    await db.commit()
    logger.info("tenant_deleted tenant_id=%s", tenant_id)
    return success_response(request=request, data={"ok": True, "id": tenant_id})


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


@router.get("/tenant-memberships", response_model=SuccessEnvelope[dict])
async def list_memberships(
    request: Request,
    q: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    tenant_id: str | None = None,
    user_id: str | None = None,
    role_id: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if status_filter:
        conditions.append(
            UserTenantRole.membership_status == _require_choice(status_filter, MEMBERSHIP_STATUSES, "status")
        )
    if tenant_id:
        conditions.append(UserTenantRole.tenant_id == tenant_id)
    if user_id:
        conditions.append(UserTenantRole.user_id == user_id)
    if role_id:
        conditions.append(UserTenantRole.role_id == role_id)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        conditions.append(
            or_(
                User.email.ilike(pattern),
                func.coalesce(User.full_name, "").ilike(pattern),
                Tenant.name.ilike(pattern),
                Tenant.slug.ilike(pattern),
            )
        )
    base = (
        select(UserTenantRole, User, Tenant, Role)
        .join(User, User.id == UserTenantRole.user_id)
        .join(Tenant, Tenant.id == UserTenantRole.tenant_id)
        .outerjoin(Role, Role.id == UserTenantRole.role_id)
        .where(*conditions)
    )
    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    rows = (
        await db.execute(base.order_by(UserTenantRole.joined_at.desc()).limit(limit).offset(offset))
    ).all()
    data = [_membership_payload(link, user, tenant, role) for link, user, tenant, role in rows]
    return success_response(request=request, data=_page(data, total, limit, offset))


@router.post("/tenant-memberships", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_membership(
    request: Request,
    payload: MembershipCreateRequest,
    principal: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    membership_status = _require_choice(payload.membership_status, MEMBERSHIP_STATUSES, "membership_status")
    if await db.get(User, payload.user_id) is None:
        raise _not_found("USER_NOT_FOUND", "User not found")
    await _live_tenant(db, payload.tenant_id)
    if await db.get(Role, payload.role_id) is None:
        raise _bad_request("INVALID_ROLE", "role not found")
    link = UserTenantRole(
        user_id=payload.user_id,
        tenant_id=payload.tenant_id,
        role_id=payload.role_id,
        membership_status=membership_status,
        is_primary_tenant=payload.is_primary_tenant,
        joined_at=utc_now(),
        granted_by=principal.user_id,
        expires_at=payload.expires_at,
    )
    try:
        db.add(link)
        await db.flush()
        if link.is_primary_tenant:
            await clear_other_primaries(db, user_id=link.user_id, keep_id=link.id)
        await refresh_member_count(db, link.tenant_id)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "MEMBERSHIP_EXISTS", "message": "User already belongs to this tenant"},
        ) from exc
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_membership_payload(link)),
    )


@router.put("/tenant-memberships/{membership_id}", response_model=SuccessEnvelope[dict])
async def update_membership(
    request: Request,
    membership_id: str,
    payload: MembershipUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    link = await db.get(UserTenantRole, membership_id)
    if link is None:
        raise _not_found("MEMBERSHIP_NOT_FOUND", "Membership not found")
    if "role_id" in patch:
        role_id = (patch["role_id"] or "").strip()
        if not role_id or await db.get(Role, role_id) is None:
            raise _bad_request("INVALID_ROLE", "role_id must reference an existing role")
        link.role_id = role_id
    if "membership_status" in patch:
        link.membership_status = _require_choice(
            patch["membership_status"] or "", MEMBERSHIP_STATUSES, "membership_status"
        )
        if link.membership_status == "inactive" and "left_at" not in patch:
            link.left_at = utc_now()
    if "left_at" in patch:
        link.left_at = patch["left_at"]
    if "is_primary_tenant" in patch and patch["is_primary_tenant"] is not None:
        link.is_primary_tenant = patch["is_primary_tenant"]
    if "expires_at" in patch:
        link.expires_at = patch["expires_at"]
    await db.flush()
    if link.is_primary_tenant:
        await clear_other_primaries(db, user_id=link.user_id, keep_id=link.id)
    await refresh_member_count(db, link.tenant_id)
    await db.commit()
    return success_response(request=request, data=_membership_payload(link))


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.get("/tenant-invitations", response_model=SuccessEnvelope[dict])
async def list_invitations(
    request: Request,
    q: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    tenant_id: str | None = None,
    inviter_id: str | None = None,
    invitee_email: str | None = None,
    invitee_user_id: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if status_filter:
        conditions.append(TenantInvitation.status == _require_choice(status_filter, INVITATION_STATUSES, "status"))
    if tenant_id:
        conditions.append(TenantInvitation.tenant_id == tenant_id)
    if inviter_id:
        conditions.append(TenantInvitation.inviter_id == inviter_id)
    if invitee_email and invitee_email.strip():
        conditions.append(TenantInvitation.invitee_email.ilike(f"%{invitee_email.strip()}%"))
    if invitee_user_id:
        conditions.append(TenantInvitation.invitee_user_id == invitee_user_id)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        conditions.append(
            or_(
                TenantInvitation.invitee_email.ilike(pattern),
                Inviter.email.ilike(pattern),
                func.coalesce(Inviter.full_name, "").ilike(pattern),
                Tenant.name.ilike(pattern),
                Tenant.slug.ilike(pattern),
            )
        )
    base = (
        select(TenantInvitation, Tenant, Inviter, Invitee)
        .join(Tenant, Tenant.id == TenantInvitation.tenant_id)
        .outerjoin(Inviter, Inviter.id == TenantInvitation.inviter_id)
        .outerjoin(Invitee, Invitee.id == TenantInvitation.invitee_user_id)
        .where(*conditions)
    )
    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    rows = (
        await db.execute(base.order_by(TenantInvitation.created_at.desc()).limit(limit).offset(offset))
    ).all()
    data = [_invitation_payload(inv, tenant, inviter, invitee) for inv, tenant, inviter, invitee in rows]
    return success_response(request=request, data=_page(data, total, limit, offset))


@router.post("/tenant-invitations", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_invitation(
    request: Request,
    payload: InvitationCreateRequest,
    principal: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    email = payload.invitee_email.strip().lower()
    if "@" not in email:
        raise _bad_request("INVALID_EMAIL", "invitee_email must be an email address")
    tenant = await _live_tenant(db, payload.tenant_id)
    pending = (
        await db.execute(
            select(TenantInvitation.id)
            .where(
                TenantInvitation.tenant_id == tenant.id,
                TenantInvitation.invitee_email == email,
                TenantInvitation.status == "pending",
            )
            .limit(1)
        )
    ).scalar_one_or_none()
    if pending is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "INVITATION_EXISTS", "message": "A pending invitation already exists"},
        )
    invitation = TenantInvitation(
        tenant_id=tenant.id,
        inviter_id=principal.user_id,
        invitee_email=email,
        invitee_user_id=payload.invitee_user_id,
        invitation_token=new_invitation_token(),
        membership_role=_require_choice(payload.membership_role, INVITATION_ROLES, "membership_role"),
        status="pending",
        expires_at=payload.expires_at,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(invitation)
    await _commit_or_conflict(db, "INVITATION_EXISTS", "Invitation already exists")
    logger.info("tenant_invitation_created invitation_id=%s tenant_id=%s", invitation.id, tenant.id)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_invitation_payload(invitation, tenant)),
    )


@router.put("/tenant-invitations/{invitation_id}", response_model=SuccessEnvelope[dict])
async def update_invitation(
    request: Request,
    invitation_id: str,
    payload: InvitationUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    invitation = await db.get(TenantInvitation, invitation_id)
    if invitation is None:
        raise _not_found("INVITATION_NOT_FOUND", "Invitation not found")
    if "membership_role" in patch:
        invitation.membership_role = _require_choice(
            patch["membership_role"] or "", INVITATION_ROLES, "membership_role"
        )
    if "status" in patch:
        apply_invitation_status(invitation, _require_choice(patch["status"] or "", INVITATION_STATUSES, "status"))
    if "expires_at" in patch:
        if patch["expires_at"] is None:
            raise _bad_request("INVALID_EXPIRES_AT", "expires_at is required")
        invitation.expires_at = patch["expires_at"]
    if "metadata" in patch:
        invitation.metadata_json = dict(patch["metadata"] or {})
    await db.commit()
    return success_response(request=request, data=_invitation_payload(invitation))
