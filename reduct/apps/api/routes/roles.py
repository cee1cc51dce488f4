from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, success_response
from reduct.domain.models import Permission, Role
from reduct.services.audit import record_event
from reduct.services.authz import roles as role_service


router = APIRouter(tags=["roles"], responses=DEFAULT_ERROR_RESPONSES)


class RoleCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    slug: str | None = None
    description: str | None = None
    scope: str | None = None
    is_global: bool | None = None
    tenant_id: str | None = None
    permissions: list[str] | None = None


class RoleUpdateRequest(BaseModel):
    name: str | None = None
    slug: str | None = None
    description: str | None = None
    scope: str | None = None
    is_global: bool | None = None
    tenant_id: str | None = None
    permissions: list[str] | None = None


class PermissionCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    resource: str = Field(min_length=1, max_length=100)
    action: str = Field(min_length=1, max_length=50)
    description: str | None = None


def _role_payload(role: Role) -> dict[str, Any]:
    return {
        "id": role.id,
        "name": role.name,
        "slug": role.slug,
        "description": role.description,
        "scope": role.scope,
        "tenant_id": role.tenant_id,
        "is_system_role": role.is_system_role,
        "created_at": iso(role.created_at),
        "updated_at": iso(role.updated_at),
    }


def _permission_payload(permission: Permission) -> dict[str, Any]:
    return {
        "id": permission.id,
        "name": permission.name,
        "resource": permission.resource,
        "action": permission.action,
        "description": permission.description,
        "created_at": iso(permission.created_at),
    }


async def _audit_role(
    db: AsyncSession, request: Request, admin: Principal, event_type: str, role_id: str, metadata: dict[str, Any]
) -> None:
    await record_event(
        session=db,
        request=request,
        tenant_id=None,
        actor_type="user",
        actor_id=admin.user_id,
        actor_role=admin.platform_role,
        event_type=event_type,
        outcome="success",
        resource_type="role",
        resource_id=role_id,
        metadata=metadata,
        commit=True,
    )


@router.get("/roles", response_model=SuccessEnvelope[list[dict]])
async def list_roles(
    request: Request,
    scope: str | None = None,
    tenant_id: str | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await role_service.list_roles(db, scope=scope, tenant_id=tenant_id)
    return success_response(request=request, data=[_role_payload(role) for role in rows])


@router.get("/roles/{role_id}", response_model=SuccessEnvelope[dict])
async def get_role(
    request: Request,
    role_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    role = await db.get(Role, role_id)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "ROLE_NOT_FOUND", "message": "Role not found"},
        )
    payload = _role_payload(role)
    payload["permissions"] = [_permission_payload(p) for p in await role_service.role_permissions(db, role.id)]
    return success_response(request=request, data=payload)


@router.post("/roles", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_role(
    request: Request,
    payload: RoleCreateRequest,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    role = await role_service.create_role(
        db,
        name=payload.name,
        slug=payload.slug,
        description=payload.description,
        scope=role_service.resolve_scope(payload.scope, payload.is_global),
        tenant_id=payload.tenant_id,
        permission_ids=payload.permissions,
    )
    await _audit_role(db, request, admin, "roles.created", role.id, {"permissions": len(payload.permissions or [])})
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_role_payload(role)),
    )


@router.put("/roles/{role_id}", response_model=SuccessEnvelope[dict])
async def update_role(
    request: Request,
    role_id: str,
    payload: RoleUpdateRequest,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    role = await role_service.update_role(db, role_id, patch)
    await _audit_role(db, request, admin, "roles.updated", role.id, {"fields": sorted(patch.keys())})
    return success_response(request=request, data=_role_payload(role))


@router.delete("/roles/{role_id}", response_model=SuccessEnvelope[dict])
async def delete_role(
    request: Request,
    role_id: str,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await role_service.delete_role(db, role_id)
    await _audit_role(db, request, admin, "roles.deleted", role_id, {})
    return success_response(request=request, data={"message": "Role deleted successfully"})


@router.get("/permissions", response_model=SuccessEnvelope[list[dict]])
async def list_permissions(
    request: Request,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await db.execute(select(Permission).order_by(Permission.resource, Permission.action))
    return success_response(request=request, data=[_permission_payload(p) for p in result.scalars().all()])


@router.post("/permissions", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_permission(
    request: Request,
    payload: PermissionCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    permission = Permission(
        name=payload.name,
        resource=payload.resource,
        action=payload.action,
        description=payload.description,
    )
    db.add(permission)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "PERMISSION_EXISTS", "message": "Permission already exists"},
        ) from exc
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_permission_payload(permission)),
    )
