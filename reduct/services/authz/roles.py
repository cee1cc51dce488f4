from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import Permission, Role, RolePermission, UserRole, UserTenantRole


logger = logging.getLogger(__name__)

ROLE_SCOPES = ("platform", "tenant_base", "tenant_custom")
# Platform and tenant_base roles are shared definitions owned by the platform.
SYSTEM_SCOPES = frozenset({"platform", "tenant_base"})


def _role_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def resolve_scope(scope: str | None, is_global: bool | None) -> str | None:
    # Older clients send is_global instead of an explicit scope.
    if scope is not None:
        return scope
    if is_global is None:
        return None
    return "platform" if is_global else "tenant_custom"


async def list_roles(session: AsyncSession, *, scope: str | None, tenant_id: str | None) -> list[Role]:
    if scope and scope not in ROLE_SCOPES:
        raise _role_error(status.HTTP_400_BAD_REQUEST, "INVALID_SCOPE_FILTER", "Invalid scope filter")
    stmt = select(Role)
    if tenant_id and not scope:
        # A tenant sees the shared base roles plus its own custom roles.
        stmt = stmt.where(
            or_(Role.scope == "tenant_base", (Role.scope == "tenant_custom") & (Role.tenant_id == tenant_id))
        )
    else:
        if scope:
            stmt = stmt.where(Role.scope == scope)
        if tenant_id:
            stmt = stmt.where(Role.tenant_id == tenant_id)
    result = await session.execute(stmt.order_by(Role.created_at.desc()))
    return list(result.scalars().all())


async def role_permissions(session: AsyncSession, role_id: str) -> list[Permission]:
    result = await session.execute(
        select(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role_id)
        .order_by(Permission.resource, Permission.action)
    )
    return list(result.scalars().all())


async def _replace_permissions(session: AsyncSession, role_id: str, permission_ids: list[str]) -> None:
    try:
        await _write_permissions(session, role_id, permission_ids)
    except IntegrityError as exc:
        logger.warning("role_permissions_rejected role_id=%s", role_id, exc_info=exc)
        raise _role_error(status.HTTP_400_BAD_REQUEST, "INVALID_PERMISSION_ID", "Invalid permission set") from exc


async def _write_permissions(session: AsyncSession, role_id: str, permission_ids: list[str]) -> None:
    await session.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
    for permission_id in permission_ids:
        session.add(RolePermission(role_id=role_id, permission_id=permission_id))
    # Flush per batch so constraint failures surface inside the transaction.
    await session.flush()
    if permission_ids:
        known = set(
            (await session.execute(select(Permission.id).where(Permission.id.in_(permission_ids)))).scalars().all()
        )
        missing = [pid for pid in permission_ids if pid not in known]
        if missing:
            raise _role_error(
                status.HTTP_400_BAD_REQUEST,
                "INVALID_PERMISSION_ID",
                "Unknown permission id",
            )


async def create_role(
    session: AsyncSession,
    *,
    name: str,
    slug: str | None,
    description: str | None,
    scope: str | None,
    tenant_id: str | None,
    permission_ids: list[str] | None,
) -> Role:
    """Insert a role and its permission links atomically."""
    if not scope or scope not in ROLE_SCOPES:
        raise _role_error(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_ROLE_SCOPE",
            "Invalid role scope. Use platform, tenant_base, or tenant_custom.",
        )
    if scope == "tenant_custom" and not tenant_id:
        raise _role_error(
            status.HTTP_400_BAD_REQUEST, "MISSING_TENANT_ID", "Tenant ID is required for tenant_custom roles."
        )
    role = Role(
        name=name,
        slug=slug,
        description=description,
        scope=scope,
        tenant_id=tenant_id if scope == "tenant_custom" else None,
        is_system_role=scope in SYSTEM_SCOPES,
    )
    try:
        session.add(role)
        await session.flush()
        if permission_ids:
            await _replace_permissions(session, role.id, permission_ids)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        logger.warning("role_create_failed name=%s", name, exc_info=exc)
        raise _role_error(status.HTTP_409_CONFLICT, "ROLE_CONFLICT", "Role conflicts with existing data") from exc
    except Exception:
        await session.rollback()
        raise
    return role


async def update_role(session: AsyncSession, role_id: str, patch: dict[str, Any]) -> Role:
    """Patch a role and, when ``permissions`` is given, replace its permission set.

    Every change happens in one transaction; a failing permission insert leaves
    the role and its previous permissions untouched.
    """
    role = await session.get(Role, role_id)
    if role is None:
        raise _role_error(status.HTTP_404_NOT_FOUND, "ROLE_NOT_FOUND", "Role not found")

    next_scope = resolve_scope(patch.get("scope"), patch.get("is_global")) or role.scope
    if next_scope not in ROLE_SCOPES:
        raise _role_error(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_ROLE_SCOPE",
            "Invalid role scope. Use platform, tenant_base, or tenant_custom.",
        )
    next_tenant_id = (patch.get("tenant_id") or role.tenant_id) if next_scope == "tenant_custom" else None
    if next_scope == "tenant_custom" and not next_tenant_id:
        raise _role_error(
            status.HTTP_400_BAD_REQUEST, "MISSING_TENANT_ID", "Tenant ID is required for tenant_custom roles."
        )

    try:
        for field in ("name", "slug", "description"):
            if patch.get(field) is not None:
                setattr(role, field, patch[field])
        role.scope = next_scope
        role.tenant_id = next_tenant_id
        role.is_system_role = next_scope in SYSTEM_SCOPES
        await session.flush()
        permission_ids = patch.get("permissions")
        if isinstance(permission_ids, list):
            await _replace_permissions(session, role.id, permission_ids)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        logger.warning("role_update_failed role_id=%s", role_id, exc_info=exc)
        raise _role_error(status.HTTP_409_CONFLICT, "ROLE_CONFLICT", "Role conflicts with existing data") from exc
    except Exception:
        await session.rollback()
        raise
    return role


async def delete_role(session: AsyncSession, role_id: str) -> None:
    role = await session.get(Role, role_id)
    if role is None:
        raise _role_error(status.HTTP_404_NOT_FOUND, "ROLE_NOT_FOUND", "Role not found")
    # Child rows are removed explicitly; not every backend enforces ON DELETE.
    await session.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
    await session.execute(delete(UserRole).where(UserRole.role_id == role_id))
    await session.execute(
        update(UserTenantRole).where(UserTenantRole.role_id == role_id).values(role_id=None)
    )
    await session.delete(role)
    await session.commit()
