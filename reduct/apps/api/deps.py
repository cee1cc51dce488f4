from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.persistence.db import get_session
from reduct.services.audit import record_event
from reduct.services.auth.tokens import InvalidTokenError, MissingUserIdError, decode_access_token


PLATFORM_ADMIN_ROLES = frozenset({"owner", "admin"})


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    user_id: str
    email: str | None = None
    tenant_id: str | None = None
    platform_role: str | None = None

    @property
    def is_platform_admin(self) -> bool:
        return (self.platform_role or "").lower() in PLATFORM_ADMIN_ROLES


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str:
    if not header_value:
        raise _auth_error("Missing Authorization token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        raise _auth_error("Missing Authorization token")
    return parts[1]


def _request_metadata(request: Request) -> dict[str, str]:
    return {"path": request.url.path, "method": request.method}


async def get_current_principal(request: Request) -> Principal:
    token = _parse_bearer_token(request.headers.get("Authorization"))
    try:
        claims = decode_access_token(token)
    except MissingUserIdError as exc:
        raise _auth_error("Invalid token payload (missing userId)") from exc
    except InvalidTokenError as exc:
        raise _auth_error("Invalid or expired token") from exc
    principal = Principal(
        user_id=claims.user_id,
        email=claims.email,
        tenant_id=claims.tenant_id,
        platform_role=claims.platform_role,
    )
    request.state.principal = principal
    return principal


async def require_platform_admin(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    if principal.is_platform_admin:
        return principal
    await record_event(
        session=db,
        request=request,
        tenant_id=principal.tenant_id,
        actor_type="user",
        actor_id=principal.user_id,
        actor_role=principal.platform_role,
        event_type="rbac.forbidden",
        outcome="failure",
        resource_type="platform",
        metadata=_request_metadata(request),
        error_code="AUTH_FORBIDDEN",
        commit=True,
    )
    raise _forbidden_error("Platform admin role required")


def require_tenant(principal: Principal) -> str:
    # Tenant-scoped user routes need a primary tenant in the token.
    if not principal.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "TENANT_REQUIRED", "message": "No tenant associated with this user"},
        )
    return principal.tenant_id
