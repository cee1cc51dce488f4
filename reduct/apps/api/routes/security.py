from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, success_response
from reduct.domain.models import AuditEvent, User, UserSession, as_utc, utc_now
from reduct.persistence.repos import audit as audit_repo
from reduct.persistence.repos import sessions as session_repo
from reduct.services.audit import record_event


router = APIRouter(tags=["security"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    tenant_id: str | None
    actor_type: str
    actor_id: str | None
    actor_role: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    ip_address: str | None
    user_agent: str | None
    metadata_json: dict[str, Any] | None
    error_code: str | None
    created_at: str


class AuditEventsPage(BaseModel):
    items: list[AuditEventResponse]
    next_offset: int | None


def _to_response(event: AuditEvent) -> AuditEventResponse:
    return AuditEventResponse(
        id=event.id,
        occurred_at=iso(as_utc(event.occurred_at)),
        tenant_id=event.tenant_id,
        actor_type=event.actor_type,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        event_type=event.event_type,
        outcome=event.outcome,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        request_id=event.request_id,
        ip_address=event.ip_address,
        user_agent=event.user_agent,
        metadata_json=event.metadata_json,
        error_code=event.error_code,
        created_at=iso(as_utc(event.created_at)),
    )


def _session_payload(row: UserSession, user: User, now: datetime) -> dict[str, Any]:
    expires_at = as_utc(row.expires_at)
    return {
        "id": row.id,
        "user_id": row.user_id,
        "email": user.email,
        "full_name": user.full_name,
        "tenant_id": row.tenant_id,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "status": "active" if expires_at is not None and expires_at > now else "expired",
        "expires_at": iso(expires_at),
        "last_activity_at": iso(as_utc(row.last_activity_at)),
        "created_at": iso(as_utc(row.created_at)),
    }


@router.get("/sessions", response_model=SuccessEnvelope[dict])
async def list_sessions(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    tenant_id: str | None = None,
    user_id: str | None = None,
    ip: str | None = None,
    q: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    session_status = (status_filter or "").strip() or None
    if session_status is not None and session_status not in session_repo.SESSION_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_STATUS", "message": "status must be active or expired"},
        )
    rows, total = await session_repo.list_sessions(
        db,
        status=session_status,
        tenant_id=tenant_id,
        user_id=user_id,
        ip_address=ip,
        q=(q or "").strip() or None,
        offset=offset,
        limit=limit,
    )
    now = utc_now()
    return success_response(
        request=request,
        data={
            "ok": True,
            "total": total,
            "limit": limit,
            "offset": offset,
            "rows": [_session_payload(row, user, now) for row, user in rows],
        },
    )


@router.delete("/sessions/{session_id}", response_model=SuccessEnvelope[dict])
async def revoke_session(
    request: Request,
    session_id: str,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    revoked = await session_repo.revoke_session(db, session_id=session_id)
    if not revoked:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "SESSION_NOT_FOUND", "message": "Session not found"},
        )
    await record_event(
        session=db,
        request=request,
        tenant_id=None,
        actor_type="user",
        actor_id=admin.user_id,
        actor_role=admin.platform_role,
        event_type="security.session.revoked",
        outcome="success",
        resource_type="user_session",
        resource_id=session_id,
        commit=True,
    )
    return success_response(request=request, data={"ok": True, "id": session_id})


@router.get("/audit/events", response_model=SuccessEnvelope[AuditEventsPage])
async def list_audit_events(
    request: Request,
    tenant_id: str | None = None,
    actor_id: str | None = None,
    event_type: str | None = None,
    outcome: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        events, _total = await audit_repo.list_events(
            db,
            tenant_id=tenant_id,
            actor_id=actor_id,
            event_type=event_type,
            outcome=outcome,
            resource_type=resource_type,
            resource_id=resource_id,
            occurred_from=occurred_from,
            occurred_to=occurred_to,
            offset=offset,
            limit=limit + 1,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "DB_ERROR", "message": "Database error while fetching audit events"},
        ) from exc

    next_offset = None
    if len(events) > limit:
        events = events[:limit]
        next_offset = offset + limit
    page = AuditEventsPage(items=[_to_response(event) for event in events], next_offset=next_offset)
    return success_response(request=request, data=page.model_dump())


@router.get("/audit/events/{event_id}", response_model=SuccessEnvelope[AuditEventResponse])
async def get_audit_event(
    request: Request,
    event_id: int,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    event = await audit_repo.get_event_by_id(db, event_id=event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "AUDIT_EVENT_NOT_FOUND", "message": "Audit event not found"},
        )
    return success_response(request=request, data=_to_response(event).model_dump())
