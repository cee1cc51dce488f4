from __future__ import annotations

from datetime import datetime

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import AuditEvent


def _filtered(
    stmt: Select,
    *,
    tenant_id: str | None,
    actor_id: str | None,
    event_type: str | None,
    outcome: str | None,
    resource_type: str | None,
    resource_id: str | None,
    occurred_from: datetime | None,
    occurred_to: datetime | None,
) -> Select:
    if tenant_id:
        stmt = stmt.where(AuditEvent.tenant_id == tenant_id)
    if actor_id:
        stmt = stmt.where(AuditEvent.actor_id == actor_id)
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    if outcome:
        stmt = stmt.where(AuditEvent.outcome == outcome)
    if resource_type:
        stmt = stmt.where(AuditEvent.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditEvent.resource_id == resource_id)
    if occurred_from:
        stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)
    return stmt


async def list_events(
    session: AsyncSession,
    *,
    tenant_id: str | None = None,
    actor_id: str | None = None,
    event_type: str | None = None,
    outcome: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[AuditEvent], int]:
    # Platform admins may query across tenants; tenant_id narrows when given.
    filters = dict(
        tenant_id=tenant_id,
        actor_id=actor_id,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )
    total = (await session.execute(_filtered(select(func.count(AuditEvent.id)), **filters))).scalar_one()
    stmt = _filtered(select(AuditEvent), **filters)
    stmt = stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total)


async def get_event_by_id(session: AsyncSession, *, event_id: int) -> AuditEvent | None:
    return await session.get(AuditEvent, event_id)
