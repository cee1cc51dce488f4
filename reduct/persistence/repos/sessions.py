from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import User, UserSession
from reduct.services.crypto import sha256_hex


SESSION_STATUSES = ("active", "expired")


async def create_session(
    session: AsyncSession,
    *,
    user_id: str,
    tenant_id: str | None,
    token: str,
    expires_at: datetime,
    ip_address: str | None,
    user_agent: str | None,
) -> UserSession:
    # Only the token digest is persisted; the raw JWT stays with the client.
    row = UserSession(
        user_id=user_id,
        tenant_id=tenant_id,
        token_hash=sha256_hex(token),
        ip_address=ip_address,
        user_agent=user_agent,
        expires_at=expires_at,
    )
    session.add(row)
    await session.flush()
    return row


def _filtered(
    stmt: Select,
    *,
    status: str | None,
    tenant_id: str | None,
    user_id: str | None,
    ip_address: str | None,
    q: str | None,
    now: datetime,
) -> Select:
    if status == "active":
        stmt = stmt.where(UserSession.expires_at > now)
    elif status == "expired":
        stmt = stmt.where(UserSession.expires_at <= now)
    if tenant_id:
        stmt = stmt.where(UserSession.tenant_id == tenant_id)
    if user_id:
        stmt = stmt.where(UserSession.user_id == user_id)
    if ip_address:
        stmt = stmt.where(UserSession.ip_address == ip_address)
    if q:
        pattern = f"%{q}%"
        stmt = stmt.where(
            or_(
                User.email.ilike(pattern),
                User.full_name.ilike(pattern),
                UserSession.ip_address.ilike(pattern),
                UserSession.user_agent.ilike(pattern),
            )
        )
    return stmt


async def list_sessions(
    session: AsyncSession,
    *,
    status: str | None = None,
    tenant_id: str | None = None,
    user_id: str | None = None,
    ip_address: str | None = None,
    q: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[tuple[UserSession, User]], int]:
    now = datetime.now(timezone.utc)
    filters = dict(status=status, tenant_id=tenant_id, user_id=user_id, ip_address=ip_address, q=q, now=now)
    base_count = select(func.count(UserSession.id)).join(User, User.id == UserSession.user_id)
    total = (await session.execute(_filtered(base_count, **filters))).scalar_one()
    stmt = _filtered(select(UserSession, User).join(User, User.id == UserSession.user_id), **filters)
    stmt = stmt.order_by(UserSession.last_activity_at.desc(), UserSession.created_at.desc())
    result = await session.execute(stmt.offset(offset).limit(limit))
    return [(row[0], row[1]) for row in result.all()], int(total)


async def revoke_session(session: AsyncSession, *, session_id: str) -> bool:
    result = await session.execute(delete(UserSession).where(UserSession.id == session_id))
    await session.commit()
    return bool(result.rowcount)
