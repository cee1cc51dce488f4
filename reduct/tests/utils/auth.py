from __future__ import annotations

from uuid import uuid4

from reduct.domain.models import User
from reduct.persistence.db import SessionLocal
from reduct.services.auth.identity import create_personal_tenant, get_primary_tenant_id, grant_platform_role
from reduct.services.auth.passwords import hash_password
from reduct.services.auth.tokens import issue_access_token


DEFAULT_PASSWORD = "Passw0rd!"


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def create_test_user(
    *,
    email: str | None = None,
    full_name: str = "Test User",
    password: str = DEFAULT_PASSWORD,
    platform_role: str | None = None,
) -> tuple[User, str | None, dict[str, str]]:
    """Provision a user with a personal tenant and return (user, tenant_id, auth headers)."""
    email = email or f"user-{uuid4().hex[:10]}@example.com"
    async with SessionLocal() as session:
        user = User(
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            status="active",
            email_verified=True,
        )
        session.add(user)
        await session.flush()
        await create_personal_tenant(session, user=user)
        if platform_role:
            await grant_platform_role(session, user_id=user.id, slug=platform_role)
        await session.commit()
        tenant_id = await get_primary_tenant_id(session, user.id)

    token = issue_access_token(
        user_id=user.id, email=user.email, tenant_id=tenant_id, platform_role=platform_role
    )
    return user, tenant_id, bearer(token)


async def create_platform_admin(**kwargs) -> tuple[User, str | None, dict[str, str]]:
    return await create_test_user(platform_role="admin", **kwargs)
