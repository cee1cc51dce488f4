from __future__ import annotations

import pytest
from sqlalchemy import func, select

from reduct.domain.models import AuditEvent, Tenant, UserSession, UserTenantRole
from reduct.persistence.db import SessionLocal
from reduct.services.auth import otp
from reduct.tests.utils.auth import bearer


async def _count(model, *conditions) -> int:
    async with SessionLocal() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*conditions))
        return int(result.scalar() or 0)


async def _register(client, email: str = "new.user@example.com", password: str = "Passw0rd!"):
    return await client.post(
        "/v1/auth/register",
        json={"email": email, "password": password, "fullName": "New User"},
    )


@pytest.mark.asyncio
async def test_register_creates_user_with_personal_tenant(client) -> None:
    response = await _register(client, email="New.User@Example.com")
    assert response.status_code == 201
    body = response.json()
    data = body["data"]
    assert data["user"]["email"] == "new.user@example.com"
    assert data["user"]["full_name"] == "New User"
    assert data["token"]
    assert data["tenantId"]
    assert data["platformRole"] is None
    assert body["meta"]["api_version"] == "v1"

    async with SessionLocal() as session:
        tenant = await session.get(Tenant, data["tenantId"])
    assert tenant is not None
    assert tenant.tenant_type == "personal"
    assert await _count(UserTenantRole, UserTenantRole.user_id == data["user"]["id"]) == 1
    assert await _count(AuditEvent, AuditEvent.event_type == "auth.register") == 1


@pytest.mark.asyncio
async def test_register_rejects_duplicate_email(client) -> None:
    assert (await _register(client)).status_code == 201
    response = await _register(client, email="NEW.USER@example.com")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "USER_EXISTS"


@pytest.mark.asyncio
async def test_register_requires_all_fields(client) -> None:
    response = await client.post("/v1/auth/register", json={"email": "a@example.com", "password": "Passw0rd!"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


@pytest.mark.asyncio
async def test_login_issues_token_and_tracks_session(client) -> None:
    registered = (await _register(client)).json()["data"]

    response = await client.post(
        "/v1/auth/login", json={"email": "new.user@example.com", "password": "Passw0rd!"}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["id"] == registered["user"]["id"]
    assert data["tenantId"] == registered["tenantId"]
    assert await _count(UserSession, UserSession.user_id == data["user"]["id"]) == 1

    me = await client.get("/v1/auth/me", headers=bearer(data["token"]))
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "new.user@example.com"
    assert me.json()["data"]["last_login_at"] is not None


@pytest.mark.asyncio
async def test_login_with_wrong_password_is_audited(client) -> None:
    await _register(client)
    response = await client.post(
        "/v1/auth/login", json={"email": "new.user@example.com", "password": "wrong-password"}
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_INVALID_CREDENTIALS"
    assert await _count(UserSession) == 0
    assert (
        await _count(AuditEvent, AuditEvent.event_type == "auth.login", AuditEvent.outcome == "failure")
        == 1
    )


@pytest.mark.asyncio
async def test_me_requires_bearer_token(client) -> None:
    response = await client.get("/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_verification_code_round_trip(client) -> None:
    sent = await client.post("/v1/auth/send-verification-code", json={"email": "otp@example.com"})
    assert sent.status_code == 200
    entry = await otp.get_entry("otp@example.com")
    assert entry is not None

    wrong = await client.post("/v1/auth/verify-code", json={"email": "otp@example.com", "code": "000000"})
    assert wrong.status_code == 400
    assert wrong.json()["error"]["code"] == "OTP_INVALID"

    verified = await client.post(
        "/v1/auth/verify-code", json={"email": "otp@example.com", "code": entry.code}
    )
    assert verified.status_code == 200
    assert verified.json()["data"]["isExistingUser"] is False


@pytest.mark.asyncio
async def test_reset_password_consumes_code(client) -> None:
    await _register(client)
    await otp.store_code("new.user@example.com", "482913")

    response = await client.post(
        "/v1/auth/reset-password",
        json={"email": "new.user@example.com", "code": "482913", "newPassword": "N3wPassw0rd!"},
    )
    assert response.status_code == 200
    assert await otp.get_entry("new.user@example.com") is None

    login = await client.post(
        "/v1/auth/login", json={"email": "new.user@example.com", "password": "N3wPassw0rd!"}
    )
    assert login.status_code == 200
