from __future__ import annotations

import pytest
from sqlalchemy import select

from reduct.domain.models import AuditEvent, User
from reduct.persistence.db import SessionLocal
from reduct.services.auth.passwords import verify_password
from reduct.tests.utils.auth import DEFAULT_PASSWORD, create_test_user


async def _change(client, headers, current: str, new: str, confirm: str | None = None):
    return await client.post(
        "/v1/auth/change-password",
        json={"currentPassword": current, "newPassword": new, "confirmPassword": confirm if confirm is not None else new},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_change_password_success_is_audited(client) -> None:
    user, _tenant_id, headers = await create_test_user()
    response = await _change(client, headers, DEFAULT_PASSWORD, "N3w-Passw0rd!")
    assert response.status_code == 200
    assert response.json()["data"] == {"success": True}

    async with SessionLocal() as session:
        stored = await session.get(User, user.id)
        events = (
            await session.execute(select(AuditEvent.event_type).where(AuditEvent.actor_id == user.id))
        ).scalars().all()
    assert verify_password("N3w-Passw0rd!", stored.password_hash)
    assert "auth.password.changed" in events

    login = await client.post("/v1/auth/login", json={"email": user.email, "password": "N3w-Passw0rd!"})
    assert login.status_code == 200


@pytest.mark.asyncio
async def test_change_password_requires_every_field(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    response = await client.post(
        "/v1/auth/change-password", json={"current_password": DEFAULT_PASSWORD, "new_password": "x"}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "All password fields are required"


@pytest.mark.asyncio
async def test_change_password_rejects_mismatched_confirmation(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    response = await _change(client, headers, DEFAULT_PASSWORD, "N3w-Passw0rd!", "Other-Passw0rd!")
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "New passwords do not match"


@pytest.mark.asyncio
async def test_change_password_rejects_reusing_current(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    response = await _change(client, headers, DEFAULT_PASSWORD, DEFAULT_PASSWORD)
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "New password must differ from the current password"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("new_password", "message"),
    [
        ("Sh0rt!", "Password must be at least 8 characters long"),
        ("12345678!", "Password must contain at least one letter"),
        ("Password!", "Password must contain at least one number"),
        ("Passw0rdd", "Password must contain at least one special character"),
    ],
)
async def test_change_password_enforces_policy(client, new_password, message) -> None:
    _user, _tenant_id, headers = await create_test_user()
    response = await _change(client, headers, DEFAULT_PASSWORD, new_password)
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "WEAK_PASSWORD"
    assert error["message"] == message


@pytest.mark.asyncio
async def test_change_password_rejects_wrong_current_password(client) -> None:
    user, _tenant_id, headers = await create_test_user()
    response = await _change(client, headers, "Wr0ng-Passw0rd!", "N3w-Passw0rd!")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "AUTH_INVALID_CREDENTIALS"

    async with SessionLocal() as session:
        stored = await session.get(User, user.id)
    assert verify_password(DEFAULT_PASSWORD, stored.password_hash)


@pytest.mark.asyncio
async def test_change_password_requires_authentication(client) -> None:
    response = await client.post(
        "/v1/auth/change-password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "N3w-Passw0rd!", "confirmPassword": "N3w-Passw0rd!"},
    )
    assert response.status_code == 401
