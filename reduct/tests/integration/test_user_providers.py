from __future__ import annotations

import pytest

from reduct.domain.models import Tenant, User, UserTenantRole
from reduct.persistence.db import SessionLocal
from reduct.tests.utils.auth import create_platform_admin, create_test_user


async def _add_team_membership(user_id: str) -> str:
    async with SessionLocal() as session:
        tenant = Tenant(slug="team-alpha", name="Team Alpha", tenant_type="team")
        session.add(tenant)
        await session.flush()
        session.add(UserTenantRole(user_id=user_id, tenant_id=tenant.id, membership_status="active"))
        await session.commit()
        return tenant.id


async def _create_bare_user(email: str) -> str:
    async with SessionLocal() as session:
        user = User(email=email, full_name="Loner", status="active")
        session.add(user)
        await session.commit()
        return user.id


@pytest.mark.asyncio
async def test_user_provider_create_list_delete(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    user, _user_tenant, _user_headers = await create_test_user(email="linked@example.com", full_name="Linked")

    created = await client.post(
        "/v1/user-providers",
        json={"user_id": user.id, "provider": "google", "provider_user_id": "g-123", "extra_data": {"hd": "acme"}},
        headers=headers,
    )
    assert created.status_code == 201
    row = created.json()["data"]["row"]
    assert row["provider"] == "google"
    assert row["extra_data"] == {"hd": "acme"}

    duplicate = await client.post(
        "/v1/user-providers",
        json={"user_id": user.id, "provider": "google", "provider_user_id": "g-123"},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "PROVIDER_EXISTS"

    listing = await client.get("/v1/user-providers", params={"q": "linked"}, headers=headers)
    data = listing.json()["data"]
    assert data["total"] == 1
    assert data["rows"][0]["user_email"] == "linked@example.com"
    assert data["rows"][0]["user_name"] == "Linked"

    by_provider = await client.get("/v1/user-providers", params={"provider": "kakao"}, headers=headers)
    assert by_provider.json()["data"]["total"] == 0

    deleted = await client.delete(f"/v1/user-providers/{row['id']}", headers=headers)
    assert deleted.status_code == 200
    again = await client.delete(f"/v1/user-providers/{row['id']}", headers=headers)
    assert again.status_code == 404
    assert again.json()["error"]["code"] == "PROVIDER_NOT_FOUND"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("body", "code"),
    [
        ({"provider": "google", "provider_user_id": "x"}, "MISSING_USER_ID"),
        ({"user_id": "u", "provider_user_id": "x"}, "MISSING_PROVIDER"),
        ({"user_id": "u", "provider": "google"}, "MISSING_PROVIDER_USER_ID"),
        ({"user_id": "u", "provider": "github", "provider_user_id": "x"}, "INVALID_PROVIDER"),
        ({"user_id": "u", "provider": "google", "provider_user_id": "x", "extra_data": [1]}, "INVALID_EXTRA_DATA"),
        ({"user_id": "missing", "provider": "google", "provider_user_id": "x"}, "INVALID_USER_ID"),
    ],
)
async def test_user_provider_create_validation(client, body, code) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    response = await client.post("/v1/user-providers", json=body, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == code


@pytest.mark.asyncio
async def test_invalid_provider_filter_is_rejected(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    response = await client.get("/v1/user-providers", params={"provider": "github"}, headers=headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_membership_listing_groups_per_user(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin(email="admin@example.com")
    member, personal_tenant_id, _member_headers = await create_test_user(email="multi@example.com")
    team_id = await _add_team_membership(member.id)
    await _create_bare_user("loner@example.com")

    multi = await client.get("/v1/users/memberships", params={"membership": "multi"}, headers=headers)
    rows = multi.json()["data"]["rows"]
    assert [row["user"]["email"] for row in rows] == ["multi@example.com"]
    assert rows[0]["membership_count"] == 2
    # Primary tenant first.
    assert [item["tenant_id"] for item in rows[0]["memberships"]] == [personal_tenant_id, team_id]
    assert rows[0]["memberships"][0]["role_slug"] == "owner"

    none = await client.get("/v1/users/memberships", params={"membership": "none"}, headers=headers)
    assert [row["user"]["email"] for row in none.json()["data"]["rows"]] == ["loner@example.com"]

    single = await client.get(
        "/v1/users/memberships", params={"membership": "single", "q": "admin@"}, headers=headers
    )
    assert single.json()["data"]["total"] == 1

    invalid = await client.get("/v1/users/memberships", params={"membership": "some"}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "INVALID_MEMBERSHIP_FILTER"
