from __future__ import annotations

import pytest
from sqlalchemy import select

from reduct.domain.models import Tenant, UserTenantRole
from reduct.persistence.db import SessionLocal
from reduct.services.auth.identity import ensure_owner_role
from reduct.tests.utils.auth import create_platform_admin, create_test_user


async def _owner_role_id() -> str:
    async with SessionLocal() as session:
        role_id = await ensure_owner_role(session)
        await session.commit()
        return role_id


async def _create_tenant(client, headers, **overrides) -> dict:
    body = {"name": "Acme Team"}
    body.update(overrides)
    response = await client.post("/v1/tenants", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_tenant_crud_and_soft_delete(client) -> None:
    admin, _tenant_id, headers = await create_platform_admin(email="owner@example.com", full_name="Owner")
    tenant = await _create_tenant(client, headers)
    assert tenant["slug"] == "acme-team"
    assert tenant["owner_email"] == "owner@example.com"
    assert tenant["current_member_count"] == 1

    async with SessionLocal() as session:
        link = (
            await session.execute(
                select(UserTenantRole).where(UserTenantRole.tenant_id == tenant["id"])
            )
        ).scalar_one()
    # The admin already has a primary personal tenant.
    assert link.user_id == admin.id
    assert link.is_primary_tenant is False

    duplicate = await client.post("/v1/tenants", json={"name": "Other", "slug": "Acme Team"}, headers=headers)
    assert duplicate.status_code == 409

    listing = await client.get("/v1/tenants", params={"q": "acme"}, headers=headers)
    rows = listing.json()["data"]["rows"]
    assert [row["id"] for row in rows] == [tenant["id"]]
    assert rows[0]["owner_name"] == "Owner"

    updated = await client.put(
        f"/v1/tenants/{tenant['id']}", json={"name": "Acme Group", "tenant_type": "group"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["name"] == "Acme Group"
    assert updated.json()["data"]["tenant_type"] == "group"

    invalid = await client.put(f"/v1/tenants/{tenant['id']}", json={"tenant_type": "guild"}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "INVALID_TENANT_TYPE"

    deleted = await client.delete(f"/v1/tenants/{tenant['id']}", headers=headers)
    assert deleted.status_code == 200
    async with SessionLocal() as session:
        stored = await session.get(Tenant, tenant["id"])
    assert stored.deleted_at is not None

    after = await client.get("/v1/tenants", params={"q": "acme"}, headers=headers)
    assert after.json()["data"]["total"] == 0
    gone = await client.put(f"/v1/tenants/{tenant['id']}", json={"name": "Back"}, headers=headers)
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_tenant_routes_require_platform_admin(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    response = await client.get("/v1/tenants", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_membership_create_updates_count_and_primary(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    member, personal_tenant_id, _member_headers = await create_test_user(email="member@example.com")
    tenant = await _create_tenant(client, headers)
    role_id = await _owner_role_id()

    created = await client.post(
        "/v1/tenant-memberships",
        json={"user_id": member.id, "tenant_id": tenant["id"], "role_id": role_id, "is_primary_tenant": True},
        headers=headers,
    )
    assert created.status_code == 201
    membership = created.json()["data"]
    assert membership["is_primary_tenant"] is True

    async with SessionLocal() as session:
        stored_tenant = await session.get(Tenant, tenant["id"])
        personal_link = (
            await session.execute(
                select(UserTenantRole).where(
                    UserTenantRole.user_id == member.id, UserTenantRole.tenant_id == personal_tenant_id
                )
            )
        ).scalar_one()
    assert stored_tenant.current_member_count == 2
    assert personal_link.is_primary_tenant is False

    duplicate = await client.post(
        "/v1/tenant-memberships",
        json={"user_id": member.id, "tenant_id": tenant["id"], "role_id": role_id},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "MEMBERSHIP_EXISTS"

    listing = await client.get(
        "/v1/tenant-memberships", params={"tenant_id": tenant["id"], "q": "member@"}, headers=headers
    )
    rows = listing.json()["data"]["rows"]
    assert len(rows) == 1
    assert rows[0]["user_email"] == "member@example.com"
    assert rows[0]["tenant_name"] == "Acme Team"


@pytest.mark.asyncio
async def test_membership_deactivation_stamps_left_at(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    member, _personal, _member_headers = await create_test_user()
    tenant = await _create_tenant(client, headers)
    role_id = await _owner_role_id()
    created = await client.post(
        "/v1/tenant-memberships",
        json={"user_id": member.id, "tenant_id": tenant["id"], "role_id": role_id},
        headers=headers,
    )
    membership_id = created.json()["data"]["id"]

    updated = await client.put(
        f"/v1/tenant-memberships/{membership_id}", json={"membership_status": "inactive"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["left_at"] is not None
    async with SessionLocal() as session:
        stored_tenant = await session.get(Tenant, tenant["id"])
    assert stored_tenant.current_member_count == 1

    blank_role = await client.put(f"/v1/tenant-memberships/{membership_id}", json={"role_id": ""}, headers=headers)
    assert blank_role.status_code == 400

    bad_status = await client.put(
        f"/v1/tenant-memberships/{membership_id}", json={"membership_status": "left"}, headers=headers
    )
    assert bad_status.status_code == 400
    assert bad_status.json()["error"]["code"] == "INVALID_MEMBERSHIP_STATUS"

    missing = await client.put("/v1/tenant-memberships/missing", json={"is_primary_tenant": True}, headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_invitation_lifecycle(client) -> None:
    admin, _tenant_id, headers = await create_platform_admin(full_name="Inviter")
    tenant = await _create_tenant(client, headers)

    created = await client.post(
        "/v1/tenant-invitations",
        json={
            "tenant_id": tenant["id"],
            "invitee_email": " Guest@Example.com ",
            "expires_at": "2030-01-01T00:00:00Z",
            "metadata": {"source": "admin"},
        },
        headers=headers,
    )
    assert created.status_code == 201
    invitation = created.json()["data"]
    assert invitation["invitee_email"] == "guest@example.com"
    assert invitation["inviter_id"] == admin.id
    assert invitation["membership_role"] == "member"
    assert invitation["status"] == "pending"
    assert invitation["invitation_token"]

    duplicate = await client.post(
        "/v1/tenant-invitations",
        json={"tenant_id": tenant["id"], "invitee_email": "guest@example.com", "expires_at": "2030-01-01T00:00:00Z"},
        headers=headers,
    )
    assert duplicate.status_code == 409

    listing = await client.get("/v1/tenant-invitations", params={"q": "inviter"}, headers=headers)
    rows = listing.json()["data"]["rows"]
    assert len(rows) == 1
    assert rows[0]["tenant_slug"] == "acme-team"
    assert rows[0]["inviter_name"] == "Inviter"

    bad_filter = await client.get("/v1/tenant-invitations", params={"status": "lost"}, headers=headers)
    assert bad_filter.status_code == 400

    accepted = await client.put(
        f"/v1/tenant-invitations/{invitation['id']}", json={"status": "accepted"}, headers=headers
    )
    assert accepted.status_code == 200
    assert accepted.json()["data"]["accepted_at"] is not None

    empty = await client.put(f"/v1/tenant-invitations/{invitation['id']}", json={}, headers=headers)
    assert empty.status_code == 400

    missing = await client.put("/v1/tenant-invitations/missing", json={"status": "cancelled"}, headers=headers)
    assert missing.status_code == 404
