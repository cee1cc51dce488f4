from __future__ import annotations

import pytest

from reduct.domain.models import Role
from reduct.persistence.db import SessionLocal
from reduct.tests.utils.auth import create_platform_admin


async def _permission(client, headers, resource: str, action: str) -> str:
    response = await client.post(
        "/v1/permissions",
        json={"name": f"{resource}.{action}", "resource": resource, "action": action},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


@pytest.mark.asyncio
async def test_create_role_with_permissions(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    read_id = await _permission(client, headers, "billing", "read")
    write_id = await _permission(client, headers, "billing", "write")

    response = await client.post(
        "/v1/roles",
        json={"name": "Billing Manager", "slug": "billing-manager", "is_global": True, "permissions": [read_id, write_id]},
        headers=headers,
    )
    assert response.status_code == 201
    role = response.json()["data"]
    assert role["scope"] == "platform"
    assert role["is_system_role"] is True

    detail = await client.get(f"/v1/roles/{role['id']}", headers=headers)
    assert {p["action"] for p in detail.json()["data"]["permissions"]} == {"read", "write"}


@pytest.mark.asyncio
async def test_tenant_custom_role_requires_tenant(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    response = await client.post("/v1/roles", json={"name": "Custom", "scope": "tenant_custom"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "MISSING_TENANT_ID"


@pytest.mark.asyncio
async def test_failed_permission_replace_rolls_back_role_update(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    read_id = await _permission(client, headers, "i18n", "read")
    created = await client.post(
        "/v1/roles",
        json={"name": "Translator", "scope": "platform", "permissions": [read_id]},
        headers=headers,
    )
    role_id = created.json()["data"]["id"]

    response = await client.put(
        f"/v1/roles/{role_id}",
        json={"name": "Renamed", "permissions": [read_id, "00000000-0000-0000-0000-000000000000"]},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_PERMISSION_ID"

    async with SessionLocal() as session:
        stored = await session.get(Role, role_id)
    assert stored.name == "Translator"
    detail = await client.get(f"/v1/roles/{role_id}", headers=headers)
    assert [p["id"] for p in detail.json()["data"]["permissions"]] == [read_id]


@pytest.mark.asyncio
async def test_tenant_filter_lists_base_and_own_custom_roles(client) -> None:
    _admin, tenant_id, headers = await create_platform_admin()
    await client.post(
        "/v1/roles", json={"name": "Mine", "scope": "tenant_custom", "tenant_id": tenant_id}, headers=headers
    )
    await client.post(
        "/v1/roles", json={"name": "Theirs", "scope": "tenant_custom", "tenant_id": "other-tenant"}, headers=headers
    )

    response = await client.get("/v1/roles", params={"tenant_id": tenant_id}, headers=headers)
    names = {row["name"] for row in response.json()["data"]}
    assert "Mine" in names
    assert "Theirs" not in names
    # The owner base role seeded by signup is shared with every tenant.
    assert "소유자" in names
