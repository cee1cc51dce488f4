from __future__ import annotations

import pytest

from reduct.tests.utils.auth import create_platform_admin


_SCHEMA = {"type": "object", "properties": {"title": {"type": "string"}}, "required": ["title"]}


async def _create(client, headers, **overrides) -> dict:
    body = {"name": "answer", "schema": _SCHEMA}
    body.update(overrides)
    response = await client.post("/v1/ai/response-schemas", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["row"]


@pytest.mark.asyncio
async def test_create_applies_defaults(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    row = await _create(client, headers)
    assert row["version"] == 1
    assert row["strict"] is True
    assert row["is_active"] is True
    assert row["schema"] == _SCHEMA


@pytest.mark.asyncio
async def test_create_validation_and_duplicates(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _create(client, headers)

    duplicate = await client.post(
        "/v1/ai/response-schemas", json={"name": "answer", "version": 1, "schema": _SCHEMA}, headers=headers
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "DUPLICATE_VERSION"

    no_name = await client.post("/v1/ai/response-schemas", json={"name": " ", "schema": _SCHEMA}, headers=headers)
    assert no_name.status_code == 400
    assert no_name.json()["error"]["code"] == "NAME_REQUIRED"

    no_schema = await client.post("/v1/ai/response-schemas", json={"name": "other", "schema": []}, headers=headers)
    assert no_schema.status_code == 400
    assert no_schema.json()["error"]["code"] == "SCHEMA_REQUIRED"


@pytest.mark.asyncio
async def test_list_hides_schema_bodies_and_filters(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _create(client, headers)
    await _create(client, headers, version=2, is_active=False)
    await _create(client, headers, name="summary")

    listing = await client.get("/v1/ai/response-schemas", params={"q": "answer"}, headers=headers)
    data = listing.json()["data"]
    assert data["total"] == 2
    assert all("schema" not in row for row in data["rows"])
    # Active rows sort first.
    assert [row["version"] for row in data["rows"]] == [1, 2]

    inactive = await client.get("/v1/ai/response-schemas", params={"is_active": "false"}, headers=headers)
    assert [row["version"] for row in inactive.json()["data"]["rows"]] == [2]


@pytest.mark.asyncio
async def test_update_get_and_delete(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    row = await _create(client, headers)
    other = await _create(client, headers, version=2)

    updated = await client.put(
        f"/v1/ai/response-schemas/{row['id']}",
        json={"strict": False, "description": "Structured answer", "schema": {"type": "object"}},
        headers=headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]["row"]
    assert data["strict"] is False
    assert data["description"] == "Structured answer"
    assert data["schema"] == {"type": "object"}

    bad_schema = await client.put(f"/v1/ai/response-schemas/{row['id']}", json={"schema": "text"}, headers=headers)
    assert bad_schema.status_code == 400
    assert bad_schema.json()["error"]["code"] == "INVALID_JSON_OBJECT"

    clash = await client.put(f"/v1/ai/response-schemas/{other['id']}", json={"version": 1}, headers=headers)
    assert clash.status_code == 409

    empty = await client.put(f"/v1/ai/response-schemas/{row['id']}", json={}, headers=headers)
    assert empty.status_code == 400

    fetched = await client.get(f"/v1/ai/response-schemas/{row['id']}", headers=headers)
    assert fetched.json()["data"]["row"]["schema"] == {"type": "object"}

    deleted = await client.delete(f"/v1/ai/response-schemas/{row['id']}", headers=headers)
    assert deleted.status_code == 200
    missing = await client.get(f"/v1/ai/response-schemas/{row['id']}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "RESPONSE_SCHEMA_NOT_FOUND"
