from __future__ import annotations

import pytest

from reduct.tests.utils.auth import create_platform_admin


async def _create_language(client, headers, **overrides):
    body = {"code": "en", "name": "English"}
    body.update(overrides)
    return await client.post("/v1/i18n/languages", json=body, headers=headers)


async def _seed_values(client, headers) -> tuple[dict, dict]:
    namespace = (await client.post("/v1/i18n/namespaces", json={"name": "common"}, headers=headers)).json()["data"]
    other = (await client.post("/v1/i18n/namespaces", json={"name": "billing"}, headers=headers)).json()["data"]
    save = (
        await client.post(
            "/v1/i18n/translations/keys", json={"namespace_id": namespace["id"], "key": "button.save"}, headers=headers
        )
    ).json()["data"]
    pay = (
        await client.post(
            "/v1/i18n/translations/keys", json={"namespace_id": other["id"], "key": "invoice.pay"}, headers=headers
        )
    ).json()["data"]
    for key_id, language_code, value in (
        (save["id"], "en", "Save"),
        (save["id"], "ko", "저장"),
        (pay["id"], "en", "Pay now"),
        (save["id"], "en", "Save changes"),
    ):
        response = await client.put(
            "/v1/i18n/translations/values",
            json={"key_id": key_id, "language_code": language_code, "value": value},
            headers=headers,
        )
        assert response.status_code == 200
    return namespace, other


@pytest.mark.asyncio
async def test_language_create_update_and_list(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    created = await _create_language(client, headers, native_name="English", sort_order=2)
    assert created.status_code == 201
    english = created.json()["data"]
    assert english["direction"] == "ltr"
    assert english["is_active"] is True
    assert english["is_default"] is False

    arabic = await _create_language(client, headers, code="ar", name="Arabic", direction="rtl", sort_order=1)
    assert arabic.status_code == 201

    duplicate = await _create_language(client, headers, name="English again")
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "LANGUAGE_EXISTS"

    sideways = await _create_language(client, headers, code="xx", name="Sideways", direction="ttb")
    assert sideways.status_code == 400
    assert sideways.json()["error"]["code"] == "INVALID_DIRECTION"

    listing = await client.get("/v1/i18n/languages")
    assert [row["code"] for row in listing.json()["data"]] == ["ar", "en"]

    updated = await client.put(
        f"/v1/i18n/languages/{english['id']}", json={"is_active": False, "name": "English (US)"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["name"] == "English (US)"
    assert updated.json()["data"]["is_active"] is False

    active = await client.get("/v1/i18n/languages", params={"active_only": "true"})
    assert [row["code"] for row in active.json()["data"]] == ["ar"]

    bad_direction = await client.put(
        f"/v1/i18n/languages/{english['id']}", json={"direction": "up"}, headers=headers
    )
    assert bad_direction.status_code == 400

    missing = await client.put("/v1/i18n/languages/missing", json={"name": "Nope"}, headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "LANGUAGE_NOT_FOUND"


@pytest.mark.asyncio
async def test_promoting_language_to_default_demotes_previous(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    english = (await _create_language(client, headers, is_default=True)).json()["data"]
    korean = (await _create_language(client, headers, code="ko", name="Korean")).json()["data"]

    response = await client.put(f"/v1/i18n/languages/{korean['id']}", json={"is_default": True}, headers=headers)
    assert response.status_code == 200

    rows = {row["id"]: row for row in (await client.get("/v1/i18n/languages")).json()["data"]}
    assert rows[korean["id"]]["is_default"] is True
    assert rows[english["id"]]["is_default"] is False


@pytest.mark.asyncio
async def test_delete_language_rules(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    english = (await _create_language(client, headers, is_default=True)).json()["data"]
    korean = (await _create_language(client, headers, code="ko", name="Korean")).json()["data"]
    await _seed_values(client, headers)

    blocked = await client.delete(f"/v1/i18n/languages/{english['id']}", headers=headers)
    assert blocked.status_code == 400
    assert blocked.json()["error"]["code"] == "DEFAULT_LANGUAGE"

    deleted = await client.delete(f"/v1/i18n/languages/{korean['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["data"]["message"] == "Language deleted successfully"

    # Values and history for the removed language go with it.
    history = await client.get("/v1/i18n/history", params={"language_code": "ko"}, headers=headers)
    assert history.json()["data"]["pagination"]["total"] == 0

    again = await client.delete(f"/v1/i18n/languages/{korean['id']}", headers=headers)
    assert again.status_code == 404
    assert again.json()["error"]["code"] == "LANGUAGE_NOT_FOUND"


@pytest.mark.asyncio
async def test_history_filters_and_pagination(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _create_language(client, headers, is_default=True)
    await _create_language(client, headers, code="ko", name="Korean")
    _common, billing = await _seed_values(client, headers)

    everything = await client.get("/v1/i18n/history", params={"language_code": "all"}, headers=headers)
    data = everything.json()["data"]
    assert data["pagination"]["total"] == 4
    assert {row["language_code"] for row in data["rows"]} == {"en", "ko"}

    by_namespace = await client.get("/v1/i18n/history", params={"namespace_id": billing["id"]}, headers=headers)
    rows = by_namespace.json()["data"]["rows"]
    assert [(row["key"], row["namespace_name"], row["new_value"]) for row in rows] == [
        ("invoice.pay", "billing", "Pay now")
    ]

    searched = await client.get("/v1/i18n/history", params={"search": "changes"}, headers=headers)
    rows = searched.json()["data"]["rows"]
    assert [(row["old_value"], row["new_value"]) for row in rows] == [("Save", "Save changes")]
    assert rows[0]["language_name"] == "English"

    paged = await client.get("/v1/i18n/history", params={"page": 2, "limit": 3}, headers=headers)
    page = paged.json()["data"]
    assert len(page["rows"]) == 1
    assert page["pagination"] == {"page": 2, "limit": 3, "total": 4, "totalPages": 2}


@pytest.mark.asyncio
async def test_history_requires_platform_admin(client) -> None:
    response = await client.get("/v1/i18n/history")
    assert response.status_code == 401
