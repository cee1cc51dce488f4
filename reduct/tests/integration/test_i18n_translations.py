from __future__ import annotations

import pytest

from reduct.tests.utils.auth import create_platform_admin, create_test_user


async def _language(client, headers, code: str, *, is_default: bool = False) -> dict:
    response = await client.post(
        "/v1/i18n/languages",
        json={"code": code, "name": code.upper(), "is_default": is_default},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["data"]


async def _namespace(client, headers, name: str = "common") -> dict:
    response = await client.post("/v1/i18n/namespaces", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


async def _key(client, headers, namespace_id: str, key: str) -> dict:
    response = await client.post(
        "/v1/i18n/translations/keys", json={"namespace_id": namespace_id, "key": key}, headers=headers
    )
    assert response.status_code == 201
    return response.json()["data"]


async def _put(client, headers, key_id: str, language_code: str, value: str):
    return await client.put(
        "/v1/i18n/translations/values",
        json={"key_id": key_id, "language_code": language_code, "value": value},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_translation_admin_requires_platform_role(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    response = await client.post("/v1/i18n/namespaces", json={"name": "common"}, headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"


@pytest.mark.asyncio
async def test_only_one_default_language(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _language(client, headers, "en", is_default=True)
    await _language(client, headers, "ko", is_default=True)

    response = await client.get("/v1/i18n/languages")
    assert response.status_code == 200
    defaults = [row["code"] for row in response.json()["data"] if row["is_default"]]
    assert defaults == ["ko"]


@pytest.mark.asyncio
async def test_duplicate_key_in_namespace_conflicts(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    namespace = await _namespace(client, headers)
    await _key(client, headers, namespace["id"], "button.save")

    response = await client.post(
        "/v1/i18n/translations/keys",
        json={"namespace_id": namespace["id"], "key": "button.save"},
        headers=headers,
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DUPLICATE_TRANSLATION_KEY"


@pytest.mark.asyncio
async def test_value_upsert_writes_history_only_on_change(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _language(client, headers, "en", is_default=True)
    namespace = await _namespace(client, headers)
    key = await _key(client, headers, namespace["id"], "button.save")

    assert (await _put(client, headers, key["id"], "en", "Save")).status_code == 200
    assert (await _put(client, headers, key["id"], "en", "Save")).status_code == 200
    updated = await _put(client, headers, key["id"], "en", "Save changes")
    assert updated.status_code == 200
    assert updated.json()["data"]["value"] == "Save changes"

    history = await client.get("/v1/i18n/history", params={"language_code": "en"}, headers=headers)
    assert history.status_code == 200
    rows = history.json()["data"]["rows"]
    assert history.json()["data"]["pagination"]["total"] == 2
    assert {(row["old_value"], row["new_value"]) for row in rows} == {(None, "Save"), ("Save", "Save changes")}
    assert all(row["key"] == "button.save" for row in rows)


@pytest.mark.asyncio
async def test_value_for_unknown_language_is_not_found(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    namespace = await _namespace(client, headers)
    key = await _key(client, headers, namespace["id"], "title")

    response = await _put(client, headers, key["id"], "fr", "Titre")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "LANGUAGE_NOT_FOUND"


@pytest.mark.asyncio
async def test_bundle_falls_back_to_default_language(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _language(client, headers, "en", is_default=True)
    await _language(client, headers, "ko")
    namespace = await _namespace(client, headers)
    save = await _key(client, headers, namespace["id"], "button.save")
    cancel = await _key(client, headers, namespace["id"], "button.cancel")
    await _put(client, headers, save["id"], "en", "Save")
    await _put(client, headers, cancel["id"], "en", "Cancel")
    await _put(client, headers, save["id"], "ko", "저장")

    response = await client.get("/v1/i18n/bundle/ko/common")
    assert response.status_code == 200
    assert response.json()["data"] == {"button.save": "저장", "button.cancel": "Cancel"}

    missing = await client.get("/v1/i18n/bundle/ko/unknown")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_deleting_key_removes_values_and_history(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _language(client, headers, "en", is_default=True)
    namespace = await _namespace(client, headers)
    key = await _key(client, headers, namespace["id"], "button.save")
    await _put(client, headers, key["id"], "en", "Save")

    response = await client.delete(f"/v1/i18n/translations/keys/{key['id']}", headers=headers)
    assert response.status_code == 200

    listing = await client.get("/v1/i18n/translations", headers=headers)
    assert listing.json()["data"]["rows"] == []
    history = await client.get("/v1/i18n/history", headers=headers)
    assert history.json()["data"]["pagination"]["total"] == 0
