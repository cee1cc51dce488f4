from __future__ import annotations

import pytest
from sqlalchemy import select

from reduct.domain.models import ProviderApiCredential
from reduct.persistence.db import SessionLocal
from reduct.services.crypto import decrypt_secret
from reduct.tests.utils.auth import create_platform_admin


async def _create_credential(client, headers, **overrides):
    payload = {"provider_id": "openai", "credential_name": "primary", "api_key": "sk-live-abcdef123456"}
    payload.update(overrides)
    return await client.post("/v1/ai/credentials", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_credential_key_is_encrypted_and_masked(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    response = await _create_credential(client, headers)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["api_key_last4"] == "3456"
    assert data["api_key_masked"].endswith("3456")
    assert "sk-live" not in response.text

    async with SessionLocal() as session:
        row = (await session.execute(select(ProviderApiCredential))).scalar_one()
    assert row.api_key_encrypted != "sk-live-abcdef123456"
    assert decrypt_secret(row.api_key_encrypted) == "sk-live-abcdef123456"


@pytest.mark.asyncio
async def test_duplicate_credential_name_conflicts(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    assert (await _create_credential(client, headers)).status_code == 201
    response = await _create_credential(client, headers, api_key="sk-other-999999")
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CREDENTIAL_EXISTS"

    other_provider = await _create_credential(client, headers, provider_id="anthropic")
    assert other_provider.status_code == 201


@pytest.mark.asyncio
async def test_single_default_credential_per_provider(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    first = (await _create_credential(client, headers, is_default=True)).json()["data"]
    second = (
        await _create_credential(client, headers, credential_name="backup", api_key="sk-backup-0000", is_default=True)
    ).json()["data"]

    listing = await client.get("/v1/ai/credentials", params={"provider_id": "openai"}, headers=headers)
    defaults = {row["id"]: row["is_default"] for row in listing.json()["data"]}
    assert defaults == {first["id"]: False, second["id"]: True}

    resolved = await client.post("/v1/ai/auth/resolve", json={"provider_id": "openai"}, headers=headers)
    assert resolved.status_code == 200
    assert resolved.json()["data"]["credential_id"] == second["id"]
    assert resolved.json()["data"]["api_key_masked"].endswith("0000")
    assert resolved.json()["data"]["has_access_token"] is False


@pytest.mark.asyncio
async def test_update_keeps_key_hint_when_metadata_replaced(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    created = (await _create_credential(client, headers)).json()["data"]

    response = await client.put(
        f"/v1/ai/credentials/{created['id']}", json={"metadata": {"team": "search"}}, headers=headers
    )
    assert response.status_code == 200
    metadata = response.json()["data"]["metadata"]
    assert metadata["team"] == "search"
    assert metadata["api_key_last4"] == "3456"


@pytest.mark.asyncio
async def test_resolve_without_credential_fails(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    response = await client.post("/v1/ai/auth/resolve", json={"provider_id": "google"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "AUTH_RESOLVE_FAILED"


@pytest.mark.asyncio
async def test_auth_profile_must_match_credential_provider(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    credential = (await _create_credential(client, headers)).json()["data"]
    response = await client.post(
        "/v1/ai/auth-profiles",
        json={
            "provider_id": "google",
            "profile_key": "vertex",
            "auth_type": "api_key",
            "credential_id": credential["id"],
        },
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CREDENTIAL_PROVIDER_MISMATCH"


@pytest.mark.asyncio
async def test_deleting_credential_removes_its_profiles(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    credential = (await _create_credential(client, headers)).json()["data"]
    profile = await client.post(
        "/v1/ai/auth-profiles",
        json={
            "provider_id": "openai",
            "profile_key": "default",
            "auth_type": "api_key",
            "credential_id": credential["id"],
        },
        headers=headers,
    )
    assert profile.status_code == 201

    deleted = await client.delete(f"/v1/ai/credentials/{credential['id']}", headers=headers)
    assert deleted.status_code == 200
    profiles = await client.get("/v1/ai/auth-profiles", headers=headers)
    assert profiles.json()["data"] == []


@pytest.mark.asyncio
async def test_web_search_settings_merge_and_clamp(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    initial = await client.get("/v1/ai/web-search/settings", headers=headers)
    assert initial.json()["data"]["row"]["timeout_ms"] == 10000

    updated = await client.put(
        "/v1/ai/web-search/settings", json={"timeout_ms": 100, "max_search_calls": 50}, headers=headers
    )
    row = updated.json()["data"]["row"]
    assert row["timeout_ms"] == 1000
    assert row["max_search_calls"] == 10

    disabled = await client.put("/v1/ai/web-search/settings", json={"enabled": False}, headers=headers)
    assert disabled.json()["data"]["row"]["timeout_ms"] == 1000
    search = await client.post("/v1/ai/web-search/search", json={"query": "reduct"}, headers=headers)
    assert search.status_code == 403
    assert search.json()["error"]["code"] == "WEB_SEARCH_DISABLED"
