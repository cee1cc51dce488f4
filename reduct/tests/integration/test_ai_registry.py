from __future__ import annotations

import pytest

from reduct.domain.models import ModelConversation
from reduct.persistence.db import SessionLocal
from reduct.tests.utils.auth import create_platform_admin


async def _create_provider(client, headers, slug: str = "openai") -> dict:
    response = await client.post(
        "/v1/ai/providers",
        json={"name": slug, "display_name": slug.title(), "slug": slug},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def _create_model(client, headers, provider_id: str, model_id: str = "gpt-4o-mini", **extra) -> dict:
    body = {"provider_id": provider_id, "model_id": model_id, "display_name": model_id.upper(), "model_type": "text"}
    body.update(extra)
    response = await client.post("/v1/ai/models", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_provider_crud(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    provider = await _create_provider(client, headers)
    assert provider["status"] == "active"

    duplicate = await client.post(
        "/v1/ai/providers", json={"name": "other", "display_name": "Other", "slug": "openai"}, headers=headers
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "PROVIDER_EXISTS"

    updated = await client.put(
        f"/v1/ai/providers/{provider['id']}",
        json={"display_name": "OpenAI", "description": None, "is_verified": True},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["display_name"] == "OpenAI"
    assert updated.json()["data"]["is_verified"] is True

    listing = await client.get("/v1/ai/providers", headers=headers)
    assert [row["slug"] for row in listing.json()["data"]] == ["openai"]

    deleted = await client.delete(f"/v1/ai/providers/{provider['id']}", headers=headers)
    assert deleted.status_code == 200
    missing = await client.delete(f"/v1/ai/providers/{provider['id']}", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_provider_with_models_cannot_be_deleted(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    provider = await _create_provider(client, headers)
    await _create_model(client, headers, provider["id"])

    response = await client.delete(f"/v1/ai/providers/{provider['id']}", headers=headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "PROVIDER_IN_USE"


@pytest.mark.asyncio
async def test_model_create_defaults_and_duplicates(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    provider = await _create_provider(client, headers)
    model = await _create_model(client, headers, provider["id"], capabilities=["chat"])
    assert model["name"] == "gpt-4o-mini"
    assert model["provider_slug"] == "openai"
    assert model["capabilities"] == ["chat"]

    duplicate = await client.post(
        "/v1/ai/models",
        json={"provider_id": provider["id"], "model_id": "gpt-4o-mini", "display_name": "Again", "model_type": "text"},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["message"] == "Duplicate model_id for provider"

    bad_type = await client.post(
        "/v1/ai/models",
        json={"provider_id": provider["id"], "model_id": "x", "display_name": "X", "model_type": "hologram"},
        headers=headers,
    )
    assert bad_type.status_code == 400
    assert bad_type.json()["error"]["code"] == "INVALID_MODEL_TYPE"

    unknown_provider = await client.post(
        "/v1/ai/models",
        json={"provider_id": "missing", "model_id": "x", "display_name": "X", "model_type": "text"},
        headers=headers,
    )
    assert unknown_provider.status_code == 400


@pytest.mark.asyncio
async def test_model_list_filters_and_update(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    openai = await _create_provider(client, headers)
    anthropic = await _create_provider(client, headers, slug="anthropic")
    embed = await _create_model(client, headers, openai["id"], "text-embedding-3-small", model_type="embedding")
    await _create_model(client, headers, anthropic["id"], "claude-sonnet", is_available=False)

    embeddings = await client.get("/v1/ai/models", params={"model_type": "embedding"}, headers=headers)
    assert [row["id"] for row in embeddings.json()["data"]] == [embed["id"]]

    available = await client.get("/v1/ai/models", params={"is_available": "false"}, headers=headers)
    assert [row["provider_slug"] for row in available.json()["data"]] == ["anthropic"]

    searched = await client.get("/v1/ai/models", params={"q": "embedding"}, headers=headers)
    assert len(searched.json()["data"]) == 1

    updated = await client.put(
        f"/v1/ai/models/{embed['id']}", json={"status": "deprecated", "context_window": 8192}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["status"] == "deprecated"
    assert updated.json()["data"]["context_window"] == 8192

    empty = await client.put(f"/v1/ai/models/{embed['id']}", json={}, headers=headers)
    assert empty.status_code == 400


@pytest.mark.asyncio
async def test_model_referenced_by_conversation_is_kept(client) -> None:
    admin, tenant_id, headers = await create_platform_admin()
    provider = await _create_provider(client, headers)
    model = await _create_model(client, headers, provider["id"])
    async with SessionLocal() as session:
        session.add(ModelConversation(tenant_id=tenant_id, user_id=admin.id, model_id=model["model_id"]))
        await session.commit()

    blocked = await client.delete(f"/v1/ai/models/{model['id']}", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["error"]["code"] == "MODEL_IN_USE"

    spare = await _create_model(client, headers, provider["id"], "gpt-4o")
    deleted = await client.delete(f"/v1/ai/models/{spare['id']}", headers=headers)
    assert deleted.status_code == 200
