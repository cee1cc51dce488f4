from __future__ import annotations

import pytest

from reduct.apps.api.routes import ai_content
from reduct.services.ai.file_client import StoredAsset
from reduct.tests.utils.auth import create_platform_admin, create_test_user


async def _thread(client, headers, **payload) -> dict:
    response = await client.post("/v1/ai/timeline/threads", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


@pytest.mark.asyncio
async def test_thread_title_comes_from_first_prompt_line(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    thread = await _thread(client, headers, first_message="  Explain   integrals\nwith examples")
    assert thread["title"] == "Explain integrals"

    untitled = await _thread(client, headers)
    assert untitled["title"] == "새 대화"

    long_title = await _thread(client, headers, title="x" * 60)
    assert long_title["title"] == "x" * 40 + "…"


@pytest.mark.asyncio
async def test_threads_are_private_to_their_owner(client) -> None:
    _owner, _tenant_id, owner_headers = await create_test_user()
    _other, _other_tenant, other_headers = await create_test_user()
    thread = await _thread(client, owner_headers, title="Mine")

    assert [row["id"] for row in (await client.get("/v1/ai/timeline/threads", headers=owner_headers)).json()["data"]] == [
        thread["id"]
    ]
    assert (await client.get("/v1/ai/timeline/threads", headers=other_headers)).json()["data"] == []
    response = await client.get(f"/v1/ai/timeline/threads/{thread['id']}/messages", headers=other_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "THREAD_NOT_FOUND"


@pytest.mark.asyncio
async def test_messages_are_ordered_and_status_updates(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    thread = await _thread(client, headers, title="Chat")
    base = f"/v1/ai/timeline/threads/{thread['id']}/messages"

    first = await client.post(base, json={"role": "user", "content": "hi"}, headers=headers)
    second = await client.post(
        base, json={"role": "assistant", "content": "...", "status": "in_progress"}, headers=headers
    )
    assert first.status_code == 201
    assert first.json()["data"]["message_order"] == 1
    assert first.json()["data"]["status"] == "none"
    assert second.json()["data"]["message_order"] == 2

    patched = await client.patch(
        f"{base}/{second.json()['data']['id']}", json={"status": "success", "content": "hello"}, headers=headers
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["status"] == "success"

    bad = await client.patch(f"{base}/{second.json()['data']['id']}", json={"status": "done"}, headers=headers)
    assert bad.status_code == 400
    assert bad.json()["error"]["code"] == "INVALID_MESSAGE_STATUS"

    listing = await client.get(base, headers=headers)
    assert [(row["role"], row["content"]) for row in listing.json()["data"]] == [
        ("user", "hi"),
        ("assistant", "hello"),
    ]


@pytest.mark.asyncio
async def test_content_json_is_normalized_and_images_offloaded(client, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []

    async def fake_store(**kwargs) -> StoredAsset:
        calls.append(kwargs)
        return StoredAsset(
            asset_id=kwargs["asset_id"],
            url=f"/api/ai/media/assets/{kwargs['asset_id']}",
            mime="image/png",
            bytes=4,
            sha256="0" * 64,
            storage_key="k",
        )

    monkeypatch.setattr(ai_content, "store_image_data_url_as_asset", fake_store)
    _user, _tenant_id, headers = await create_test_user()
    thread = await _thread(client, headers, title="Images")

    response = await client.post(
        f"/v1/ai/timeline/threads/{thread['id']}/messages",
        json={
            "role": "assistant",
            "model": "gpt-test",
            "content_json": {
                "message": "Here is a chart",
                "images": [{"url": "data:image/png;base64,iVBORw=="}, {"url": "https://cdn.example.com/a.png"}],
            },
        },
        headers=headers,
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["content"] == "Here is a chart"
    assert data["metadata"]["model"] == "gpt-test"
    document = data["metadata"]["content"]
    assert document["blocks"] == [{"type": "markdown", "markdown": "Here is a chart"}]
    assert document["images"][0]["url"].startswith("/api/ai/media/assets/")
    assert document["images"][0]["mime"] == "image/png"
    assert document["images"][1] == {"url": "https://cdn.example.com/a.png"}

    assert len(calls) == 1
    assert calls[0]["message_id"] == data["id"]
    assert calls[0]["source_type"] == "ai_generated"
    assert calls[0]["auth_header"] == headers["Authorization"]


@pytest.mark.asyncio
async def test_deleted_thread_disappears(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    thread = await _thread(client, headers, title="Temp")
    assert (await client.delete(f"/v1/ai/timeline/threads/{thread['id']}", headers=headers)).status_code == 200
    assert (await client.get("/v1/ai/timeline/threads", headers=headers)).json()["data"] == []
    response = await client.put(
        f"/v1/ai/timeline/threads/{thread['id']}", json={"title": "Back"}, headers=headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_prompt_templates_version_uniqueness_and_filters(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    body = {"system": "You are a tutor", "user": "{{question}}"}
    created = await client.post(
        "/v1/ai/prompt-templates", json={"name": "tutor", "purpose": "chat", "body": body}, headers=headers
    )
    assert created.status_code == 201
    assert created.json()["data"]["row"]["version"] == 1

    duplicate = await client.post(
        "/v1/ai/prompt-templates", json={"name": "tutor", "purpose": "chat", "body": body}, headers=headers
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "DUPLICATE_VERSION"

    v2 = await client.post(
        "/v1/ai/prompt-templates",
        json={"name": "tutor", "purpose": "chat", "body": body, "version": 2, "is_active": False},
        headers=headers,
    )
    assert v2.status_code == 201

    listing = await client.get("/v1/ai/prompt-templates", params={"is_active": "true"}, headers=headers)
    rows = listing.json()["data"]["rows"]
    assert [(row["name"], row["version"]) for row in rows] == [("tutor", 1)]
    assert "body" not in rows[0]

    everything = await client.get("/v1/ai/prompt-templates", params={"is_active": "maybe"}, headers=headers)
    assert everything.json()["data"]["total"] == 2

    missing_body = await client.post(
        "/v1/ai/prompt-templates", json={"name": "empty", "purpose": "chat", "body": {}}, headers=headers
    )
    assert missing_body.status_code == 400
    assert missing_body.json()["error"]["code"] == "BODY_REQUIRED"
