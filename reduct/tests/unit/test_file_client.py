from __future__ import annotations

import json

import httpx
import pytest

from reduct.core.errors import FileServiceError
from reduct.services.ai.file_client import store_image_data_url_as_asset


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _store(client: httpx.AsyncClient, **kwargs):
    return await store_image_data_url_as_asset(
        conversation_id="conv-1",
        message_id="msg-1",
        asset_id="asset-1",
        data_url="data:image/png;base64,AAAA",
        index=0,
        client=client,
        **kwargs,
    )


async def test_store_accepts_camel_case_response_and_forwards_auth() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            201,
            json={
                "assetId": "asset-1",
                "url": "/api/ai/media/assets/asset-1",
                "mime": "image/png",
                "bytes": "3",
                "sha256": "abc",
                "storageKey": "k/asset-1.png",
            },
        )

    async with _client(handler) as client:
        asset = await _store(client, kind="image", auth_header=" Bearer tkn ")

    assert seen[0].url.path == "/api/ai/media/assets"
    assert seen[0].headers["Authorization"] == "Bearer tkn"
    assert json.loads(seen[0].content)["kind"] == "image"
    assert asset.asset_id == "asset-1"
    assert asset.bytes == 3
    assert asset.storage_key == "k/asset-1.png"


async def test_store_http_error_uses_service_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(413, json={"message": "too large"})

    async with _client(handler) as client:
        with pytest.raises(FileServiceError, match="FILE_SERVICE_HTTP_413:too large"):
            await _store(client)


async def test_store_rejects_response_without_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"asset_id": "asset-1"})

    async with _client(handler) as client:
        with pytest.raises(FileServiceError, match="FILE_SERVICE_INVALID_RESPONSE"):
            await _store(client)
