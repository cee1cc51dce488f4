from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any
from uuid import uuid4

import httpx

from reduct.core.config import get_settings
from reduct.core.errors import FileServiceError


logger = logging.getLogger(__name__)

MEDIA_KINDS = ("image", "audio", "video", "file")
SOURCE_TYPES = ("ai_generated", "attachment", "post_upload", "external_link", "profile_image")


@dataclass(frozen=True)
class StoredAsset:
    asset_id: str
    url: str
    mime: str
    bytes: int
    sha256: str
    storage_key: str


def new_asset_id() -> str:
    return str(uuid4())


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    # File service responses mix camelCase and snake_case keys.
    for key in keys:
        value = payload.get(key)
        if value:
            return value
    return None


async def store_image_data_url_as_asset(
    *,
    conversation_id: str,
    message_id: str,
    asset_id: str,
    data_url: str,
    index: int,
    kind: str | None = None,
    source_type: str | None = None,
    auth_header: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> StoredAsset:
    settings = get_settings()
    url = f"{settings.file_service_url.rstrip('/')}/api/ai/media/assets"
    headers = {"Content-Type": "application/json"}
    if auth_header and auth_header.strip():
        headers["Authorization"] = auth_header.strip()
    body = {
        "conversation_id": conversation_id,
        "message_id": message_id,
        "asset_id": asset_id,
        "data_url": data_url,
        "index": index,
        "kind": kind,
        "source_type": source_type,
    }

    if client is None:
        async with httpx.AsyncClient(timeout=settings.file_service_timeout_s) as owned_client:
            response = await owned_client.post(url, json=body, headers=headers)
    else:
        response = await client.post(url, json=body, headers=headers)

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    if response.status_code >= 400:
        message = payload.get("message")
        detail = message if isinstance(message, str) else json.dumps(payload, separators=(",", ":"))
        logger.warning("file_service_store_failed status=%s asset_id=%s", response.status_code, asset_id)
        raise FileServiceError(f"FILE_SERVICE_HTTP_{response.status_code}:{detail}", status_code=response.status_code)

    stored_id = str(_pick(payload, "assetId", "asset_id") or "")
    stored_url = str(payload.get("url") or "")
    if not stored_id or not stored_url:
        raise FileServiceError(f"FILE_SERVICE_INVALID_RESPONSE:{json.dumps(payload, separators=(',', ':'))}")
    try:
        size = int(payload.get("bytes") or 0)
    except (TypeError, ValueError):
        size = 0
    return StoredAsset(
        asset_id=stored_id,
        url=stored_url,
        mime=str(payload.get("mime") or ""),
        bytes=size,
        sha256=str(payload.get("sha256") or ""),
        storage_key=str(_pick(payload, "storageKey", "storage_key") or ""),
    )
