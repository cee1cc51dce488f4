from __future__ import annotations

import re
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_current_principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, success_response
from reduct.domain.models import (
    MESSAGE_STATUSES,
    ModelConversation,
    ModelMessage,
    PromptTemplate,
    ResponseSchema,
    new_id,
    utc_now,
)
from reduct.services.ai.file_client import new_asset_id, store_image_data_url_as_asset
from reduct.services.ai.normalize import normalize_ai_content
from reduct.services.system_tenant import ensure_system_tenant


router = APIRouter(prefix="/ai", tags=["ai"], responses=DEFAULT_ERROR_RESPONSES)

MESSAGE_ROLES = ("user", "assistant", "system", "tool")
DEFAULT_THREAD_TITLE = "새 대화"
TITLE_MAX_CHARS = 40
_WHITESPACE = re.compile(r"\s+")


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _not_found(code: str, message: str = "Not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def clamp_page(limit: int, offset: int) -> tuple[int, int]:
    return min(max(limit, 1), 200), max(offset, 0)


def _parse_is_active(value: str | None) -> bool | None:
    # Anything other than "true"/"false" leaves the filter off.
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def _json_object(value: Any, field: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise _bad_request("INVALID_JSON_OBJECT", f"{field} must be a JSON object")
    return value


async def _commit_unique(db: AsyncSession, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "DUPLICATE_VERSION", "message": message},
        ) from exc


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------


class PromptTemplateCreateRequest(BaseModel):
    name: str | None = None
    purpose: str | None = None
    body: Any = None
    version: int | None = None
    is_active: bool | None = None
    metadata: dict[str, Any] | None = None


class PromptTemplateUpdateRequest(BaseModel):
    name: str | None = None
    purpose: str | None = None
    body: Any = None
    version: int | None = None
    is_active: bool | None = None
    metadata: dict[str, Any] | None = None


def _template_summary(row: PromptTemplate) -> dict[str, Any]:
    return {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "name": row.name,
        "purpose": row.purpose,
        "version": row.version,
        "is_active": row.is_active,
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _template_payload(row: PromptTemplate) -> dict[str, Any]:
    return {**_template_summary(row), "body": row.body}


async def _get_template(db: AsyncSession, tenant_id: str, template_id: str) -> PromptTemplate:
    row = (
        await db.execute(
            select(PromptTemplate).where(PromptTemplate.tenant_id == tenant_id, PromptTemplate.id == template_id)
        )
    ).scalar_one_or_none()
    if row is None:
        raise _not_found("PROMPT_TEMPLATE_NOT_FOUND")
    return row


@router.get("/prompt-templates", response_model=SuccessEnvelope[dict])
async def list_prompt_templates(
    request: Request,
    q: str | None = None,
    purpose: str | None = None,
    is_active: str | None = None,
    limit: int = 50,
    offset: int = 0,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    limit, offset = clamp_page(limit, offset)
    conditions = [PromptTemplate.tenant_id == tenant_id]
    active = _parse_is_active(is_active)
    if active is not None:
        conditions.append(PromptTemplate.is_active.is_(active))
    if purpose and purpose.strip():
        conditions.append(PromptTemplate.purpose == purpose.strip())
    if q and q.strip():
        conditions.append(PromptTemplate.name.ilike(f"%{q.strip()}%"))

    total = (await db.execute(select(func.count()).select_from(PromptTemplate).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(PromptTemplate)
            .where(*conditions)
            .order_by(
                PromptTemplate.is_active.desc(),
                PromptTemplate.purpose.asc(),
                PromptTemplate.name.asc(),
                PromptTemplate.version.desc(),
                PromptTemplate.updated_at.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return success_response(
        request=request,
        data={"ok": True, "total": int(total), "limit": limit, "offset": offset, "rows": [_template_summary(r) for r in rows]},
    )


@router.get("/prompt-templates/{template_id}", response_model=SuccessEnvelope[dict])
async def get_prompt_template(
    request: Request,
    template_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_template(db, tenant_id, template_id)
    return success_response(request=request, data={"ok": True, "row": _template_payload(row)})


@router.post("/prompt-templates", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_prompt_template(
    request: Request,
    payload: PromptTemplateCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    name = (payload.name or "").strip()
    purpose = (payload.purpose or "").strip()
    if not name:
        raise _bad_request("NAME_REQUIRED", "name is required")
    if not purpose:
        raise _bad_request("PURPOSE_REQUIRED", "purpose is required")
    if not isinstance(payload.body, dict) or not payload.body:
        raise _bad_request("BODY_REQUIRED", "body (JSON object) is required")

    tenant_id = await ensure_system_tenant(db)
    row = PromptTemplate(
        tenant_id=tenant_id,
        name=name,
        purpose=purpose,
        body=payload.body,
        version=payload.version or 1,
        is_active=True if payload.is_active is None else payload.is_active,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(row)
    await _commit_unique(db, "Duplicate template (tenant/name/version already exists)")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data={"ok": True, "row": _template_payload(row)}),
    )


@router.put("/prompt-templates/{template_id}", response_model=SuccessEnvelope[dict])
async def update_prompt_template(
    request: Request,
    template_id: str,
    payload: PromptTemplateUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_template(db, tenant_id, template_id)
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    if "name" in patch:
        row.name = (patch["name"] or "").strip()
    if "purpose" in patch:
        row.purpose = (patch["purpose"] or "").strip()
    if "body" in patch:
        row.body = _json_object(patch["body"], "body")
    if patch.get("version") is not None:
        row.version = patch["version"]
    if patch.get("is_active") is not None:
        row.is_active = patch["is_active"]
    if "metadata" in patch:
        row.metadata_json = dict(patch["metadata"] or {})
    await _commit_unique(db, "Duplicate template (tenant/name/version already exists)")
    return success_response(request=request, data={"ok": True, "row": _template_payload(row)})


@router.delete("/prompt-templates/{template_id}", response_model=SuccessEnvelope[dict])
async def delete_prompt_template(
    request: Request,
    template_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_template(db, tenant_id, template_id)
    await db.delete(row)
    await db.commit()
    return success_response(request=request, data={"ok": True})


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ResponseSchemaCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    version: int | None = None
    strict: bool | None = None
    json_schema: Any = Field(default=None, alias="schema")
    description: str | None = None
    is_active: bool | None = None


class ResponseSchemaUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    version: int | None = None
    strict: bool | None = None
    json_schema: Any = Field(default=None, alias="schema")
    description: str | None = None
    is_active: bool | None = None


def _schema_payload(row: ResponseSchema, *, include_schema: bool = True) -> dict[str, Any]:
    payload = {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "name": row.name,
        "version": row.version,
        "strict": row.strict,
        "description": row.description,
        "is_active": row.is_active,
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }
    if include_schema:
        payload["schema"] = row.schema_json
    return payload


async def _get_schema(db: AsyncSession, tenant_id: str, schema_id: str) -> ResponseSchema:
    row = (
        await db.execute(
            select(ResponseSchema).where(ResponseSchema.tenant_id == tenant_id, ResponseSchema.id == schema_id)
        )
    ).scalar_one_or_none()
    if row is None:
        raise _not_found("RESPONSE_SCHEMA_NOT_FOUND")
    return row


@router.get("/response-schemas", response_model=SuccessEnvelope[dict])
async def list_response_schemas(
    request: Request,
    q: str | None = None,
    is_active: str | None = None,
    limit: int = 50,
    offset: int = 0,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    limit, offset = clamp_page(limit, offset)
    conditions = [ResponseSchema.tenant_id == tenant_id]
    active = _parse_is_active(is_active)
    if active is not None:
        conditions.append(ResponseSchema.is_active.is_(active))
    if q and q.strip():
        conditions.append(ResponseSchema.name.ilike(f"%{q.strip()}%"))

    total = (await db.execute(select(func.count()).select_from(ResponseSchema).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(ResponseSchema)
            .where(*conditions)
            .order_by(ResponseSchema.is_active.desc(), ResponseSchema.name.asc(), ResponseSchema.version.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return success_response(
        request=request,
        data={
            "ok": True,
            "total": int(total),
            "limit": limit,
            "offset": offset,
            "rows": [_schema_payload(r, include_schema=False) for r in rows],
        },
    )


@router.get("/response-schemas/{schema_id}", response_model=SuccessEnvelope[dict])
async def get_response_schema(
    request: Request,
    schema_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_schema(db, tenant_id, schema_id)
    return success_response(request=request, data={"ok": True, "row": _schema_payload(row)})


@router.post("/response-schemas", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_response_schema(
    request: Request,
    payload: ResponseSchemaCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    name = (payload.name or "").strip()
    if not name:
        raise _bad_request("NAME_REQUIRED", "name is required")
    if not isinstance(payload.json_schema, dict) or not payload.json_schema:
        raise _bad_request("SCHEMA_REQUIRED", "schema (JSON object) is required")

    tenant_id = await ensure_system_tenant(db)
    row = ResponseSchema(
        tenant_id=tenant_id,
        name=name,
        version=payload.version or 1,
        strict=True if payload.strict is None else payload.strict,
        schema_json=payload.json_schema,
        description=payload.description,
        is_active=True if payload.is_active is None else payload.is_active,
    )
    db.add(row)
    await _commit_unique(db, "Duplicate schema (tenant/name/version already exists)")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data={"ok": True, "row": _schema_payload(row)}),
    )


@router.put("/response-schemas/{schema_id}", response_model=SuccessEnvelope[dict])
async def update_response_schema(
    request: Request,
    schema_id: str,
    payload: ResponseSchemaUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_schema(db, tenant_id, schema_id)
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    if "name" in patch:
        row.name = (patch["name"] or "").strip()
    if "json_schema" in patch:
        row.schema_json = _json_object(patch["json_schema"], "schema")
    if "description" in patch:
        row.description = patch["description"]
    for key in ("version", "strict", "is_active"):
        if patch.get(key) is not None:
            setattr(row, key, patch[key])
    await _commit_unique(db, "Duplicate schema (tenant/name/version already exists)")
    return success_response(request=request, data={"ok": True, "row": _schema_payload(row)})


@router.delete("/response-schemas/{schema_id}", response_model=SuccessEnvelope[dict])
async def delete_response_schema(
    request: Request,
    schema_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _get_schema(db, tenant_id, schema_id)
    await db.delete(row)
    await db.commit()
    return success_response(request=request, data={"ok": True})


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


class ThreadCreateRequest(BaseModel):
    title: str | None = None
    first_message: str | None = None
    model: str | None = None


class ThreadUpdateRequest(BaseModel):
    title: str | None = None


class MessageCreateRequest(BaseModel):
    role: str | None = None
    content: str | None = None
    # Raw model output; normalized to block-JSON and kept in metadata.content.
    content_json: Any = None
    model: str | None = None
    status: str | None = None


class MessageStatusRequest(BaseModel):
    status: str
    content: str | None = None


def normalize_title(value: str | None) -> str:
    collapsed = _WHITESPACE.sub(" ", value or "").strip()
    if not collapsed:
        return DEFAULT_THREAD_TITLE
    if len(collapsed) <= TITLE_MAX_CHARS:
        return collapsed
    return f"{collapsed[:TITLE_MAX_CHARS]}…"


def title_from_prompt(prompt: str) -> str:
    return normalize_title(prompt.split("\n")[0])


def _validate_status(value: str) -> str:
    if value not in MESSAGE_STATUSES:
        raise _bad_request("INVALID_MESSAGE_STATUS", f"status must be one of {', '.join(MESSAGE_STATUSES)}")
    return value


def _thread_payload(row: ModelConversation) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "title": row.title,
        "model_id": row.model_id,
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _message_payload(row: ModelMessage) -> dict[str, Any]:
    return {
        "id": row.id,
        "conversation_id": row.conversation_id,
        "role": row.role,
        "content": row.content,
        "metadata": row.metadata_json or {},
        "message_order": row.message_order,
        "status": row.status,
        "created_at": iso(row.created_at),
    }


def blocks_to_text(document: dict[str, Any]) -> str:
    parts: list[str] = []
    for block in document.get("blocks") or []:
        if not isinstance(block, dict):
            continue
        text = block.get("markdown") or block.get("text") or block.get("code")
        if isinstance(text, str) and text.strip():
            parts.append(text.strip())
    return "\n\n".join(parts)


async def _offload_inline_images(
    document: dict[str, Any],
    *,
    conversation_id: str,
    message_id: str,
    source_type: str,
    auth_header: str | None,
) -> dict[str, Any]:
    """Replace ``data:image/...`` URLs in ``images`` with file-service asset URLs."""
    images = document.get("images")
    if not isinstance(images, list):
        return document
    stored_images: list[Any] = []
    for index, image in enumerate(images):
        url = image.get("url") if isinstance(image, dict) else None
        if not isinstance(url, str) or not url.startswith("data:image/"):
            stored_images.append(image)
            continue
        asset = await store_image_data_url_as_asset(
            conversation_id=conversation_id,
            message_id=message_id,
            asset_id=new_asset_id(),
            data_url=url,
            index=index,
            kind="image",
            source_type=source_type,
            auth_header=auth_header,
        )
        stored_images.append({**image, "url": asset.url, "asset_id": asset.asset_id, "mime": asset.mime})
    return {**document, "images": stored_images}


async def _owned_thread(db: AsyncSession, tenant_id: str, user_id: str, thread_id: str) -> ModelConversation:
    # Threads are only visible to the user who created them.
    row = (
        await db.execute(
            select(ModelConversation).where(
                ModelConversation.id == thread_id,
                ModelConversation.tenant_id == tenant_id,
                ModelConversation.user_id == user_id,
                ModelConversation.status == "active",
            )
        )
    ).scalar_one_or_none()
    if row is None:
        raise _not_found("THREAD_NOT_FOUND", "Thread not found")
    return row


@router.get("/timeline/threads", response_model=SuccessEnvelope[list[dict]])
async def list_threads(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    rows = (
        await db.execute(
            select(ModelConversation)
            .where(
                ModelConversation.tenant_id == tenant_id,
                ModelConversation.user_id == principal.user_id,
                ModelConversation.status == "active",
            )
            .order_by(ModelConversation.updated_at.desc())
        )
    ).scalars().all()
    return success_response(request=request, data=[_thread_payload(row) for row in rows])


@router.post("/timeline/threads", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_thread(
    request: Request,
    payload: ThreadCreateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    tenant_id = await ensure_system_tenant(db)
    title = title_from_prompt(payload.first_message) if payload.first_message else normalize_title(payload.title)
    row = ModelConversation(
        tenant_id=tenant_id,
        user_id=principal.user_id,
        model_id=(payload.model or "").strip() or None,
        title=title,
        status="active",
    )
    db.add(row)
    await db.commit()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_thread_payload(row)),
    )


@router.put("/timeline/threads/{thread_id}", response_model=SuccessEnvelope[dict])
async def update_thread_title(
    request: Request,
    thread_id: str,
    payload: ThreadUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    title = (payload.title or "").strip()
    if not title:
        raise _bad_request("TITLE_REQUIRED", "title is required")
    tenant_id = await ensure_system_tenant(db)
    row = await _owned_thread(db, tenant_id, principal.user_id, thread_id)
    row.title = title
    await db.commit()
    return success_response(request=request, data=_thread_payload(row))


@router.delete("/timeline/threads/{thread_id}", response_model=SuccessEnvelope[dict])
async def archive_thread(
    request: Request,
    thread_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    row = await _owned_thread(db, tenant_id, principal.user_id, thread_id)
    row.status = "deleted"
    await db.commit()
    return success_response(request=request, data={"ok": True, "id": thread_id})


@router.get("/timeline/threads/{thread_id}/messages", response_model=SuccessEnvelope[list[dict]])
async def list_messages(
    request: Request,
    thread_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = await ensure_system_tenant(db)
    await _owned_thread(db, tenant_id, principal.user_id, thread_id)
    rows = (
        await db.execute(
            select(ModelMessage)
            .where(ModelMessage.conversation_id == thread_id)
            .order_by(ModelMessage.message_order.asc())
        )
    ).scalars().all()
    return success_response(request=request, data=[_message_payload(row) for row in rows])


@router.post(
    "/timeline/threads/{thread_id}/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[dict],
)
async def add_message(
    request: Request,
    thread_id: str,
    payload: MessageCreateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    normalized = normalize_ai_content(payload.content_json) if payload.content_json is not None else None
    content = payload.content or (blocks_to_text(normalized) if normalized is not None else "")
    if not payload.role or not content:
        raise _bad_request("MESSAGE_FIELDS_REQUIRED", "role and content are required")
    if payload.role not in MESSAGE_ROLES:
        raise _bad_request("INVALID_MESSAGE_ROLE", f"role must be one of {', '.join(MESSAGE_ROLES)}")
    message_status = _validate_status(payload.status) if payload.status else "none"
    tenant_id = await ensure_system_tenant(db)
    thread = await _owned_thread(db, tenant_id, principal.user_id, thread_id)

    message_id = new_id()
    metadata: dict[str, Any] = {"model": payload.model} if payload.model else {}
    if normalized is not None:
        metadata["content"] = await _offload_inline_images(
            normalized,
            conversation_id=thread.id,
            message_id=message_id,
            source_type="ai_generated" if payload.role == "assistant" else "attachment",
            auth_header=request.headers.get("Authorization"),
        )

    try:
        current = (
            await db.execute(
                select(func.coalesce(func.max(ModelMessage.message_order), 0)).where(
                    ModelMessage.conversation_id == thread.id
                )
            )
        ).scalar_one()
        row = ModelMessage(
            id=message_id,
            conversation_id=thread.id,
            role=payload.role,
            content=content,
            message_order=int(current) + 1,
            metadata_json=metadata,
            status=message_status,
        )
        db.add(row)
        # Bump the thread so recent conversations sort first.
        thread.updated_at = utc_now()
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "MESSAGE_ORDER_CONFLICT", "message": "Concurrent message append, retry"},
        ) from exc
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_message_payload(row)),
    )


@router.patch("/timeline/threads/{thread_id}/messages/{message_id}", response_model=SuccessEnvelope[dict])
async def update_message_status(
    request: Request,
    thread_id: str,
    message_id: str,
    payload: MessageStatusRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    message_status = _validate_status(payload.status)
    tenant_id = await ensure_system_tenant(db)
    await _owned_thread(db, tenant_id, principal.user_id, thread_id)
    row = (
        await db.execute(
            select(ModelMessage).where(ModelMessage.id == message_id, ModelMessage.conversation_id == thread_id)
        )
    ).scalar_one_or_none()
    if row is None:
        raise _not_found("MESSAGE_NOT_FOUND", "Message not found")
    row.status = message_status
    if payload.content is not None:
        row.content = payload.content
    await db.commit()
    return success_response(request=request, data=_message_payload(row))
