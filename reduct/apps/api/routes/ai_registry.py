from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, money, success_response
from reduct.domain.models import AiModel, AiProvider
from reduct.services.ai.registry import (
    MODEL_STATUSES,
    MODEL_TYPES,
    PROVIDER_STATUSES,
    model_in_use,
    provider_model_count,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai-registry"], responses=DEFAULT_ERROR_RESPONSES)


class ProviderCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=100)
    description: str | None = None
    website_url: str | None = None
    api_base_url: str | None = None
    documentation_url: str | None = None
    status: str = "active"
    is_verified: bool = False
    metadata: dict[str, Any] | None = None


class ProviderUpdateRequest(BaseModel):
    name: str | None = None
    display_name: str | None = None
    slug: str | None = None
    description: str | None = None
    website_url: str | None = None
    api_base_url: str | None = None
    documentation_url: str | None = None
    status: str | None = None
    is_verified: bool | None = None
    metadata: dict[str, Any] | None = None


class ModelCreateRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    provider_id: str = Field(min_length=1)
    model_id: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=255)
    model_type: str
    name: str | None = None
    description: str | None = None
    capabilities: list[str] | None = None
    context_window: int | None = Field(default=None, ge=1)
    max_output_tokens: int | None = Field(default=None, ge=1)
    input_token_cost_per_1k: Decimal = Field(default=Decimal("0"), ge=0)
    output_token_cost_per_1k: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    is_available: bool = True
    is_default: bool = False
    status: str = "active"
    released_at: datetime | None = None
    deprecated_at: datetime | None = None
    metadata: dict[str, Any] | None = None


class ModelUpdateRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str | None = None
    display_name: str | None = None
    model_type: str | None = None
    name: str | None = None
    description: str | None = None
    capabilities: list[str] | None = None
    context_window: int | None = Field(default=None, ge=1)
    max_output_tokens: int | None = Field(default=None, ge=1)
    input_token_cost_per_1k: Decimal | None = Field(default=None, ge=0)
    output_token_cost_per_1k: Decimal | None = Field(default=None, ge=0)
    currency: str | None = None
    is_available: bool | None = None
    is_default: bool | None = None
    status: str | None = None
    released_at: datetime | None = None
    deprecated_at: datetime | None = None
    metadata: dict[str, Any] | None = None


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def _conflict(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": code, "message": message})


def _require_choice(value: str, choices: tuple[str, ...], field: str) -> str:
    if value not in choices:
        raise _bad_request(f"INVALID_{field.upper()}", f"invalid {field}")
    return value


async def _commit_or_conflict(db: AsyncSession, code: str, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _conflict(code, message) from exc


def _provider_payload(row: AiProvider) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "display_name": row.display_name,
        "slug": row.slug,
        "description": row.description,
        "website_url": row.website_url,
        "api_base_url": row.api_base_url,
        "documentation_url": row.documentation_url,
        "status": row.status,
        "is_verified": row.is_verified,
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _model_payload(row: AiModel, provider: AiProvider | None = None) -> dict[str, Any]:
    return {
        "id": row.id,
        "provider_id": row.provider_id,
        "provider_display_name": provider.display_name if provider is not None else None,
        "provider_slug": provider.slug if provider is not None else None,
        "name": row.name,
        "model_id": row.model_id,
        "display_name": row.display_name,
        "description": row.description,
        "model_type": row.model_type,
        "capabilities": list(row.capabilities or []),
        "context_window": row.context_window,
        "max_output_tokens": row.max_output_tokens,
        "input_token_cost_per_1k": money(row.input_token_cost_per_1k),
        "output_token_cost_per_1k": money(row.output_token_cost_per_1k),
        "currency": row.currency,
        "is_available": row.is_available,
        "is_default": row.is_default,
        "status": row.status,
        "released_at": iso(row.released_at),
        "deprecated_at": iso(row.deprecated_at),
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


async def _get_provider(db: AsyncSession, provider_id: str) -> AiProvider:
    row = await db.get(AiProvider, provider_id)
    if row is None:
        raise _not_found("PROVIDER_NOT_FOUND", "Provider not found")
    return row


async def _get_model(db: AsyncSession, model_id: str) -> AiModel:
    row = await db.get(AiModel, model_id)
    if row is None:
        raise _not_found("MODEL_NOT_FOUND", "Model not found")
    return row


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@router.get("/providers", response_model=SuccessEnvelope[list[dict]])
async def list_providers(
    request: Request,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = (await db.execute(select(AiProvider).order_by(AiProvider.created_at.desc()))).scalars().all()
    return success_response(request=request, data=[_provider_payload(row) for row in rows])


@router.get("/providers/{provider_id}", response_model=SuccessEnvelope[dict])
async def get_provider(
    request: Request,
    provider_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(request=request, data=_provider_payload(await _get_provider(db, provider_id)))


@router.post("/providers", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_provider(
    request: Request,
    payload: ProviderCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    name = payload.name.strip()
    display_name = payload.display_name.strip()
    slug = payload.slug.strip()
    if not name or not display_name or not slug:
        raise _bad_request("PROVIDER_FIELDS_REQUIRED", "name, display_name, slug are required")
    row = AiProvider(
        name=name,
        display_name=display_name,
        slug=slug,
        description=payload.description,
        website_url=payload.website_url,
        api_base_url=payload.api_base_url,
        documentation_url=payload.documentation_url,
        status=_require_choice(payload.status, PROVIDER_STATUSES, "status"),
        is_verified=payload.is_verified,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(row)
    await _commit_or_conflict(db, "PROVIDER_EXISTS", "Provider name or slug already exists")
    logger.info("ai_provider_created provider_id=%s slug=%s", row.id, row.slug)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_provider_payload(row)),
    )


@router.put("/providers/{provider_id}", response_model=SuccessEnvelope[dict])
async def update_provider(
    request: Request,
    provider_id: str,
    payload: ProviderUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await _get_provider(db, provider_id)
    # Null fields keep their stored value.
    patch = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    for field in ("name", "display_name", "slug"):
        if field in patch:
            value = patch[field].strip()
            if not value:
                raise _bad_request("PROVIDER_FIELDS_REQUIRED", f"{field} must be non-empty")
            setattr(row, field, value)
    for field in ("description", "website_url", "api_base_url", "documentation_url", "is_verified"):
        if field in patch:
            setattr(row, field, patch[field])
    if "status" in patch:
        row.status = _require_choice(patch["status"], PROVIDER_STATUSES, "status")
    if "metadata" in patch:
        row.metadata_json = dict(patch["metadata"])
    await _commit_or_conflict(db, "PROVIDER_EXISTS", "Provider name or slug already exists")
    return success_response(request=request, data=_provider_payload(row))


@router.delete("/providers/{provider_id}", response_model=SuccessEnvelope[dict])
async def delete_provider(
    request: Request,
    provider_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await _get_provider(db, provider_id)
    if await provider_model_count(db, provider_id):
        raise _conflict("PROVIDER_IN_USE", "Provider still has registered models")
    await db.delete(row)
    await db.commit()
    logger.info("ai_provider_deleted provider_id=%s", provider_id)
    return success_response(request=request, data={"ok": True, "id": provider_id})


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


@router.get("/models", response_model=SuccessEnvelope[list[dict]])
async def list_models(
    request: Request,
    provider_id: str | None = None,
    model_type: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    is_available: bool | None = None,
    q: str | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(AiModel, AiProvider).join(AiProvider, AiProvider.id == AiModel.provider_id)
    if provider_id:
        query = query.where(AiModel.provider_id == provider_id)
    if model_type:
        query = query.where(AiModel.model_type == model_type)
    if status_filter:
        query = query.where(AiModel.status == status_filter)
    if is_available is not None:
        query = query.where(AiModel.is_available.is_(is_available))
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        query = query.where(
            or_(
                AiModel.name.ilike(pattern),
                AiModel.model_id.ilike(pattern),
                AiModel.display_name.ilike(pattern),
                AiProvider.display_name.ilike(pattern),
            )
        )
    query = query.order_by(AiProvider.display_name, AiModel.display_name)
    rows = (await db.execute(query)).all()
    return success_response(request=request, data=[_model_payload(model, provider) for model, provider in rows])


@router.get("/models/{model_row_id}", response_model=SuccessEnvelope[dict])
async def get_model(
    request: Request,
    model_row_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await _get_model(db, model_row_id)
    provider = await db.get(AiProvider, row.provider_id)
    return success_response(request=request, data=_model_payload(row, provider))


@router.post("/models", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_model(
    request: Request,
    payload: ModelCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    provider = await db.get(AiProvider, payload.provider_id)
    if provider is None:
        raise _bad_request("INVALID_PROVIDER_ID", "provider_id must reference a registered provider")
    model_id = payload.model_id.strip()
    display_name = payload.display_name.strip()
    if not model_id or not display_name:
        raise _bad_request("MODEL_FIELDS_REQUIRED", "provider_id, model_id, display_name, model_type are required")
    row = AiModel(
        provider_id=provider.id,
        model_id=model_id,
        name=(payload.name or "").strip() or model_id,
        display_name=display_name,
        description=payload.description,
        model_type=_require_choice(payload.model_type, MODEL_TYPES, "model_type"),
        capabilities=list(payload.capabilities or []),
        context_window=payload.context_window,
        max_output_tokens=payload.max_output_tokens,
        input_token_cost_per_1k=payload.input_token_cost_per_1k,
        output_token_cost_per_1k=payload.output_token_cost_per_1k,
        currency=payload.currency.strip().upper() or "USD",
        is_available=payload.is_available,
        is_default=payload.is_default,
        status=_require_choice(payload.status, MODEL_STATUSES, "status"),
        released_at=payload.released_at,
        deprecated_at=payload.deprecated_at,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(row)
    await _commit_or_conflict(db, "MODEL_EXISTS", "Duplicate model_id for provider")
    logger.info("ai_model_created model_row_id=%s provider_id=%s model_id=%s", row.id, provider.id, model_id)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_model_payload(row, provider)),
    )


@router.put("/models/{model_row_id}", response_model=SuccessEnvelope[dict])
async def update_model(
    request: Request,
    model_row_id: str,
    payload: ModelUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    row = await _get_model(db, model_row_id)
    for field in ("model_id", "display_name", "name"):
        if field in patch:
            value = (patch[field] or "").strip()
            if not value:
                raise _bad_request("MODEL_FIELDS_REQUIRED", f"{field} must be non-empty")
            setattr(row, field, value)
    if "model_type" in patch:
        row.model_type = _require_choice(patch["model_type"] or "", MODEL_TYPES, "model_type")
    if "status" in patch:
        row.status = _require_choice(patch["status"] or "", MODEL_STATUSES, "status")
    if "capabilities" in patch:
        row.capabilities = list(patch["capabilities"] or [])
    if "metadata" in patch:
        row.metadata_json = dict(patch["metadata"] or {})
    if "currency" in patch and patch["currency"]:
        row.currency = patch["currency"].strip().upper()
    for field in ("input_token_cost_per_1k", "output_token_cost_per_1k", "is_available", "is_default"):
        if field in patch and patch[field] is not None:
            setattr(row, field, patch[field])
    for field in ("description", "context_window", "max_output_tokens", "released_at", "deprecated_at"):
        if field in patch:
            setattr(row, field, patch[field])
    await _commit_or_conflict(db, "MODEL_EXISTS", "Duplicate model_id for provider")
    provider = await db.get(AiProvider, row.provider_id)
    return success_response(request=request, data=_model_payload(row, provider))


@router.delete("/models/{model_row_id}", response_model=SuccessEnvelope[dict])
async def delete_model(
    request: Request,
    model_row_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await _get_model(db, model_row_id)
    if await model_in_use(db, row):
        raise _conflict("MODEL_IN_USE", "Model is referenced by conversations")
    await db.delete(row)
    await db.commit()
    logger.info("ai_model_deleted model_row_id=%s", model_row_id)
    return success_response(request=request, data={"ok": True, "id": model_row_id})
