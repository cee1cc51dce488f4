from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, money, success_response
from reduct.domain.models import PricingMarkupRule, PricingRate, PricingRateCard, PricingSku
from reduct.services.pricing.catalog import (
    BULK_OPERATIONS,
    MARKUP_STATUSES,
    MODALITIES,
    RATE_CARD_STATUSES,
    TOKEN_CATEGORIES,
)
from reduct.services.pricing.public_prices import compute_public_prices, filter_public_prices
from reduct.services.pricing.rates import RateFilters, bulk_update_rates, clone_rate_card, joined_rates


router = APIRouter(prefix="/ai/pricing", tags=["pricing"], responses=DEFAULT_ERROR_RESPONSES)


class SkuCreateRequest(BaseModel):
    sku_code: str = Field(min_length=1, max_length=120)
    provider_slug: str = Field(min_length=1, max_length=100)
    model_key: str = Field(min_length=1, max_length=100)
    model_name: str = Field(min_length=1, max_length=255)
    modality: str = "text"
    usage_kind: str = "tokens"
    token_category: str | None = None
    unit: str = "tokens"
    unit_size: int = Field(default=1_000_000, ge=1)
    is_active: bool = True
    metadata: dict[str, Any] | None = None


class RateCardCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    version: int = Field(gt=0)
    status: str = "draft"
    effective_at: datetime
    description: str | None = None


class RateCardUpdateRequest(BaseModel):
    name: str | None = None
    version: int | None = Field(default=None, gt=0)
    status: str | None = None
    effective_at: datetime | None = None
    description: str | None = None


class RateCreateRequest(BaseModel):
    rate_card_id: str
    sku_id: str
    rate_value: Decimal = Field(ge=0)
    tier_unit: str | None = None
    tier_min: Decimal | None = Field(default=None, ge=0)
    tier_max: Decimal | None = Field(default=None, ge=0)
    metadata: dict[str, Any] | None = None


class RateUpdateRequest(BaseModel):
    rate_value: Decimal | None = Field(default=None, ge=0)
    tier_unit: str | None = None
    tier_min: Decimal | None = Field(default=None, ge=0)
    tier_max: Decimal | None = Field(default=None, ge=0)


class BulkRateUpdateRequest(BaseModel):
    rate_card_id: str = Field(min_length=1)
    operation: str
    value: Decimal
    q: str | None = None
    provider_slug: str | None = None
    model_key: str | None = None
    modality: str | None = None
    usage_kind: str | None = None
    token_category: str | None = None
    tier_unit: str | None = None


class MarkupCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    provider_slug: str | None = None
    model_key: str | None = None
    modality: str | None = None
    margin_percent: Decimal
    status: str = "active"
    effective_from: datetime | None = None
    effective_to: datetime | None = None


class MarkupUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    provider_slug: str | None = None
    model_key: str | None = None
    modality: str | None = None
    margin_percent: Decimal | None = None
    status: str | None = None
    effective_from: datetime | None = None
    effective_to: datetime | None = None


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def _require_choice(value: str, choices: tuple[str, ...], field: str) -> str:
    if value not in choices:
        raise _bad_request(f"INVALID_{field.upper()}", f"invalid {field}")
    return value


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _page(rows: list[Any], total: int, limit: int, offset: int) -> dict[str, Any]:
    return {"ok": True, "total": int(total), "limit": limit, "offset": offset, "rows": rows}


async def _commit_or_conflict(db: AsyncSession, code: str, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": code, "message": message}) from exc


def _sku_payload(row: PricingSku) -> dict[str, Any]:
    return {
        "id": row.id,
        "sku_code": row.sku_code,
        "provider_slug": row.provider_slug,
        "model_key": row.model_key,
        "model_name": row.model_name,
        "modality": row.modality,
        "usage_kind": row.usage_kind,
        "token_category": row.token_category,
        "unit": row.unit,
        "unit_size": row.unit_size,
        "is_active": row.is_active,
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _card_payload(row: PricingRateCard) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "version": row.version,
        "status": row.status,
        "effective_at": iso(row.effective_at),
        "description": row.description,
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _rate_payload(rate: PricingRate, card: PricingRateCard | None = None, sku: PricingSku | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": rate.id,
        "rate_card_id": rate.rate_card_id,
        "sku_id": rate.sku_id,
        "rate_value": money(rate.rate_value),
        "tier_unit": rate.tier_unit,
        "tier_min": money(rate.tier_min),
        "tier_max": money(rate.tier_max),
        "created_at": iso(rate.created_at),
        "updated_at": iso(rate.updated_at),
    }
    if card is not None:
        payload.update(
            {
                "rate_card_name": card.name,
                "rate_card_version": card.version,
                "rate_card_status": card.status,
                "rate_card_effective_at": iso(card.effective_at),
            }
        )
    if sku is not None:
        payload.update(
            {
                "sku_code": sku.sku_code,
                "provider_slug": sku.provider_slug,
                "model_key": sku.model_key,
                "model_name": sku.model_name,
                "modality": sku.modality,
                "usage_kind": sku.usage_kind,
                "token_category": sku.token_category,
                "unit": sku.unit,
                "unit_size": sku.unit_size,
            }
        )
    return payload


def _markup_payload(row: PricingMarkupRule) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "provider_slug": row.provider_slug,
        "model_key": row.model_key,
        "modality": row.modality,
        "margin_percent": money(row.margin_percent),
        "status": row.status,
        "effective_from": iso(row.effective_from),
        "effective_to": iso(row.effective_to),
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _check_effective_range(starts: datetime | None, ends: datetime | None) -> None:
    if starts is not None and ends is not None and ends <= starts:
        raise _bad_request("INVALID_EFFECTIVE_RANGE", "effective_to must be after effective_from")


# ---------------------------------------------------------------------------
# Public prices
# ---------------------------------------------------------------------------


@router.get("/public-prices", response_model=SuccessEnvelope[dict])
async def list_public_prices(
    request: Request,
    q: str | None = None,
    provider_slug: str | None = None,
    modality: str | None = None,
    tier_unit: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    prices = filter_public_prices(
        await compute_public_prices(db),
        q=_blank_to_none(q),
        provider_slug=_blank_to_none(provider_slug),
        modality=_blank_to_none(modality),
        tier_unit=_blank_to_none(tier_unit),
    )
    rows = [price.to_dict() for price in prices[offset : offset + limit]]
    return success_response(request=request, data=_page(rows, len(prices), limit, offset))


# ---------------------------------------------------------------------------
# SKUs
# ---------------------------------------------------------------------------


@router.get("/skus", response_model=SuccessEnvelope[dict])
async def list_skus(
    request: Request,
    q: str | None = None,
    provider_slug: str | None = None,
    modality: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if provider_slug:
        conditions.append(PricingSku.provider_slug == provider_slug.strip())
    if modality:
        conditions.append(PricingSku.modality == modality.strip())
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        conditions.append(
            or_(
                PricingSku.sku_code.ilike(pattern),
                PricingSku.model_key.ilike(pattern),
                PricingSku.model_name.ilike(pattern),
            )
        )
    total = (await db.execute(select(func.count()).select_from(PricingSku).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(PricingSku)
            .where(*conditions)
            .order_by(PricingSku.provider_slug, PricingSku.model_name, PricingSku.sku_code)
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return success_response(request=request, data=_page([_sku_payload(r) for r in rows], total, limit, offset))


@router.post("/skus", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_sku(
    request: Request,
    payload: SkuCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    token_category = _blank_to_none(payload.token_category)
    if token_category is not None:
        _require_choice(token_category, TOKEN_CATEGORIES, "token_category")
    row = PricingSku(
        sku_code=payload.sku_code.strip(),
        provider_slug=payload.provider_slug.strip(),
        model_key=payload.model_key.strip(),
        model_name=payload.model_name.strip(),
        modality=_require_choice(payload.modality, MODALITIES, "modality"),
        usage_kind=payload.usage_kind.strip() or "tokens",
        token_category=token_category,
        unit=payload.unit.strip() or "tokens",
        unit_size=payload.unit_size,
        is_active=payload.is_active,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(row)
    await _commit_or_conflict(db, "SKU_EXISTS", "SKU code already exists")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_sku_payload(row)),
    )


# ---------------------------------------------------------------------------
# Rate cards
# ---------------------------------------------------------------------------


@router.get("/rate-cards", response_model=SuccessEnvelope[dict])
async def list_rate_cards(
    request: Request,
    q: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if status_filter:
        conditions.append(PricingRateCard.status == status_filter.strip())
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        conditions.append(
            or_(PricingRateCard.name.ilike(pattern), func.coalesce(PricingRateCard.description, "").ilike(pattern))
        )
    total = (await db.execute(select(func.count()).select_from(PricingRateCard).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(PricingRateCard)
            .where(*conditions)
            .order_by(PricingRateCard.effective_at.desc(), PricingRateCard.version.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return success_response(request=request, data=_page([_card_payload(r) for r in rows], total, limit, offset))


@router.post("/rate-cards", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_rate_card(
    request: Request,
    payload: RateCardCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    name = payload.name.strip()
    if not name:
        raise _bad_request("NAME_REQUIRED", "name is required")
    card = PricingRateCard(
        name=name,
        version=payload.version,
        status=_require_choice(payload.status, RATE_CARD_STATUSES, "status"),
        effective_at=payload.effective_at,
        description=payload.description,
    )
    db.add(card)
    await _commit_or_conflict(db, "RATE_CARD_EXISTS", "Rate card already exists")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_card_payload(card)),
    )


@router.put("/rate-cards/{card_id}", response_model=SuccessEnvelope[dict])
async def update_rate_card(
    request: Request,
    card_id: str,
    payload: RateCardUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    card = await db.get(PricingRateCard, card_id)
    if card is None:
        raise _not_found("RATE_CARD_NOT_FOUND", "Rate card not found")
    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise _bad_request("NAME_REQUIRED", "name must be non-empty")
        card.name = name
    if "version" in patch:
        if patch["version"] is None:
            raise _bad_request("INVALID_VERSION", "version must be positive")
        card.version = patch["version"]
    if "status" in patch:
        card.status = _require_choice(patch["status"] or "", RATE_CARD_STATUSES, "status")
    if "effective_at" in patch:
        if patch["effective_at"] is None:
            raise _bad_request("EFFECTIVE_AT_REQUIRED", "effective_at is required")
        card.effective_at = patch["effective_at"]
    if "description" in patch:
        card.description = patch["description"]
    await _commit_or_conflict(db, "RATE_CARD_EXISTS", "Rate card already exists")
    return success_response(request=request, data=_card_payload(card))


@router.post("/rate-cards/{card_id}/clone", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def clone_card(
    request: Request,
    card_id: str,
    payload: RateCardCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    name = payload.name.strip()
    if not name:
        raise _bad_request("NAME_REQUIRED", "name is required")
    card = PricingRateCard(
        name=name,
        version=payload.version,
        status=_require_choice(payload.status, RATE_CARD_STATUSES, "status"),
        effective_at=payload.effective_at,
        description=payload.description,
    )
    try:
        copied = await clone_rate_card(db, card_id, card)
        if copied is None:
            await db.rollback()
            raise _not_found("RATE_CARD_NOT_FOUND", "Source rate card not found")
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "RATE_CARD_EXISTS", "message": "Rate card already exists"},
        ) from exc
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data={"rate_card": _card_payload(card), "copied": copied}),
    )


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------


@router.get("/rates", response_model=SuccessEnvelope[dict])
async def list_rates(
    request: Request,
    q: str | None = None,
    rate_card_id: str | None = None,
    rate_card_status: str | None = None,
    provider_slug: str | None = None,
    model_key: str | None = None,
    modality: str | None = None,
    usage_kind: str | None = None,
    token_category: str | None = None,
    tier_unit: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    filters = RateFilters(
        rate_card_id=_blank_to_none(rate_card_id),
        rate_card_status=_blank_to_none(rate_card_status),
        provider_slug=_blank_to_none(provider_slug),
        model_key=_blank_to_none(model_key),
        modality=_blank_to_none(modality),
        usage_kind=_blank_to_none(usage_kind),
        token_category=_blank_to_none(token_category),
        tier_unit=_blank_to_none(tier_unit),
        q=_blank_to_none(q),
    )
    base = joined_rates().where(*filters.conditions())
    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    rows = (
        await db.execute(
            base.order_by(
                PricingRateCard.effective_at.desc(),
                PricingRateCard.version.desc(),
                PricingSku.provider_slug,
                PricingSku.model_name,
            )
            .limit(limit)
            .offset(offset)
        )
    ).all()
    data = [_rate_payload(rate, card, sku) for rate, card, sku in rows]
    return success_response(request=request, data=_page(data, total, limit, offset))


@router.post("/rates", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_rate(
    request: Request,
    payload: RateCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    if await db.get(PricingRateCard, payload.rate_card_id) is None:
        raise _not_found("RATE_CARD_NOT_FOUND", "Rate card not found")
    if await db.get(PricingSku, payload.sku_id) is None:
        raise _not_found("SKU_NOT_FOUND", "SKU not found")
    rate = PricingRate(
        rate_card_id=payload.rate_card_id,
        sku_id=payload.sku_id,
        rate_value=payload.rate_value,
        tier_unit=_blank_to_none(payload.tier_unit),
        tier_min=payload.tier_min,
        tier_max=payload.tier_max,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(rate)
    await db.commit()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_rate_payload(rate)),
    )


@router.post("/rates/bulk-update", response_model=SuccessEnvelope[dict])
async def bulk_update(
    request: Request,
    payload: BulkRateUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    operation = _require_choice(payload.operation.strip(), BULK_OPERATIONS, "operation")
    # Keep every resulting rate non-negative.
    floor = Decimal("-100") if operation == "percent" else Decimal("0")
    if payload.value < floor:
        raise _bad_request("INVALID_VALUE", f"value must be at least {floor} for {operation}")
    filters = RateFilters(
        rate_card_id=payload.rate_card_id.strip(),
        provider_slug=_blank_to_none(payload.provider_slug),
        model_key=_blank_to_none(payload.model_key),
        modality=_blank_to_none(payload.modality),
        usage_kind=_blank_to_none(payload.usage_kind),
        token_category=_blank_to_none(payload.token_category),
        tier_unit=_blank_to_none(payload.tier_unit),
        q=_blank_to_none(payload.q),
    )
    try:
        updated = await bulk_update_rates(db, filters, operation, payload.value)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return success_response(request=request, data={"ok": True, "updated": updated})


@router.put("/rates/{rate_id}", response_model=SuccessEnvelope[dict])
async def update_rate(
    request: Request,
    rate_id: str,
    payload: RateUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    rate = await db.get(PricingRate, rate_id)
    if rate is None:
        raise _not_found("RATE_NOT_FOUND", "Rate not found")
    if "rate_value" in patch:
        if patch["rate_value"] is None:
            raise _bad_request("INVALID_RATE_VALUE", "rate_value must be non-negative number")
        rate.rate_value = patch["rate_value"]
    if "tier_unit" in patch:
        rate.tier_unit = _blank_to_none(patch["tier_unit"])
    # Tier bounds may be cleared with null.
    if "tier_min" in patch:
        rate.tier_min = patch["tier_min"]
    if "tier_max" in patch:
        rate.tier_max = patch["tier_max"]
    await db.commit()
    return success_response(request=request, data=_rate_payload(rate))


# ---------------------------------------------------------------------------
# Markups
# ---------------------------------------------------------------------------


@router.get("/markups", response_model=SuccessEnvelope[dict])
async def list_markups(
    request: Request,
    q: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    provider_slug: str | None = None,
    model_key: str | None = None,
    modality: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if status_filter:
        conditions.append(PricingMarkupRule.status == status_filter.strip())
    if provider_slug:
        conditions.append(PricingMarkupRule.provider_slug == provider_slug.strip())
    if model_key:
        conditions.append(PricingMarkupRule.model_key == model_key.strip())
    if modality:
        conditions.append(PricingMarkupRule.modality == modality.strip())
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        conditions.append(
            or_(
                PricingMarkupRule.name.ilike(pattern),
                func.coalesce(PricingMarkupRule.description, "").ilike(pattern),
                func.coalesce(PricingMarkupRule.provider_slug, "").ilike(pattern),
                func.coalesce(PricingMarkupRule.model_key, "").ilike(pattern),
            )
        )
    total = (await db.execute(select(func.count()).select_from(PricingMarkupRule).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(PricingMarkupRule)
            .where(*conditions)
            .order_by(PricingMarkupRule.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return success_response(request=request, data=_page([_markup_payload(r) for r in rows], total, limit, offset))


@router.post("/markups", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_markup(
    request: Request,
    payload: MarkupCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    name = payload.name.strip()
    if not name:
        raise _bad_request("NAME_REQUIRED", "name is required")
    _check_effective_range(payload.effective_from, payload.effective_to)
    rule = PricingMarkupRule(
        name=name,
        description=payload.description,
        provider_slug=_blank_to_none(payload.provider_slug),
        model_key=_blank_to_none(payload.model_key),
        modality=_blank_to_none(payload.modality),
        margin_percent=payload.margin_percent,
        status=_require_choice(payload.status, MARKUP_STATUSES, "status"),
        effective_from=payload.effective_from,
        effective_to=payload.effective_to,
    )
    db.add(rule)
    await db.commit()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_markup_payload(rule)),
    )


@router.put("/markups/{markup_id}", response_model=SuccessEnvelope[dict])
async def update_markup(
    request: Request,
    markup_id: str,
    payload: MarkupUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    rule = await db.get(PricingMarkupRule, markup_id)
    if rule is None:
        raise _not_found("MARKUP_NOT_FOUND", "Markup not found")
    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise _bad_request("NAME_REQUIRED", "name must be non-empty")
        rule.name = name
    if "description" in patch:
        rule.description = patch["description"]
    for field in ("provider_slug", "model_key", "modality"):
        if field in patch:
            setattr(rule, field, _blank_to_none(patch[field]))
    if "margin_percent" in patch:
        if patch["margin_percent"] is None:
            raise _bad_request("INVALID_MARGIN_PERCENT", "margin_percent must be numeric")
        rule.margin_percent = patch["margin_percent"]
    if "status" in patch:
        rule.status = _require_choice(patch["status"] or "", MARKUP_STATUSES, "status")
    if "effective_from" in patch:
        rule.effective_from = patch["effective_from"]
    if "effective_to" in patch:
        rule.effective_to = patch["effective_to"]
    _check_effective_range(rule.effective_from, rule.effective_to)
    await db.commit()
    return success_response(request=request, data=_markup_payload(rule))


@router.delete("/markups/{markup_id}", response_model=SuccessEnvelope[dict])
async def delete_markup(
    request: Request,
    markup_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rule = await db.get(PricingMarkupRule, markup_id)
    if rule is None:
        raise _not_found("MARKUP_NOT_FOUND", "Markup not found")
    await db.delete(rule)
    await db.commit()
    return success_response(request=request, data={"ok": True, "id": markup_id})
