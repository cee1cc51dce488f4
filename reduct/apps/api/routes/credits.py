from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, money, success_response
from reduct.domain.models import CreditAccount, CreditLedgerEntry, CreditPlanGrant, CreditTopupProduct
from reduct.services.audit import record_event
from reduct.services.billing.money import normalize_currency
from reduct.services.credits.ledger import (
    CREDIT_TYPES,
    GRANT_BILLING_CYCLES,
    LEDGER_ENTRY_TYPES,
    OWNER_TYPES,
    apply_account_patch,
    post_entry,
)


router = APIRouter(prefix="/credits", tags=["credits"], responses=DEFAULT_ERROR_RESPONSES)


class CreditAccountCreateRequest(BaseModel):
    owner_type: str
    tenant_id: str | None = None
    user_id: str | None = None
    credit_type: str
    display_name: str | None = None
    expires_at: datetime | None = None
    metadata: dict[str, Any] | None = None


class AdjustmentRequest(BaseModel):
    amount_credits: int
    entry_type: str = "adjustment"
    note: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    allow_negative: bool = False


class TopupProductCreateRequest(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=120)
    price: Decimal = Field(ge=0)
    currency: str = "USD"
    credits: int = Field(gt=0)
    bonus_credits: int = Field(default=0, ge=0)
    is_active: bool = True
    metadata: dict[str, Any] | None = None


class TopupProductUpdateRequest(BaseModel):
    name: str | None = None
    price: Decimal | None = Field(default=None, ge=0)
    currency: str | None = None
    credits: int | None = Field(default=None, gt=0)
    bonus_credits: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    metadata: dict[str, Any] | None = None


class PlanGrantCreateRequest(BaseModel):
    plan_slug: str = Field(min_length=1, max_length=64)
    billing_cycle: str
    monthly_credits: int = Field(default=0, ge=0)
    initial_credits: int = Field(default=0, ge=0)
    expires_in_days: int | None = Field(default=None, ge=1)
    is_active: bool = True
    metadata: dict[str, Any] | None = None


class PlanGrantUpdateRequest(BaseModel):
    monthly_credits: int | None = Field(default=None, ge=0)
    initial_credits: int | None = Field(default=None, ge=0)
    expires_in_days: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    metadata: dict[str, Any] | None = None


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


async def _commit_or_conflict(db: AsyncSession, code: str, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": code, "message": message}) from exc


def _account_payload(row: CreditAccount) -> dict[str, Any]:
    return {
        "id": row.id,
        "owner_type": row.owner_type,
        "tenant_id": row.tenant_id,
        "user_id": row.user_id,
        "credit_type": row.credit_type,
        "status": row.status,
        "display_name": row.display_name,
        "balance_credits": row.balance_credits,
        "expires_at": iso(row.expires_at),
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _entry_payload(row: CreditLedgerEntry) -> dict[str, Any]:
    return {
        "id": row.id,
        "account_id": row.account_id,
        "entry_type": row.entry_type,
        "amount_credits": row.amount_credits,
        "balance_after": row.balance_after,
        "reference_type": row.reference_type,
        "reference_id": row.reference_id,
        "note": row.note,
        "created_by": row.created_by,
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
    }


def _product_payload(row: CreditTopupProduct) -> dict[str, Any]:
    return {
        "id": row.id,
        "sku": row.sku,
        "name": row.name,
        "price": money(row.price),
        "currency": row.currency,
        "credits": row.credits,
        "bonus_credits": row.bonus_credits,
        "is_active": row.is_active,
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def _grant_payload(row: CreditPlanGrant) -> dict[str, Any]:
    return {
        "id": row.id,
        "plan_slug": row.plan_slug,
        "billing_cycle": row.billing_cycle,
        "monthly_credits": row.monthly_credits,
        "initial_credits": row.initial_credits,
        "expires_in_days": row.expires_in_days,
        "is_active": row.is_active,
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


# ---------------------------------------------------------------------------
# Accounts and ledger
# ---------------------------------------------------------------------------


@router.get("/accounts", response_model=SuccessEnvelope[dict])
async def list_accounts(
    request: Request,
    owner_type: str | None = None,
    tenant_id: str | None = None,
    user_id: str | None = None,
    credit_type: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if owner_type:
        conditions.append(CreditAccount.owner_type == owner_type)
    if tenant_id:
        conditions.append(CreditAccount.tenant_id == tenant_id)
    if user_id:
        conditions.append(CreditAccount.user_id == user_id)
    if credit_type:
        conditions.append(CreditAccount.credit_type == credit_type)
    if status_filter:
        conditions.append(CreditAccount.status == status_filter)
    total = (await db.execute(select(func.count()).select_from(CreditAccount).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(CreditAccount)
            .where(*conditions)
            .order_by(CreditAccount.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return success_response(
        request=request,
        data={"ok": True, "total": int(total), "limit": limit, "offset": offset, "rows": [_account_payload(r) for r in rows]},
    )


@router.post("/accounts", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_account(
    request: Request,
    payload: CreditAccountCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    if payload.owner_type not in OWNER_TYPES:
        raise _bad_request("INVALID_OWNER_TYPE", "invalid owner_type")
    if payload.credit_type not in CREDIT_TYPES:
        raise _bad_request("INVALID_CREDIT_TYPE", "invalid credit_type")
    # Tenant accounts need a tenant; user accounts need a user.
    if payload.owner_type == "tenant" and not payload.tenant_id:
        raise _bad_request("MISSING_TENANT_ID", "tenant_id is required for tenant accounts")
    if payload.owner_type == "user" and not payload.user_id:
        raise _bad_request("MISSING_USER_ID", "user_id is required for user accounts")
    account = CreditAccount(
        owner_type=payload.owner_type,
        tenant_id=payload.tenant_id,
        user_id=payload.user_id,
        credit_type=payload.credit_type,
        display_name=payload.display_name,
        expires_at=payload.expires_at,
        metadata_json=dict(payload.metadata or {}),
        balance_credits=0,
    )
    db.add(account)
    await db.commit()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_account_payload(account)),
    )


@router.put("/accounts/{account_id}", response_model=SuccessEnvelope[dict])
async def update_account(
    request: Request,
    account_id: str,
    patch: dict[str, Any] = Body(...),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    account = await db.get(CreditAccount, account_id)
    if account is None:
        raise _not_found("CREDIT_ACCOUNT_NOT_FOUND", "Credit account not found")
    if isinstance(patch.get("expires_at"), str):
        try:
            patch["expires_at"] = datetime.fromisoformat(patch["expires_at"].replace("Z", "+00:00"))
        except ValueError as exc:
            raise _bad_request("INVALID_EXPIRES_AT", "expires_at must be a timestamp") from exc
    apply_account_patch(account, patch)
    await db.commit()
    return success_response(request=request, data=_account_payload(account))


@router.get("/ledger", response_model=SuccessEnvelope[dict])
async def list_ledger_entries(
    request: Request,
    account_id: str | None = None,
    entry_type: str | None = None,
    reference_type: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if entry_type and entry_type not in LEDGER_ENTRY_TYPES:
        raise _bad_request("INVALID_ENTRY_TYPE", "invalid entry_type")
    conditions = []
    if account_id:
        conditions.append(CreditLedgerEntry.account_id == account_id)
    if entry_type:
        conditions.append(CreditLedgerEntry.entry_type == entry_type)
    if reference_type:
        conditions.append(CreditLedgerEntry.reference_type == reference_type)
    if occurred_from:
        conditions.append(CreditLedgerEntry.created_at >= occurred_from)
    if occurred_to:
        conditions.append(CreditLedgerEntry.created_at <= occurred_to)
    total = (await db.execute(select(func.count()).select_from(CreditLedgerEntry).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(CreditLedgerEntry)
            .where(*conditions)
            .order_by(CreditLedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return success_response(
        request=request,
        data={"ok": True, "total": int(total), "limit": limit, "offset": offset, "rows": [_entry_payload(r) for r in rows]},
    )


@router.post(
    "/accounts/{account_id}/adjustments",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[dict],
)
async def post_adjustment(
    request: Request,
    account_id: str,
    payload: AdjustmentRequest,
    admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    entry = await post_entry(
        db,
        account_id=account_id,
        entry_type=payload.entry_type,
        amount_credits=payload.amount_credits,
        actor_id=admin.user_id,
        reference_type=payload.reference_type or "admin",
        reference_id=payload.reference_id,
        note=payload.note,
        allow_negative=payload.allow_negative,
    )
    await record_event(
        session=db,
        request=request,
        tenant_id=None,
        actor_type="user",
        actor_id=admin.user_id,
        actor_role=admin.platform_role,
        event_type="credits.adjusted",
        outcome="success",
        resource_type="credit_account",
        resource_id=account_id,
        metadata={"entry_type": payload.entry_type, "amount_credits": payload.amount_credits},
        commit=True,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_entry_payload(entry)),
    )


# ---------------------------------------------------------------------------
# Top-up products
# ---------------------------------------------------------------------------


@router.get("/topup-products", response_model=SuccessEnvelope[list[dict]])
async def list_topup_products(
    request: Request,
    is_active: bool | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(CreditTopupProduct)
    if is_active is not None:
        query = query.where(CreditTopupProduct.is_active.is_(is_active))
    rows = (await db.execute(query.order_by(CreditTopupProduct.price, CreditTopupProduct.sku))).scalars().all()
    return success_response(request=request, data=[_product_payload(row) for row in rows])


@router.post("/topup-products", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_topup_product(
    request: Request,
    payload: TopupProductCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    currency = normalize_currency(payload.currency)
    if not currency:
        raise _bad_request("INVALID_CURRENCY", "invalid currency")
    row = CreditTopupProduct(
        sku=payload.sku.strip(),
        name=payload.name.strip(),
        price=payload.price,
        currency=currency,
        credits=payload.credits,
        bonus_credits=payload.bonus_credits,
        is_active=payload.is_active,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(row)
    await _commit_or_conflict(db, "TOPUP_PRODUCT_EXISTS", "Top-up product sku already exists")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_product_payload(row)),
    )


@router.put("/topup-products/{product_id}", response_model=SuccessEnvelope[dict])
async def update_topup_product(
    request: Request,
    product_id: str,
    payload: TopupProductUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(CreditTopupProduct, product_id)
    if row is None:
        raise _not_found("TOPUP_PRODUCT_NOT_FOUND", "Top-up product not found")
    patch = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    if "currency" in patch:
        currency = normalize_currency(patch["currency"])
        if not currency:
            raise _bad_request("INVALID_CURRENCY", "invalid currency")
        patch["currency"] = currency
    if "metadata" in patch:
        row.metadata_json = patch.pop("metadata")
    for key, value in patch.items():
        setattr(row, key, value)
    await db.commit()
    return success_response(request=request, data=_product_payload(row))


@router.delete("/topup-products/{product_id}", response_model=SuccessEnvelope[dict])
async def delete_topup_product(
    request: Request,
    product_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(CreditTopupProduct, product_id)
    if row is None:
        raise _not_found("TOPUP_PRODUCT_NOT_FOUND", "Top-up product not found")
    await db.delete(row)
    await db.commit()
    return success_response(request=request, data={"ok": True, "id": product_id})


# ---------------------------------------------------------------------------
# Plan grants
# ---------------------------------------------------------------------------


@router.get("/plan-grants", response_model=SuccessEnvelope[list[dict]])
async def list_plan_grants(
    request: Request,
    plan_slug: str | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(CreditPlanGrant)
    if plan_slug:
        query = query.where(CreditPlanGrant.plan_slug == plan_slug)
    rows = (await db.execute(query.order_by(CreditPlanGrant.plan_slug, CreditPlanGrant.billing_cycle))).scalars().all()
    return success_response(request=request, data=[_grant_payload(row) for row in rows])


@router.post("/plan-grants", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_plan_grant(
    request: Request,
    payload: PlanGrantCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    if payload.billing_cycle not in GRANT_BILLING_CYCLES:
        raise _bad_request("INVALID_BILLING_CYCLE", "invalid billing_cycle")
    row = CreditPlanGrant(
        plan_slug=payload.plan_slug.strip(),
        billing_cycle=payload.billing_cycle,
        monthly_credits=payload.monthly_credits,
        initial_credits=payload.initial_credits,
        expires_in_days=payload.expires_in_days,
        is_active=payload.is_active,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(row)
    await _commit_or_conflict(db, "PLAN_GRANT_EXISTS", "Grant for this plan and billing cycle already exists")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_grant_payload(row)),
    )


@router.put("/plan-grants/{grant_id}", response_model=SuccessEnvelope[dict])
async def update_plan_grant(
    request: Request,
    grant_id: str,
    payload: PlanGrantUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(CreditPlanGrant, grant_id)
    if row is None:
        raise _not_found("PLAN_GRANT_NOT_FOUND", "Plan grant not found")
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    if "metadata" in patch:
        row.metadata_json = dict(patch.pop("metadata") or {})
    for key, value in patch.items():
        if value is None and key != "expires_in_days":
            continue
        setattr(row, key, value)
    await db.commit()
    return success_response(request=request, data=_grant_payload(row))


@router.delete("/plan-grants/{grant_id}", response_model=SuccessEnvelope[dict])
async def delete_plan_grant(
    request: Request,
    grant_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(CreditPlanGrant, grant_id)
    if row is None:
        raise _not_found("PLAN_GRANT_NOT_FOUND", "Plan grant not found")
    await db.delete(row)
    await db.commit()
    return success_response(request=request, data={"ok": True, "id": grant_id})
