from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_db, require_platform_admin
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, money, success_response
from reduct.apps.api.routes.billing import (
    account_payload,
    invoice_payload,
    plan_payload,
    price_payload,
    subscription_payload,
    transaction_payload,
)
from reduct.domain.models import (
    BillingAccount,
    BillingInvoice,
    BillingInvoiceLineItem,
    BillingPlan,
    BillingPlanPrice,
    BillingSubscription,
    BillingTransaction,
    FxRate,
    TaxRate,
    utc_now,
)
from reduct.services.billing.catalog import (
    BILLING_CYCLES,
    FX_SOURCES,
    INVOICE_STATUSES,
    PLAN_TIERS,
    PRICE_STATUSES,
    SUBSCRIPTION_STATUSES,
    TENANT_TYPES,
    TRANSACTION_STATUSES,
)
from reduct.services.billing.money import normalize_currency


router = APIRouter(prefix="/billing/admin", tags=["billing-admin"], responses=DEFAULT_ERROR_RESPONSES)


class PlanCreateRequest(BaseModel):
    slug: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=120)
    tier: str
    tenant_type: str = "personal"
    description: str | None = None
    included_seats: int = Field(default=1, ge=1)
    max_seats: int | None = Field(default=None, ge=1)
    is_active: bool = True
    sort_order: int = 0
    metadata: dict[str, Any] | None = None


class PlanUpdateRequest(BaseModel):
    slug: str | None = None
    name: str | None = None
    tier: str | None = None
    tenant_type: str | None = None
    description: str | None = None
    included_seats: int | None = Field(default=None, ge=1)
    max_seats: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    sort_order: int | None = None
    metadata: dict[str, Any] | None = None


class PriceCreateRequest(BaseModel):
    plan_id: str
    billing_cycle: str
    currency: str = "USD"
    amount: Decimal = Field(ge=0)
    status: str = "active"
    effective_at: datetime | None = None


class PriceUpdateRequest(BaseModel):
    amount: Decimal | None = Field(default=None, ge=0)
    status: str | None = None
    effective_at: datetime | None = None


class SubscriptionUpdateRequest(BaseModel):
    status: str | None = None
    billing_cycle: str | None = None
    cancel_at_period_end: bool | None = None
    current_period_end: datetime | None = None


class InvoiceUpdateRequest(BaseModel):
    status: str | None = None
    due_at: datetime | None = None


class TransactionUpdateRequest(BaseModel):
    status: str


class TaxRateCreateRequest(BaseModel):
    country_code: str = Field(min_length=2, max_length=2)
    name: str = Field(min_length=1, max_length=120)
    rate_percent: Decimal = Field(ge=0, le=100)
    effective_at: datetime | None = None
    is_active: bool = True


class FxRateCreateRequest(BaseModel):
    base_currency: str = "USD"
    quote_currency: str
    rate: Decimal = Field(gt=0)
    source: str = "manual"
    effective_at: datetime | None = None
    is_active: bool = True


class ActiveToggleRequest(BaseModel):
    is_active: bool


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def _require_choice(value: str, choices: tuple[str, ...], field: str) -> str:
    if value not in choices:
        raise _bad_request(f"INVALID_{field.upper()}", f"invalid {field}")
    return value


def _currency(value: str) -> str:
    currency = normalize_currency(value)
    if not currency:
        raise _bad_request("INVALID_CURRENCY", "invalid currency")
    return currency


def _page(rows: list[Any], total: int, limit: int, offset: int, serialize) -> dict[str, Any]:
    return {"ok": True, "total": int(total), "limit": limit, "offset": offset, "rows": [serialize(r) for r in rows]}


async def _paged(db: AsyncSession, model, conditions: list, order_by, limit: int, offset: int) -> tuple[list, int]:
    total = (await db.execute(select(func.count()).select_from(model).where(*conditions))).scalar_one()
    rows = (
        await db.execute(select(model).where(*conditions).order_by(*order_by).limit(limit).offset(offset))
    ).scalars().all()
    return list(rows), int(total)


async def _commit_or_conflict(db: AsyncSession, code: str, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": code, "message": message}) from exc


# ---------------------------------------------------------------------------
# Plans and prices
# ---------------------------------------------------------------------------


@router.get("/plans", response_model=SuccessEnvelope[list[dict]])
async def list_plans(
    request: Request,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = (await db.execute(select(BillingPlan).order_by(BillingPlan.sort_order, BillingPlan.name))).scalars().all()
    return success_response(request=request, data=[plan_payload(row) for row in rows])


@router.post("/plans", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_plan(
    request: Request,
    payload: PlanCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    plan = BillingPlan(
        slug=payload.slug.strip(),
        name=payload.name.strip(),
        tier=_require_choice(payload.tier, PLAN_TIERS, "tier"),
        tenant_type=_require_choice(payload.tenant_type, TENANT_TYPES, "tenant_type"),
        description=payload.description,
        included_seats=payload.included_seats,
        max_seats=payload.max_seats,
        is_active=payload.is_active,
        sort_order=payload.sort_order,
        metadata_json=dict(payload.metadata or {}),
    )
    db.add(plan)
    await _commit_or_conflict(db, "PLAN_EXISTS", "Plan slug already exists")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=plan_payload(plan)),
    )


@router.put("/plans/{plan_id}", response_model=SuccessEnvelope[dict])
async def update_plan(
    request: Request,
    plan_id: str,
    payload: PlanUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    plan = await db.get(BillingPlan, plan_id)
    if plan is None:
        raise _not_found("PLAN_NOT_FOUND", "Billing plan not found")
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise _bad_request("NO_FIELDS", "No fields to update")
    if patch.get("tier") is not None:
        _require_choice(patch["tier"], PLAN_TIERS, "tier")
    if patch.get("tenant_type") is not None:
        _require_choice(patch["tenant_type"], TENANT_TYPES, "tenant_type")
    if "metadata" in patch:
        plan.metadata_json = dict(patch.pop("metadata") or {})
    for key, value in patch.items():
        # description and max_seats may be cleared; other columns are NOT NULL.
        if value is None and key not in ("description", "max_seats"):
            continue
        setattr(plan, key, value)
    await _commit_or_conflict(db, "PLAN_EXISTS", "Plan slug already exists")
    return success_response(request=request, data=plan_payload(plan))


@router.delete("/plans/{plan_id}", response_model=SuccessEnvelope[dict])
async def delete_plan(
    request: Request,
    plan_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    plan = await db.get(BillingPlan, plan_id)
    if plan is None:
        raise _not_found("PLAN_NOT_FOUND", "Billing plan not found")
    in_use = (
        await db.execute(select(func.count()).select_from(BillingSubscription).where(BillingSubscription.plan_id == plan_id))
    ).scalar_one()
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "PLAN_IN_USE", "message": "Plan has subscriptions; deactivate it instead"},
        )
    try:
        await db.execute(delete(BillingPlanPrice).where(BillingPlanPrice.plan_id == plan_id))
        await db.delete(plan)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return success_response(request=request, data={"ok": True, "id": plan_id})


@router.get("/plan-prices", response_model=SuccessEnvelope[list[dict]])
async def list_prices(
    request: Request,
    plan_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(BillingPlanPrice)
    if plan_id:
        query = query.where(BillingPlanPrice.plan_id == plan_id)
    if status_filter:
        query = query.where(BillingPlanPrice.status == status_filter)
    query = query.order_by(BillingPlanPrice.plan_id, BillingPlanPrice.billing_cycle, BillingPlanPrice.effective_at.desc())
    rows = (await db.execute(query)).scalars().all()
    return success_response(request=request, data=[price_payload(row) for row in rows])


@router.post("/plan-prices", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_price(
    request: Request,
    payload: PriceCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    if await db.get(BillingPlan, payload.plan_id) is None:
        raise _not_found("PLAN_NOT_FOUND", "Billing plan not found")
    price = BillingPlanPrice(
        plan_id=payload.plan_id,
        billing_cycle=_require_choice(payload.billing_cycle, BILLING_CYCLES, "billing_cycle"),
        currency=_currency(payload.currency),
        amount=payload.amount,
        status=_require_choice(payload.status, PRICE_STATUSES, "status"),
        effective_at=payload.effective_at or utc_now(),
    )
    db.add(price)
    await db.commit()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=price_payload(price)),
    )


@router.put("/plan-prices/{price_id}", response_model=SuccessEnvelope[dict])
async def update_price(
    request: Request,
    price_id: str,
    payload: PriceUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    price = await db.get(BillingPlanPrice, price_id)
    if price is None:
        raise _not_found("PRICE_NOT_FOUND", "Billing plan price not found")
    if payload.amount is not None:
        price.amount = payload.amount
    if payload.status is not None:
        price.status = _require_choice(payload.status, PRICE_STATUSES, "status")
    if payload.effective_at is not None:
        price.effective_at = payload.effective_at
    await db.commit()
    return success_response(request=request, data=price_payload(price))


@router.delete("/plan-prices/{price_id}", response_model=SuccessEnvelope[dict])
async def delete_price(
    request: Request,
    price_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    price = await db.get(BillingPlanPrice, price_id)
    if price is None:
        raise _not_found("PRICE_NOT_FOUND", "Billing plan price not found")
    await db.delete(price)
    await db.commit()
    return success_response(request=request, data={"ok": True, "id": price_id})


# ---------------------------------------------------------------------------
# Accounts, subscriptions, invoices, transactions
# ---------------------------------------------------------------------------


@router.get("/accounts", response_model=SuccessEnvelope[dict])
async def list_accounts(
    request: Request,
    tenant_id: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = [BillingAccount.tenant_id == tenant_id] if tenant_id else []
    rows, total = await _paged(db, BillingAccount, conditions, [BillingAccount.created_at.desc()], limit, offset)
    return success_response(request=request, data=_page(rows, total, limit, offset, account_payload))


@router.get("/subscriptions", response_model=SuccessEnvelope[dict])
async def list_subscriptions(
    request: Request,
    tenant_id: str | None = None,
    plan_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if tenant_id:
        conditions.append(BillingSubscription.tenant_id == tenant_id)
    if plan_id:
        conditions.append(BillingSubscription.plan_id == plan_id)
    if status_filter:
        conditions.append(BillingSubscription.status == status_filter)
    rows, total = await _paged(
        db, BillingSubscription, conditions, [BillingSubscription.updated_at.desc()], limit, offset
    )
    return success_response(request=request, data=_page(rows, total, limit, offset, subscription_payload))


@router.put("/subscriptions/{subscription_id}", response_model=SuccessEnvelope[dict])
async def update_subscription(
    request: Request,
    subscription_id: str,
    payload: SubscriptionUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(BillingSubscription, subscription_id)
    if row is None:
        raise _not_found("SUBSCRIPTION_NOT_FOUND", "Subscription not found")
    if payload.status is not None:
        row.status = _require_choice(payload.status, SUBSCRIPTION_STATUSES, "status")
        if row.status == "cancelled" and row.cancelled_at is None:
            row.cancelled_at = utc_now()
    if payload.billing_cycle is not None:
        row.billing_cycle = _require_choice(payload.billing_cycle, BILLING_CYCLES, "billing_cycle")
    if payload.cancel_at_period_end is not None:
        row.cancel_at_period_end = payload.cancel_at_period_end
    if payload.current_period_end is not None:
        row.current_period_end = payload.current_period_end
    await db.commit()
    return success_response(request=request, data=subscription_payload(row))


@router.get("/invoices", response_model=SuccessEnvelope[dict])
async def list_invoices(
    request: Request,
    tenant_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if tenant_id:
        conditions.append(BillingInvoice.tenant_id == tenant_id)
    if status_filter:
        conditions.append(BillingInvoice.status == status_filter)
    rows, total = await _paged(db, BillingInvoice, conditions, [BillingInvoice.created_at.desc()], limit, offset)
    return success_response(request=request, data=_page(rows, total, limit, offset, invoice_payload))


def _line_item_payload(row: BillingInvoiceLineItem) -> dict[str, Any]:
    return {
        "id": row.id,
        "invoice_id": row.invoice_id,
        "description": row.description,
        "quantity": row.quantity,
        "unit_price": money(row.unit_price),
        "amount": money(row.amount),
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
    }


@router.get("/invoices/{invoice_id}", response_model=SuccessEnvelope[dict])
async def get_invoice(
    request: Request,
    invoice_id: str,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    invoice = await db.get(BillingInvoice, invoice_id)
    if invoice is None:
        raise _not_found("INVOICE_NOT_FOUND", "Invoice not found")
    items = (
        await db.execute(
            select(BillingInvoiceLineItem)
            .where(BillingInvoiceLineItem.invoice_id == invoice_id)
            .order_by(BillingInvoiceLineItem.created_at)
        )
    ).scalars().all()
    transactions = (
        await db.execute(
            select(BillingTransaction)
            .where(BillingTransaction.invoice_id == invoice_id)
            .order_by(BillingTransaction.created_at)
        )
    ).scalars().all()
    payload = invoice_payload(invoice)
    payload["line_items"] = [_line_item_payload(item) for item in items]
    payload["transactions"] = [transaction_payload(tx) for tx in transactions]
    return success_response(request=request, data=payload)


@router.put("/invoices/{invoice_id}", response_model=SuccessEnvelope[dict])
async def update_invoice(
    request: Request,
    invoice_id: str,
    payload: InvoiceUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    invoice = await db.get(BillingInvoice, invoice_id)
    if invoice is None:
        raise _not_found("INVOICE_NOT_FOUND", "Invoice not found")
    if payload.status is not None:
        invoice.status = _require_choice(payload.status, INVOICE_STATUSES, "status")
        if invoice.status == "paid" and invoice.paid_at is None:
            invoice.paid_at = utc_now()
        if invoice.status == "open" and invoice.issued_at is None:
            invoice.issued_at = utc_now()
    if payload.due_at is not None:
        invoice.due_at = payload.due_at
    await db.commit()
    return success_response(request=request, data=invoice_payload(invoice))


@router.get("/transactions", response_model=SuccessEnvelope[dict])
async def list_transactions(
    request: Request,
    tenant_id: str | None = None,
    invoice_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conditions = []
    if tenant_id:
        conditions.append(BillingTransaction.tenant_id == tenant_id)
    if invoice_id:
        conditions.append(BillingTransaction.invoice_id == invoice_id)
    if status_filter:
        conditions.append(BillingTransaction.status == status_filter)
    rows, total = await _paged(
        db, BillingTransaction, conditions, [BillingTransaction.created_at.desc()], limit, offset
    )
    return success_response(request=request, data=_page(rows, total, limit, offset, transaction_payload))


@router.put("/transactions/{transaction_id}", response_model=SuccessEnvelope[dict])
async def update_transaction(
    request: Request,
    transaction_id: str,
    payload: TransactionUpdateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(BillingTransaction, transaction_id)
    if row is None:
        raise _not_found("TRANSACTION_NOT_FOUND", "Transaction not found")
    row.status = _require_choice(payload.status, TRANSACTION_STATUSES, "status")
    if row.processed_at is None and row.status != "pending":
        row.processed_at = utc_now()
    await db.commit()
    return success_response(request=request, data=transaction_payload(row))


# ---------------------------------------------------------------------------
# Tax and FX rates
# ---------------------------------------------------------------------------


def _tax_payload(row: TaxRate) -> dict[str, Any]:
    return {
        "id": row.id,
        "country_code": row.country_code,
        "name": row.name,
        "rate_percent": money(row.rate_percent),
        "effective_at": iso(row.effective_at),
        "is_active": row.is_active,
        "created_at": iso(row.created_at),
    }


def _fx_payload(row: FxRate) -> dict[str, Any]:
    return {
        "id": row.id,
        "base_currency": row.base_currency,
        "quote_currency": row.quote_currency,
        "rate": float(row.rate),
        "source": row.source,
        "effective_at": iso(row.effective_at),
        "is_active": row.is_active,
        "created_at": iso(row.created_at),
    }


@router.get("/tax-rates", response_model=SuccessEnvelope[list[dict]])
async def list_tax_rates(
    request: Request,
    country_code: str | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(TaxRate)
    if country_code:
        query = query.where(TaxRate.country_code == country_code.strip().upper())
    rows = (await db.execute(query.order_by(TaxRate.country_code, TaxRate.effective_at.desc()))).scalars().all()
    return success_response(request=request, data=[_tax_payload(row) for row in rows])


@router.post("/tax-rates", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_tax_rate(
    request: Request,
    payload: TaxRateCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    row = TaxRate(
        country_code=payload.country_code.strip().upper(),
        name=payload.name.strip(),
        rate_percent=payload.rate_percent,
        effective_at=payload.effective_at or utc_now(),
        is_active=payload.is_active,
    )
    db.add(row)
    await db.commit()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_tax_payload(row)),
    )


@router.put("/tax-rates/{rate_id}", response_model=SuccessEnvelope[dict])
async def toggle_tax_rate(
    request: Request,
    rate_id: str,
    payload: ActiveToggleRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(TaxRate, rate_id)
    if row is None:
        raise _not_found("TAX_RATE_NOT_FOUND", "Tax rate not found")
    row.is_active = payload.is_active
    await db.commit()
    return success_response(request=request, data=_tax_payload(row))


@router.get("/fx-rates", response_model=SuccessEnvelope[list[dict]])
async def list_fx_rates(
    request: Request,
    quote_currency: str | None = None,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(FxRate)
    if quote_currency:
        query = query.where(FxRate.quote_currency == normalize_currency(quote_currency))
    rows = (await db.execute(query.order_by(FxRate.quote_currency, FxRate.effective_at.desc()))).scalars().all()
    return success_response(request=request, data=[_fx_payload(row) for row in rows])


@router.post("/fx-rates", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[dict])
async def create_fx_rate(
    request: Request,
    payload: FxRateCreateRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    base = _currency(payload.base_currency)
    quote = _currency(payload.quote_currency)
    if base == quote:
        raise _bad_request("INVALID_CURRENCY_PAIR", "base and quote currency must differ")
    row = FxRate(
        base_currency=base,
        quote_currency=quote,
        rate=payload.rate,
        source=_require_choice(payload.source, FX_SOURCES, "source"),
        effective_at=payload.effective_at or utc_now(),
        is_active=payload.is_active,
    )
    db.add(row)
    await db.commit()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=_fx_payload(row)),
    )


@router.put("/fx-rates/{rate_id}", response_model=SuccessEnvelope[dict])
async def toggle_fx_rate(
    request: Request,
    rate_id: str,
    payload: ActiveToggleRequest,
    _admin: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await db.get(FxRate, rate_id)
    if row is None:
        raise _not_found("FX_RATE_NOT_FOUND", "FX rate not found")
    row.is_active = payload.is_active
    await db.commit()
    return success_response(request=request, data=_fx_payload(row))
