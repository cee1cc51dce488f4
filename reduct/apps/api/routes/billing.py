from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_current_principal, get_db, require_tenant
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, iso, money, success_response
from reduct.domain.models import (
    BillingAccount,
    BillingInvoice,
    BillingPlan,
    BillingPlanPrice,
    BillingSubscription,
    BillingTransaction,
)
from reduct.services.audit import record_event
from reduct.services.billing.cards import CARD_NUMBER_LENGTH, card_summary, normalize_card_number, parse_expiry
from reduct.services.billing.catalog import BILLING_CYCLES
from reduct.services.billing.checkout import checkout_subscription
from reduct.services.billing.money import normalize_currency
from reduct.services.billing.quotes import latest_tax_rate, resolve_user_quote


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"], responses=DEFAULT_ERROR_RESPONSES)


class BillingAccountUpdateRequest(BaseModel):
    billing_email: str | None = None
    billing_name: str | None = None
    country_code: str | None = None
    tax_country_code: str | None = None
    currency: str | None = None
    card_number: str | None = None
    card_expiry: str | None = None


class CheckoutRequest(BaseModel):
    plan_id: str
    billing_cycle: str
    provider: str = "toss"
    card_number: str | None = None
    card_expiry: str | None = None


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def plan_payload(row: BillingPlan) -> dict[str, Any]:
    return {
        "id": row.id,
        "slug": row.slug,
        "name": row.name,
        "tier": row.tier,
        "tenant_type": row.tenant_type,
        "description": row.description,
        "included_seats": row.included_seats,
        "max_seats": row.max_seats,
        "is_active": row.is_active,
        "sort_order": row.sort_order,
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def price_payload(row: BillingPlanPrice) -> dict[str, Any]:
    return {
        "id": row.id,
        "plan_id": row.plan_id,
        "billing_cycle": row.billing_cycle,
        "currency": row.currency,
        "amount": money(row.amount),
        "status": row.status,
        "effective_at": iso(row.effective_at),
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def account_payload(row: BillingAccount) -> dict[str, Any]:
    return {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "billing_email": row.billing_email,
        "billing_name": row.billing_name,
        "country_code": row.country_code,
        "tax_country_code": row.tax_country_code,
        "currency": row.currency,
        "payment_method_summary": row.payment_method_summary or {},
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def subscription_payload(row: BillingSubscription) -> dict[str, Any]:
    return {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "plan_id": row.plan_id,
        "billing_cycle": row.billing_cycle,
        "status": row.status,
        "current_period_start": iso(row.current_period_start),
        "current_period_end": iso(row.current_period_end),
        "cancel_at_period_end": row.cancel_at_period_end,
        "cancelled_at": iso(row.cancelled_at),
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def invoice_payload(row: BillingInvoice) -> dict[str, Any]:
    return {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "subscription_id": row.subscription_id,
        "billing_account_id": row.billing_account_id,
        "invoice_number": row.invoice_number,
        "status": row.status,
        "currency": row.currency,
        "subtotal": money(row.subtotal),
        "tax": money(row.tax),
        "total": money(row.total),
        "period_start": iso(row.period_start),
        "period_end": iso(row.period_end),
        "issued_at": iso(row.issued_at),
        "due_at": iso(row.due_at),
        "paid_at": iso(row.paid_at),
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def transaction_payload(row: BillingTransaction) -> dict[str, Any]:
    return {
        "id": row.id,
        "tenant_id": row.tenant_id,
        "invoice_id": row.invoice_id,
        "provider": row.provider,
        "transaction_type": row.transaction_type,
        "status": row.status,
        "amount": money(row.amount),
        "currency": row.currency,
        "provider_transaction_id": row.provider_transaction_id,
        "processed_at": iso(row.processed_at),
        "metadata": row.metadata_json or {},
        "created_at": iso(row.created_at),
    }


def _card_details(card_number: str | None, card_expiry: str | None) -> dict[str, object] | None:
    if not card_number:
        return None
    digits = normalize_card_number(card_number)
    if len(digits) != CARD_NUMBER_LENGTH:
        raise _bad_request("INVALID_CARD_NUMBER", "card number must be 16 digits")
    if card_expiry and parse_expiry(card_expiry) is None:
        raise _bad_request("INVALID_CARD_EXPIRY", "card expiry must be MMYY")
    return card_summary(digits, card_expiry)


# ---------------------------------------------------------------------------
# Public catalog
# ---------------------------------------------------------------------------


@router.get("/plans", response_model=SuccessEnvelope[list[dict]])
async def list_public_plans(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    rows = (
        await db.execute(
            select(BillingPlan)
            .where(BillingPlan.is_active.is_(True))
            .order_by(BillingPlan.sort_order.asc(), BillingPlan.name.asc())
        )
    ).scalars().all()
    return success_response(request=request, data=[plan_payload(row) for row in rows])


@router.get("/plan-prices", response_model=SuccessEnvelope[list[dict]])
async def list_public_prices(
    request: Request,
    plan_id: str | None = None,
    billing_cycle: str | None = None,
    currency: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    query = select(BillingPlanPrice).where(BillingPlanPrice.status == "active")
    if plan_id:
        query = query.where(BillingPlanPrice.plan_id == plan_id)
    if billing_cycle:
        query = query.where(BillingPlanPrice.billing_cycle == billing_cycle)
    if currency:
        query = query.where(BillingPlanPrice.currency == normalize_currency(currency))
    rows = (await db.execute(query.order_by(BillingPlanPrice.effective_at.desc()))).scalars().all()
    return success_response(request=request, data=[price_payload(row) for row in rows])


# ---------------------------------------------------------------------------
# Signed-in user
# ---------------------------------------------------------------------------


async def _tenant_account(db: AsyncSession, tenant_id: str) -> BillingAccount | None:
    return (
        await db.execute(select(BillingAccount).where(BillingAccount.tenant_id == tenant_id))
    ).scalar_one_or_none()


@router.get("/account", response_model=SuccessEnvelope[dict])
async def get_billing_account(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = require_tenant(principal)
    account = await _tenant_account(db, tenant_id)
    return success_response(
        request=request, data={"ok": True, "row": account_payload(account) if account is not None else None}
    )


@router.put("/account", response_model=SuccessEnvelope[dict])
async def put_billing_account(
    request: Request,
    payload: BillingAccountUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = require_tenant(principal)
    card = _card_details(payload.card_number, payload.card_expiry)
    account = await _tenant_account(db, tenant_id)
    if account is None:
        account = BillingAccount(tenant_id=tenant_id, metadata_json={"source": "user", "created_by": principal.user_id})
        db.add(account)

    if payload.billing_email is not None:
        account.billing_email = payload.billing_email.strip() or None
    if payload.billing_name is not None:
        account.billing_name = payload.billing_name.strip() or None
    if payload.country_code is not None:
        account.country_code = payload.country_code.strip().upper() or None
    if payload.tax_country_code is not None:
        account.tax_country_code = payload.tax_country_code.strip().upper() or None
    if payload.currency is not None:
        currency = normalize_currency(payload.currency)
        if not currency:
            raise _bad_request("INVALID_CURRENCY", "invalid currency")
        account.currency = currency
    if card is not None:
        account.payment_method_summary = card
    await db.commit()
    return success_response(request=request, data={"ok": True, "row": account_payload(account)})


@router.get("/tax-rate", response_model=SuccessEnvelope[dict])
async def get_tax_rate(
    request: Request,
    country_code: str | None = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    code = (country_code or "").strip().upper()
    if not code and principal.tenant_id:
        account = await _tenant_account(db, principal.tenant_id)
        if account is not None:
            code = account.tax_country_code or account.country_code or ""
    row = await latest_tax_rate(db, code)
    return success_response(
        request=request,
        data={
            "ok": True,
            "country_code": code or None,
            "rate_percent": money(row.rate_percent) if row is not None else 0.0,
            "tax_rate_id": row.id if row is not None else None,
        },
    )


@router.get("/quote", response_model=SuccessEnvelope[dict])
async def get_quote(
    request: Request,
    plan_id: str = Query(...),
    billing_cycle: str = Query(default="monthly"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = require_tenant(principal)
    if billing_cycle not in BILLING_CYCLES:
        raise _bad_request("INVALID_BILLING_CYCLE", "invalid billing_cycle")
    plan = await db.get(BillingPlan, plan_id)
    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "PLAN_NOT_FOUND", "message": "Billing plan not found"},
        )
    quote = await resolve_user_quote(db, tenant_id=tenant_id, plan_id=plan.id, billing_cycle=billing_cycle)
    return success_response(
        request=request,
        data={"ok": True, "plan_id": plan.id, "billing_cycle": billing_cycle, "plan_name": plan.name, **quote.to_dict()},
    )


@router.post("/checkout", response_model=SuccessEnvelope[dict])
async def checkout(
    request: Request,
    payload: CheckoutRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant_id = require_tenant(principal)
    card = _card_details(payload.card_number, payload.card_expiry)
    result = await checkout_subscription(
        db,
        tenant_id=tenant_id,
        user_id=principal.user_id,
        plan_id=payload.plan_id,
        billing_cycle=payload.billing_cycle,
        provider=payload.provider,
        payment_method_summary=card,
    )
    await record_event(
        session=db,
        request=request,
        tenant_id=tenant_id,
        actor_type="user",
        actor_id=principal.user_id,
        actor_role=principal.platform_role,
        event_type="billing.checkout",
        outcome="success",
        resource_type="billing_invoice",
        resource_id=result.invoice.id,
        metadata={"plan_id": payload.plan_id, "billing_cycle": payload.billing_cycle},
        commit=True,
    )
    quote = result.quote
    return success_response(
        request=request,
        data={
            "ok": True,
            "subscription": subscription_payload(result.subscription),
            "invoice": invoice_payload(result.invoice),
            "transaction": transaction_payload(result.transaction),
            "total_amount": float(quote.total_amount),
            "tax_amount": float(quote.tax_amount),
            "tax_rate_percent": float(quote.tax_rate_percent),
            "currency": quote.currency,
            "next_billing_date": iso(result.next_billing_date),
        },
    )
