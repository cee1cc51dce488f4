from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import secrets
import string

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import (
    BillingAccount,
    BillingInvoice,
    BillingInvoiceLineItem,
    BillingPlan,
    BillingSubscription,
    BillingTransaction,
    Tenant,
)
from reduct.services.billing.catalog import PAYMENT_PROVIDERS
from reduct.services.billing.quotes import Quote, resolve_user_quote
from reduct.services.system_tenant import SYSTEM_TENANT_SLUG


logger = logging.getLogger(__name__)

_INVOICE_NUMBER_ATTEMPTS = 3
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class CheckoutResult:
    subscription: BillingSubscription
    invoice: BillingInvoice
    transaction: BillingTransaction
    quote: Quote
    next_billing_date: datetime


def add_months(value: datetime, months: int) -> datetime:
    # Clamp to the last day of the target month (Jan 31 + 1 month -> Feb 28/29).
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end_for(start: datetime, billing_cycle: str) -> datetime:
    return add_months(start, 12 if billing_cycle == "yearly" else 1)


def make_invoice_number(prefix: str = "USR", now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M")
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"{prefix}-{stamp}-{suffix}"


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


async def is_system_tenant(session: AsyncSession, tenant_id: str) -> bool:
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None or tenant.deleted_at is not None:
        return False
    return tenant.slug == SYSTEM_TENANT_SLUG or bool((tenant.metadata_json or {}).get("system"))


async def _unused_invoice_number(session: AsyncSession, now: datetime) -> str:
    for _ in range(_INVOICE_NUMBER_ATTEMPTS):
        candidate = make_invoice_number("USR", now)
        taken = await session.execute(
            select(BillingInvoice.id).where(BillingInvoice.invoice_number == candidate)
        )
        if taken.scalar_one_or_none() is None:
            return candidate
        logger.info("invoice_number_collision number=%s", candidate)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "INVOICE_CREATE_FAILED", "message": "Failed to create invoice"},
    )


async def checkout_subscription(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    plan_id: str,
    billing_cycle: str,
    provider: str = "toss",
    payment_method_summary: dict[str, object] | None = None,
    now: datetime | None = None,
) -> CheckoutResult:
    """Subscribe a tenant to a plan and record it as paid, all in one transaction.

    Upserts the tenant's subscription, moves the tenant to the plan's type and
    tier, makes sure a billing account exists, and writes a paid invoice with one
    line item plus a succeeded charge. Payment capture happens upstream.
    """
    if provider not in PAYMENT_PROVIDERS:
        raise _bad_request("INVALID_PROVIDER", "invalid provider")
    if await is_system_tenant(session, tenant_id):
        raise _bad_request("SYSTEM_TENANT_NOT_BILLABLE", "system tenant cannot be billed")
    plan = await session.get(BillingPlan, plan_id)
    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "PLAN_NOT_FOUND", "message": "Billing plan not found"},
        )

    quote = await resolve_user_quote(session, tenant_id=tenant_id, plan_id=plan_id, billing_cycle=billing_cycle)
    period_start = now or datetime.now(timezone.utc)
    period_end = period_end_for(period_start, billing_cycle)
    meta = {
        "source": "user_checkout",
        "plan_id": plan_id,
        "plan_name": plan.name,
        "billing_cycle": billing_cycle,
        "checked_out_by": user_id,
        "checked_out_at": period_start.isoformat(),
    }

    try:
        subscription = (
            await session.execute(select(BillingSubscription).where(BillingSubscription.tenant_id == tenant_id))
        ).scalar_one_or_none()
        if subscription is None:
            subscription = BillingSubscription(tenant_id=tenant_id)
            session.add(subscription)
        subscription.plan_id = plan_id
        subscription.billing_cycle = billing_cycle
        subscription.status = "active"
        subscription.current_period_start = period_start
        subscription.current_period_end = period_end
        subscription.cancel_at_period_end = False
        subscription.cancelled_at = None
        subscription.metadata_json = meta

        tenant = await session.get(Tenant, tenant_id)
        if tenant is not None and tenant.deleted_at is None:
            tenant.tenant_type = plan.tenant_type or tenant.tenant_type
            tenant.plan_tier = plan.tier or "free"
            tenant.metadata_json = {**(tenant.metadata_json or {}), "plan_tier": plan.tier or "free"}

        account = (
            await session.execute(select(BillingAccount).where(BillingAccount.tenant_id == tenant_id))
        ).scalar_one_or_none()
        if account is None:
            account = BillingAccount(
                tenant_id=tenant_id,
                currency=quote.currency,
                metadata_json={"source": "user_checkout", "created_by": user_id},
            )
            session.add(account)
        if payment_method_summary:
            account.payment_method_summary = dict(payment_method_summary)
        await session.flush()

        invoice = BillingInvoice(
            tenant_id=tenant_id,
            subscription_id=subscription.id,
            billing_account_id=account.id,
            invoice_number=await _unused_invoice_number(session, period_start),
            status="paid",
            currency=quote.currency,
            subtotal=quote.amount,
            tax=quote.tax_amount,
            total=quote.total_amount,
            period_start=period_start,
            period_end=period_end,
            issued_at=period_start,
            paid_at=period_start,
            metadata_json={**meta, "tax_rate_id": quote.tax_rate_id, "fx_rate_id": quote.fx_rate_id},
        )
        session.add(invoice)
        await session.flush()
        session.add(
            BillingInvoiceLineItem(
                invoice_id=invoice.id,
                description="서비스 제공",
                quantity=1,
                unit_price=quote.amount,
                amount=quote.amount,
                metadata_json=meta,
            )
        )
        transaction = BillingTransaction(
            tenant_id=tenant_id,
            invoice_id=invoice.id,
            provider=provider,
            transaction_type="charge",
            status="succeeded",
            amount=quote.total_amount,
            currency=quote.currency,
            provider_transaction_id=make_invoice_number("USR-TX", period_start),
            processed_at=period_start,
            metadata_json=meta,
        )
        session.add(transaction)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "billing_checkout_completed tenant_id=%s plan_id=%s invoice=%s total=%s %s",
        tenant_id,
        plan_id,
        invoice.invoice_number,
        quote.total_amount,
        quote.currency,
    )
    return CheckoutResult(
        subscription=subscription,
        invoice=invoice,
        transaction=transaction,
        quote=quote,
        next_billing_date=period_end,
    )
