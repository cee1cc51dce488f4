from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import BillingAccount, BillingPlanPrice, FxRate, TaxRate
from reduct.services.billing.catalog import BILLING_CYCLES
from reduct.services.billing.money import normalize_currency, round_money


@dataclass(frozen=True)
class FxMatch:
    id: str | None
    rate: Decimal
    inverted: bool = False


@dataclass(frozen=True)
class Quote:
    currency: str
    amount: Decimal
    base_currency: str
    base_amount: Decimal
    fx_rate: Decimal | None
    fx_rate_id: str | None
    tax_rate_percent: Decimal
    tax_rate_id: str | None
    tax_amount: Decimal
    total_amount: Decimal
    price_id: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "amount": float(self.amount),
            "base_currency": self.base_currency,
            "base_amount": float(self.base_amount),
            "fx_rate": float(self.fx_rate) if self.fx_rate is not None else None,
            "fx_rate_id": self.fx_rate_id,
            "tax_rate_percent": float(self.tax_rate_percent),
            "tax_rate_id": self.tax_rate_id,
            "tax_amount": float(self.tax_amount),
            "total_amount": float(self.total_amount),
            "price_id": self.price_id,
        }


def _quote_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


async def latest_plan_price(
    session: AsyncSession, *, plan_id: str, billing_cycle: str, currency: str
) -> BillingPlanPrice | None:
    currency_key = normalize_currency(currency)
    if not currency_key:
        return None
    result = await session.execute(
        select(BillingPlanPrice)
        .where(
            BillingPlanPrice.plan_id == plan_id,
            BillingPlanPrice.billing_cycle == billing_cycle,
            BillingPlanPrice.status == "active",
            BillingPlanPrice.currency == currency_key,
        )
        .order_by(BillingPlanPrice.effective_at.desc(), BillingPlanPrice.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _latest_fx_rate(session: AsyncSession, base: str, quote: str) -> FxRate | None:
    result = await session.execute(
        select(FxRate)
        .where(FxRate.base_currency == base, FxRate.quote_currency == quote, FxRate.is_active.is_(True))
        .order_by(FxRate.effective_at.desc(), FxRate.created_at.desc())
        .limit(1)
    )
    row = result.scalar_one_or_none()
    if row is None or row.rate is None or row.rate <= 0:
        return None
    return row


async def resolve_fx_rate(session: AsyncSession, base: str, quote: str) -> FxMatch | None:
    """Find base->quote, falling back to the inverse of a stored quote->base rate."""
    base_key = normalize_currency(base)
    quote_key = normalize_currency(quote)
    if not base_key or not quote_key:
        return None
    if base_key == quote_key:
        return FxMatch(id=None, rate=Decimal("1"))
    direct = await _latest_fx_rate(session, base_key, quote_key)
    if direct is not None:
        return FxMatch(id=direct.id, rate=Decimal(direct.rate))
    reverse = await _latest_fx_rate(session, quote_key, base_key)
    if reverse is not None:
        return FxMatch(id=reverse.id, rate=Decimal(1) / Decimal(reverse.rate), inverted=True)
    return None


async def latest_tax_rate(session: AsyncSession, country_code: str) -> TaxRate | None:
    code = (country_code or "").strip().upper()
    if not code:
        return None
    result = await session.execute(
        select(TaxRate)
        .where(TaxRate.country_code == code, TaxRate.is_active.is_(True))
        .order_by(TaxRate.effective_at.desc(), TaxRate.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_user_quote(
    session: AsyncSession, *, tenant_id: str, plan_id: str, billing_cycle: str
) -> Quote:
    """Price a plan for a tenant in its billing currency, including tax.

    Uses the tenant's currency price when one exists, otherwise converts the USD
    price with the latest FX rate. Tax comes from the newest active rate for the
    account's tax country (or country).
    """
    if billing_cycle not in BILLING_CYCLES:
        raise _quote_error(status.HTTP_400_BAD_REQUEST, "INVALID_BILLING_CYCLE", "invalid billing_cycle")

    account = (
        await session.execute(select(BillingAccount).where(BillingAccount.tenant_id == tenant_id))
    ).scalar_one_or_none()
    target_currency = normalize_currency(account.currency if account else None) or "USD"
    tax_country = ((account.tax_country_code or account.country_code) if account else None) or ""

    fx: FxMatch | None = None
    price = await latest_plan_price(session, plan_id=plan_id, billing_cycle=billing_cycle, currency=target_currency)
    if price is not None:
        base_currency = target_currency
        base_amount = Decimal(price.amount)
        amount = round_money(base_amount, target_currency)
    else:
        price = await latest_plan_price(session, plan_id=plan_id, billing_cycle=billing_cycle, currency="USD")
        if price is None:
            raise _quote_error(status.HTTP_404_NOT_FOUND, "PRICE_NOT_FOUND", "Billing plan price not found")
        base_currency = "USD"
        base_amount = Decimal(price.amount)
        if target_currency == "USD":
            amount = round_money(base_amount, target_currency)
        else:
            fx = await resolve_fx_rate(session, "USD", target_currency)
            if fx is None:
                raise _quote_error(status.HTTP_404_NOT_FOUND, "FX_RATE_NOT_FOUND", "FX rate not found")
            amount = round_money(base_amount * fx.rate, target_currency)
    if base_amount < 0:
        raise _quote_error(status.HTTP_400_BAD_REQUEST, "INVALID_PRICE", "price must be >= 0")

    tax_row = await latest_tax_rate(session, tax_country)
    tax_percent = Decimal(tax_row.rate_percent) if tax_row is not None else Decimal("0")
    tax_amount = round_money(amount * tax_percent / 100, target_currency) if tax_percent > 0 else round_money(0, target_currency)
    return Quote(
        currency=target_currency,
        amount=amount,
        base_currency=base_currency,
        base_amount=base_amount,
        fx_rate=fx.rate if fx is not None else None,
        fx_rate_id=fx.id if fx is not None else None,
        tax_rate_percent=tax_percent,
        tax_rate_id=tax_row.id if tax_row is not None else None,
        tax_amount=tax_amount,
        total_amount=round_money(amount + tax_amount, target_currency),
        price_id=price.id,
    )
