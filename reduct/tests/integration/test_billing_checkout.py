from __future__ import annotations

import re
from decimal import Decimal

import pytest
from sqlalchemy import select

from reduct.domain.models import (
    BillingAccount,
    BillingInvoice,
    BillingInvoiceLineItem,
    BillingPlan,
    BillingPlanPrice,
    BillingTransaction,
    FxRate,
    TaxRate,
    Tenant,
)
from reduct.persistence.db import SessionLocal
from reduct.tests.utils.auth import create_test_user


async def _seed_plan(*, usd_amount: str = "10.00", tier: str = "pro") -> str:
    async with SessionLocal() as session:
        plan = BillingPlan(slug=f"{tier}-plan", name=f"{tier.title()} Plan", tier=tier, tenant_type="personal")
        session.add(plan)
        await session.flush()
        session.add(
            BillingPlanPrice(plan_id=plan.id, billing_cycle="monthly", currency="USD", amount=Decimal(usd_amount))
        )
        await session.commit()
        return plan.id


async def _seed_korean_account(tenant_id: str) -> None:
    async with SessionLocal() as session:
        session.add(BillingAccount(tenant_id=tenant_id, country_code="KR", currency="KRW"))
        session.add(TaxRate(country_code="KR", name="VAT", rate_percent=Decimal("10")))
        await session.commit()


@pytest.mark.asyncio
async def test_quote_in_usd_without_account(client) -> None:
    plan_id = await _seed_plan()
    _user, _tenant_id, headers = await create_test_user()

    response = await client.get(
        "/v1/billing/quote", params={"plan_id": plan_id, "billing_cycle": "monthly"}, headers=headers
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["currency"] == "USD"
    assert data["amount"] == 10.0
    assert data["tax_amount"] == 0.0
    assert data["total_amount"] == 10.0
    assert data["fx_rate"] is None


@pytest.mark.asyncio
async def test_quote_converts_with_fx_and_applies_tax(client) -> None:
    plan_id = await _seed_plan()
    _user, tenant_id, headers = await create_test_user()
    await _seed_korean_account(tenant_id)
    async with SessionLocal() as session:
        session.add(FxRate(base_currency="USD", quote_currency="KRW", rate=Decimal("1300")))
        await session.commit()

    response = await client.get(
        "/v1/billing/quote", params={"plan_id": plan_id, "billing_cycle": "monthly"}, headers=headers
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["currency"] == "KRW"
    assert data["base_currency"] == "USD"
    assert data["amount"] == 13000.0
    assert data["tax_rate_percent"] == 10.0
    assert data["tax_amount"] == 1300.0
    assert data["total_amount"] == 14300.0


@pytest.mark.asyncio
async def test_quote_uses_inverse_of_reverse_fx_rate(client) -> None:
    plan_id = await _seed_plan()
    _user, tenant_id, headers = await create_test_user()
    await _seed_korean_account(tenant_id)
    async with SessionLocal() as session:
        session.add(FxRate(base_currency="KRW", quote_currency="USD", rate=Decimal("0.0008")))
        await session.commit()

    response = await client.get(
        "/v1/billing/quote", params={"plan_id": plan_id, "billing_cycle": "monthly"}, headers=headers
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["amount"] == 12500.0
    assert data["total_amount"] == 13750.0


@pytest.mark.asyncio
async def test_quote_without_fx_rate_is_not_found(client) -> None:
    plan_id = await _seed_plan()
    _user, tenant_id, headers = await create_test_user()
    await _seed_korean_account(tenant_id)

    response = await client.get("/v1/billing/quote", params={"plan_id": plan_id}, headers=headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "FX_RATE_NOT_FOUND"


@pytest.mark.asyncio
async def test_quote_rejects_unknown_cycle(client) -> None:
    plan_id = await _seed_plan()
    _user, _tenant_id, headers = await create_test_user()
    response = await client.get(
        "/v1/billing/quote", params={"plan_id": plan_id, "billing_cycle": "weekly"}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_BILLING_CYCLE"


@pytest.mark.asyncio
async def test_checkout_records_paid_invoice_and_upgrades_tenant(client) -> None:
    plan_id = await _seed_plan(usd_amount="19.99")
    _user, tenant_id, headers = await create_test_user()

    response = await client.post(
        "/v1/billing/checkout",
        json={
            "plan_id": plan_id,
            "billing_cycle": "monthly",
            "card_number": "4111 1111 1111 1111",
            "card_expiry": "1230",
        },
        headers=headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_amount"] == 19.99
    assert data["currency"] == "USD"
    assert data["invoice"]["status"] == "paid"
    assert re.fullmatch(r"USR-\d{8}-\d{4}-[A-Z0-9]{4}", data["invoice"]["invoice_number"])
    assert data["transaction"]["status"] == "succeeded"
    assert data["subscription"]["plan_id"] == plan_id
    assert data["next_billing_date"] is not None

    async with SessionLocal() as session:
        tenant = await session.get(Tenant, tenant_id)
        assert tenant.plan_tier == "pro"
        account = (
            await session.execute(select(BillingAccount).where(BillingAccount.tenant_id == tenant_id))
        ).scalar_one()
        assert account.payment_method_summary["last4"] == "1111"
        assert "4111111111111111" not in str(account.payment_method_summary)
        invoice = (await session.execute(select(BillingInvoice))).scalar_one()
        line_items = (await session.execute(select(BillingInvoiceLineItem))).scalars().all()
        assert [item.invoice_id for item in line_items] == [invoice.id]
        charges = (await session.execute(select(BillingTransaction))).scalars().all()
        assert len(charges) == 1


@pytest.mark.asyncio
async def test_checkout_twice_keeps_single_subscription(client) -> None:
    plan_id = await _seed_plan()
    _user, _tenant_id, headers = await create_test_user()
    payload = {"plan_id": plan_id, "billing_cycle": "yearly"}
    async with SessionLocal() as session:
        session.add(BillingPlanPrice(plan_id=plan_id, billing_cycle="yearly", currency="USD", amount=Decimal("100")))
        await session.commit()

    first = await client.post("/v1/billing/checkout", json=payload, headers=headers)
    second = await client.post("/v1/billing/checkout", json=payload, headers=headers)
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["data"]["subscription"]["id"] == second.json()["data"]["subscription"]["id"]
    assert first.json()["data"]["invoice"]["id"] != second.json()["data"]["invoice"]["id"]


@pytest.mark.asyncio
async def test_checkout_rejects_short_card_number(client) -> None:
    plan_id = await _seed_plan()
    _user, _tenant_id, headers = await create_test_user()
    response = await client.post(
        "/v1/billing/checkout",
        json={"plan_id": plan_id, "billing_cycle": "monthly", "card_number": "4111"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_CARD_NUMBER"
