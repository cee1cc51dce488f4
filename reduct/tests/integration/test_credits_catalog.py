from __future__ import annotations

import pytest

from reduct.tests.utils.auth import create_platform_admin


@pytest.mark.asyncio
async def test_topup_product_lifecycle(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    created = await client.post(
        "/v1/credits/topup-products",
        json={"sku": "credits-1000", "name": "1,000 credits", "price": "9.99", "currency": "usd", "credits": 1000},
        headers=headers,
    )
    assert created.status_code == 201
    product = created.json()["data"]
    assert product["currency"] == "USD"
    assert product["price"] == 9.99
    assert product["bonus_credits"] == 0

    duplicate = await client.post(
        "/v1/credits/topup-products",
        json={"sku": "credits-1000", "name": "Again", "price": "1", "credits": 1},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "TOPUP_PRODUCT_EXISTS"

    bad_currency = await client.post(
        "/v1/credits/topup-products",
        json={"sku": "credits-5", "name": "Five", "price": "1", "currency": "dollars", "credits": 5},
        headers=headers,
    )
    assert bad_currency.status_code == 400
    assert bad_currency.json()["error"]["code"] == "INVALID_CURRENCY"

    zero_credits = await client.post(
        "/v1/credits/topup-products",
        json={"sku": "credits-0", "name": "Zero", "price": "1", "credits": 0},
        headers=headers,
    )
    assert zero_credits.status_code == 422

    updated = await client.put(
        f"/v1/credits/topup-products/{product['id']}",
        json={"bonus_credits": 100, "is_active": False, "currency": "krw"},
        headers=headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["bonus_credits"] == 100
    assert data["is_active"] is False
    assert data["currency"] == "KRW"

    empty = await client.put(f"/v1/credits/topup-products/{product['id']}", json={"name": None}, headers=headers)
    assert empty.status_code == 400
    assert empty.json()["error"]["code"] == "NO_FIELDS"

    inactive = await client.get("/v1/credits/topup-products", params={"is_active": "false"}, headers=headers)
    assert [row["sku"] for row in inactive.json()["data"]] == ["credits-1000"]
    active = await client.get("/v1/credits/topup-products", params={"is_active": "true"}, headers=headers)
    assert active.json()["data"] == []

    deleted = await client.delete(f"/v1/credits/topup-products/{product['id']}", headers=headers)
    assert deleted.status_code == 200
    missing = await client.delete(f"/v1/credits/topup-products/{product['id']}", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_plan_grant_lifecycle(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    created = await client.post(
        "/v1/credits/plan-grants",
        json={"plan_slug": "pro", "billing_cycle": "monthly", "monthly_credits": 5000, "expires_in_days": 30},
        headers=headers,
    )
    assert created.status_code == 201
    grant = created.json()["data"]
    assert grant["monthly_credits"] == 5000
    assert grant["initial_credits"] == 0

    duplicate = await client.post(
        "/v1/credits/plan-grants", json={"plan_slug": "pro", "billing_cycle": "monthly"}, headers=headers
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "PLAN_GRANT_EXISTS"

    bad_cycle = await client.post(
        "/v1/credits/plan-grants", json={"plan_slug": "pro", "billing_cycle": "weekly"}, headers=headers
    )
    assert bad_cycle.status_code == 400
    assert bad_cycle.json()["error"]["code"] == "INVALID_BILLING_CYCLE"

    yearly = await client.post(
        "/v1/credits/plan-grants",
        json={"plan_slug": "pro", "billing_cycle": "yearly", "initial_credits": 60000},
        headers=headers,
    )
    assert yearly.status_code == 201

    listing = await client.get("/v1/credits/plan-grants", params={"plan_slug": "pro"}, headers=headers)
    assert [row["billing_cycle"] for row in listing.json()["data"]] == ["monthly", "yearly"]

    # expires_in_days is the one field that may be cleared.
    updated = await client.put(
        f"/v1/credits/plan-grants/{grant['id']}",
        json={"expires_in_days": None, "monthly_credits": None, "is_active": False},
        headers=headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["expires_in_days"] is None
    assert data["monthly_credits"] == 5000
    assert data["is_active"] is False

    empty = await client.put(f"/v1/credits/plan-grants/{grant['id']}", json={}, headers=headers)
    assert empty.status_code == 400

    deleted = await client.delete(f"/v1/credits/plan-grants/{grant['id']}", headers=headers)
    assert deleted.status_code == 200
    missing = await client.put(f"/v1/credits/plan-grants/{grant['id']}", json={"is_active": True}, headers=headers)
    assert missing.status_code == 404
