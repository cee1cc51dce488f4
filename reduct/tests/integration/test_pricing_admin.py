from __future__ import annotations

import pytest

from reduct.tests.utils.auth import create_platform_admin, create_test_user


async def _create_card(client, headers, **overrides) -> dict:
    body = {"name": "Standard", "version": 1, "status": "active", "effective_at": "2026-01-01T00:00:00Z"}
    body.update(overrides)
    response = await client.post("/v1/ai/pricing/rate-cards", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def _create_sku(client, headers, sku_code: str, token_category: str) -> dict:
    response = await client.post(
        "/v1/ai/pricing/skus",
        json={
            "sku_code": sku_code,
            "provider_slug": "openai",
            "model_key": "gpt-4o",
            "model_name": "GPT-4o",
            "token_category": token_category,
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def _create_rate(client, headers, card_id: str, sku_id: str, rate_value: float) -> dict:
    response = await client.post(
        "/v1/ai/pricing/rates",
        json={"rate_card_id": card_id, "sku_id": sku_id, "rate_value": rate_value},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def _seed_gpt4o(client, headers) -> dict:
    card = await _create_card(client, headers)
    input_sku = await _create_sku(client, headers, "openai.gpt-4o.input", "input")
    output_sku = await _create_sku(client, headers, "openai.gpt-4o.output", "output")
    await _create_rate(client, headers, card["id"], input_sku["id"], 2.5)
    await _create_rate(client, headers, card["id"], output_sku["id"], 10)
    return card


@pytest.mark.asyncio
async def test_pricing_requires_platform_admin(client) -> None:
    _user, _tenant_id, headers = await create_test_user()
    response = await client.get("/v1/ai/pricing/public-prices", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_rate_card_duplicate_version_conflicts(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _create_card(client, headers, status="draft")

    duplicate = await client.post(
        "/v1/ai/pricing/rate-cards",
        json={"name": "Standard", "version": 1, "effective_at": "2026-02-01T00:00:00Z"},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "RATE_CARD_EXISTS"

    bad_status = await client.post(
        "/v1/ai/pricing/rate-cards",
        json={"name": "Other", "version": 1, "status": "live", "effective_at": "2026-02-01T00:00:00Z"},
        headers=headers,
    )
    assert bad_status.status_code == 400
    assert bad_status.json()["error"]["code"] == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_rate_card_update_and_listing_order(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    older = await _create_card(client, headers, name="Launch", effective_at="2025-06-01T00:00:00Z")
    newer = await _create_card(client, headers, name="Launch", version=2)

    listing = await client.get("/v1/ai/pricing/rate-cards", params={"q": "launch"}, headers=headers)
    data = listing.json()["data"]
    assert data["total"] == 2
    assert [row["id"] for row in data["rows"]] == [newer["id"], older["id"]]

    updated = await client.put(
        f"/v1/ai/pricing/rate-cards/{older['id']}", json={"status": "retired"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["status"] == "retired"

    empty = await client.put(f"/v1/ai/pricing/rate-cards/{older['id']}", json={}, headers=headers)
    assert empty.status_code == 400
    assert empty.json()["error"]["code"] == "NO_FIELDS"

    missing = await client.put("/v1/ai/pricing/rate-cards/missing", json={"status": "draft"}, headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_clone_copies_every_rate(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    card = await _seed_gpt4o(client, headers)

    cloned = await client.post(
        f"/v1/ai/pricing/rate-cards/{card['id']}/clone",
        json={"name": "Standard", "version": 2, "effective_at": "2026-03-01T00:00:00Z"},
        headers=headers,
    )
    assert cloned.status_code == 201
    data = cloned.json()["data"]
    assert data["copied"] == 2
    assert data["rate_card"]["status"] == "draft"

    rates = await client.get(
        "/v1/ai/pricing/rates", params={"rate_card_id": data["rate_card"]["id"]}, headers=headers
    )
    assert rates.json()["data"]["total"] == 2

    missing = await client.post(
        "/v1/ai/pricing/rate-cards/missing/clone",
        json={"name": "Standard", "version": 3, "effective_at": "2026-03-01T00:00:00Z"},
        headers=headers,
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_bulk_percent_update_only_touches_matching_rates(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    card = await _seed_gpt4o(client, headers)

    response = await client.post(
        "/v1/ai/pricing/rates/bulk-update",
        json={"rate_card_id": card["id"], "operation": "percent", "value": 10, "token_category": "output"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["updated"] == 1

    rates = await client.get("/v1/ai/pricing/rates", params={"rate_card_id": card["id"]}, headers=headers)
    by_category = {row["token_category"]: row["rate_value"] for row in rates.json()["data"]["rows"]}
    assert by_category == {"input": 2.5, "output": pytest.approx(11.0)}

    negative = await client.post(
        "/v1/ai/pricing/rates/bulk-update",
        json={"rate_card_id": card["id"], "operation": "set", "value": -1},
        headers=headers,
    )
    assert negative.status_code == 400
    assert negative.json()["error"]["code"] == "INVALID_VALUE"

    unknown = await client.post(
        "/v1/ai/pricing/rates/bulk-update",
        json={"rate_card_id": card["id"], "operation": "divide", "value": 2},
        headers=headers,
    )
    assert unknown.status_code == 400
    assert unknown.json()["error"]["code"] == "INVALID_OPERATION"


@pytest.mark.asyncio
async def test_rate_update_clears_blank_tier_unit(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    card = await _create_card(client, headers)
    sku = await _create_sku(client, headers, "openai.gpt-4o.input", "input")
    rate = await _create_rate(client, headers, card["id"], sku["id"], 2.5)

    response = await client.put(
        f"/v1/ai/pricing/rates/{rate['id']}",
        json={"rate_value": 3, "tier_unit": "  ", "tier_min": 0},
        headers=headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["rate_value"] == 3.0
    assert data["tier_unit"] is None
    assert data["tier_min"] == 0.0

    negative = await client.put(f"/v1/ai/pricing/rates/{rate['id']}", json={"rate_value": -1}, headers=headers)
    assert negative.status_code == 422


@pytest.mark.asyncio
async def test_markup_lifecycle(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    created = await client.post(
        "/v1/ai/pricing/markups",
        json={"name": "OpenAI margin", "provider_slug": "openai", "model_key": " ", "margin_percent": 15},
        headers=headers,
    )
    assert created.status_code == 201
    markup = created.json()["data"]
    assert markup["status"] == "active"
    assert markup["model_key"] is None

    listing = await client.get("/v1/ai/pricing/markups", params={"provider_slug": "openai"}, headers=headers)
    assert listing.json()["data"]["total"] == 1

    updated = await client.put(
        f"/v1/ai/pricing/markups/{markup['id']}", json={"margin_percent": 25, "status": "inactive"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["margin_percent"] == 25.0
    assert updated.json()["data"]["status"] == "inactive"

    deleted = await client.delete(f"/v1/ai/pricing/markups/{markup['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["data"] == {"ok": True, "id": markup["id"]}

    again = await client.delete(f"/v1/ai/pricing/markups/{markup['id']}", headers=headers)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_public_prices_apply_most_specific_markup(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _seed_gpt4o(client, headers)
    for name, body in (
        ("Provider", {"provider_slug": "openai", "margin_percent": 10}),
        ("Model", {"provider_slug": "openai", "model_key": "gpt-4o", "margin_percent": 20}),
    ):
        response = await client.post("/v1/ai/pricing/markups", json={"name": name, **body}, headers=headers)
        assert response.status_code == 201

    response = await client.get("/v1/ai/pricing/public-prices", headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    price = data["rows"][0]
    assert price["model_name"] == "GPT-4o"
    assert price["input_cost_per_1k"] == pytest.approx(0.0025)
    assert price["output_cost_per_1k"] == pytest.approx(0.01)
    assert price["avg_cost_per_1k"] == pytest.approx(0.00625)
    assert price["margin_percent"] == 20.0
    assert price["avg_cost_per_1k_with_margin"] == pytest.approx(0.0075)

    filtered = await client.get("/v1/ai/pricing/public-prices", params={"provider_slug": "anthropic"}, headers=headers)
    assert filtered.json()["data"]["total"] == 0


@pytest.mark.asyncio
async def test_public_prices_empty_without_active_card(client) -> None:
    _admin, _tenant_id, headers = await create_platform_admin()
    await _create_card(client, headers, status="draft")
    response = await client.get("/v1/ai/pricing/public-prices", headers=headers)
    assert response.json()["data"]["rows"] == []
