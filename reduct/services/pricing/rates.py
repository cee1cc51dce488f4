from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import PricingRate, PricingRateCard, PricingSku


logger = logging.getLogger(__name__)

_RATE_PLACES = Decimal("0.00000001")


@dataclass(frozen=True)
class RateFilters:
    """Narrowing applied to rate listings and bulk updates; empty values match everything."""

    rate_card_id: str | None = None
    rate_card_status: str | None = None
    provider_slug: str | None = None
    model_key: str | None = None
    modality: str | None = None
    usage_kind: str | None = None
    token_category: str | None = None
    tier_unit: str | None = None
    q: str | None = None

    def conditions(self) -> list[Any]:
        conditions: list[Any] = []
        if self.rate_card_id:
            conditions.append(PricingRate.rate_card_id == self.rate_card_id)
        if self.rate_card_status:
            conditions.append(PricingRateCard.status == self.rate_card_status)
        if self.provider_slug:
            conditions.append(PricingSku.provider_slug == self.provider_slug)
        if self.model_key:
            conditions.append(PricingSku.model_key == self.model_key)
        if self.modality:
            conditions.append(PricingSku.modality == self.modality)
        if self.usage_kind:
            conditions.append(PricingSku.usage_kind == self.usage_kind)
        if self.token_category:
            conditions.append(PricingSku.token_category == self.token_category)
        if self.tier_unit:
            conditions.append(PricingRate.tier_unit == self.tier_unit)
        if self.q:
            pattern = f"%{self.q}%"
            conditions.append(
                or_(
                    PricingSku.model_name.ilike(pattern),
                    PricingSku.model_key.ilike(pattern),
                    PricingSku.provider_slug.ilike(pattern),
                    PricingSku.sku_code.ilike(pattern),
                )
            )
        return conditions


def joined_rates():
    return (
        select(PricingRate, PricingRateCard, PricingSku)
        .join(PricingRateCard, PricingRateCard.id == PricingRate.rate_card_id)
        .join(PricingSku, PricingSku.id == PricingRate.sku_id)
    )


def apply_operation(current: Decimal, operation: str, value: Decimal) -> Decimal:
    """Return the new rate for one bulk operation.

    ``percent`` adjusts by ``value`` percent, ``multiply`` scales by ``value`` and
    ``set`` replaces the rate outright.
    """
    if operation == "percent":
        result = current * (Decimal("1") + value / Decimal("100"))
    elif operation == "multiply":
        result = current * value
    elif operation == "set":
        result = value
    else:
        raise ValueError(f"unknown bulk operation: {operation}")
    return result.quantize(_RATE_PLACES)


async def bulk_update_rates(
    session: AsyncSession, filters: RateFilters, operation: str, value: Decimal
) -> int:
    """Rewrite every matching rate on one card; the caller commits."""
    rows = (await session.execute(joined_rates().where(*filters.conditions()))).all()
    for rate, _card, _sku in rows:
        rate.rate_value = apply_operation(Decimal(rate.rate_value), operation, value)
    await session.flush()
    logger.info(
        "pricing_rates_bulk_updated rate_card_id=%s operation=%s updated=%s",
        filters.rate_card_id,
        operation,
        len(rows),
    )
    return len(rows)


async def clone_rate_card(session: AsyncSession, source_id: str, card: PricingRateCard) -> int | None:
    """Insert ``card`` with copies of the source card's rates.

    Returns the number of copied rates, or None when the source card is missing.
    The caller owns the transaction.
    """
    if await session.get(PricingRateCard, source_id) is None:
        return None
    session.add(card)
    await session.flush()
    source_rates = (
        (await session.execute(select(PricingRate).where(PricingRate.rate_card_id == source_id))).scalars().all()
    )
    for rate in source_rates:
        session.add(
            PricingRate(
                rate_card_id=card.id,
                sku_id=rate.sku_id,
                rate_value=rate.rate_value,
                tier_unit=rate.tier_unit,
                tier_min=rate.tier_min,
                tier_max=rate.tier_max,
                metadata_json=dict(rate.metadata_json or {}),
            )
        )
    await session.flush()
    return len(source_rates)
