"""Customer-facing per-1k prices derived from the live rate card and markup rules.

The live card is the newest ``active`` card whose ``effective_at`` has passed.
Its rates are grouped per model and tier; input and output token rates become
per-1k costs, and the most specific active markup rule adds the margin.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.domain.models import PricingMarkupRule, PricingRate, PricingRateCard, PricingSku, as_utc, utc_now


_COST_PLACES = Decimal("0.000001")
_THOUSAND = Decimal("1000")


@dataclass(frozen=True)
class PublicPrice:
    provider_slug: str
    model_key: str
    model_name: str
    modality: str
    tier_unit: str | None
    tier_min: float | None
    tier_max: float | None
    input_cost_per_1k: float | None
    output_cost_per_1k: float | None
    avg_cost_per_1k: float | None
    margin_percent: float
    avg_cost_per_1k_with_margin: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def cost_per_1k(rate_value: Decimal, unit: str, unit_size: int) -> Decimal:
    # Token rates are quoted per unit_size tokens; other units are already per item.
    if unit == "tokens" and unit_size > 0:
        return Decimal(rate_value) * _THOUSAND / Decimal(unit_size)
    return Decimal(rate_value)


def _is_live(rule: PricingMarkupRule, now: datetime) -> bool:
    if rule.status != "active":
        return False
    starts = as_utc(rule.effective_from)
    ends = as_utc(rule.effective_to)
    if starts is not None and starts > now:
        return False
    if ends is not None and ends <= now:
        return False
    return True


def _specificity(rule: PricingMarkupRule, provider_slug: str, model_key: str, modality: str) -> int | None:
    score = 0
    for value, target, weight in (
        (rule.model_key, model_key, 4),
        (rule.provider_slug, provider_slug, 2),
        (rule.modality, modality, 1),
    ):
        if value is None:
            continue
        if value != target:
            return None
        score += weight
    return score


def select_markup(
    rules: Iterable[PricingMarkupRule],
    *,
    provider_slug: str,
    model_key: str,
    modality: str,
    now: datetime,
) -> PricingMarkupRule | None:
    """Pick the live rule that names the most of model, provider and modality.

    A model match outranks a provider match, which outranks a modality match.
    Ties go to the most recently created rule.
    """
    best: tuple[int, datetime] | None = None
    chosen: PricingMarkupRule | None = None
    for rule in rules:
        if not _is_live(rule, now):
            continue
        score = _specificity(rule, provider_slug, model_key, modality)
        if score is None:
            continue
        rank = (score, as_utc(rule.created_at) or now)
        if best is None or rank > best:
            best = rank
            chosen = rule
    return chosen


def _rounded(value: Decimal | None) -> float | None:
    return float(value.quantize(_COST_PLACES)) if value is not None else None


def _tier_value(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


async def live_rate_card(session: AsyncSession, now: datetime | None = None) -> PricingRateCard | None:
    moment = now or utc_now()
    return (
        await session.execute(
            select(PricingRateCard)
            .where(PricingRateCard.status == "active", PricingRateCard.effective_at <= moment)
            .order_by(PricingRateCard.effective_at.desc(), PricingRateCard.version.desc())
            .limit(1)
        )
    ).scalar_one_or_none()


async def compute_public_prices(session: AsyncSession, now: datetime | None = None) -> list[PublicPrice]:
    moment = now or utc_now()
    card = await live_rate_card(session, moment)
    if card is None:
        return []
    rows = (
        await session.execute(
            select(PricingRate, PricingSku)
            .join(PricingSku, PricingSku.id == PricingRate.sku_id)
            .where(PricingRate.rate_card_id == card.id, PricingSku.is_active.is_(True))
        )
    ).all()
    rules = list((await session.execute(select(PricingMarkupRule))).scalars().all())

    groups: dict[tuple, dict[str, list[Decimal]]] = {}
    for rate, sku in rows:
        key = (
            sku.provider_slug,
            sku.model_key,
            sku.model_name,
            sku.modality,
            rate.tier_unit,
            rate.tier_min,
            rate.tier_max,
        )
        bucket = groups.setdefault(key, {"input": [], "output": [], "other": []})
        category = sku.token_category if sku.token_category in ("input", "output") else "other"
        bucket[category].append(cost_per_1k(rate.rate_value, sku.unit, sku.unit_size))

    prices: list[PublicPrice] = []
    for key, bucket in groups.items():
        provider_slug, model_key, model_name, modality, tier_unit, tier_min, tier_max = key
        input_cost = max(bucket["input"]) if bucket["input"] else None
        output_cost = max(bucket["output"]) if bucket["output"] else None
        known = [cost for cost in (input_cost, output_cost) if cost is not None] or bucket["other"]
        avg = sum(known, Decimal("0")) / len(known) if known else None
        rule = select_markup(
            rules, provider_slug=provider_slug, model_key=model_key, modality=modality, now=moment
        )
        margin = Decimal(rule.margin_percent) if rule is not None else Decimal("0")
        with_margin = avg * (Decimal("1") + margin / Decimal("100")) if avg is not None else None
        prices.append(
            PublicPrice(
                provider_slug=provider_slug,
                model_key=model_key,
                model_name=model_name,
                modality=modality,
                tier_unit=tier_unit,
                tier_min=_tier_value(tier_min),
                tier_max=_tier_value(tier_max),
                input_cost_per_1k=_rounded(input_cost),
                output_cost_per_1k=_rounded(output_cost),
                avg_cost_per_1k=_rounded(avg),
                margin_percent=float(margin),
                avg_cost_per_1k_with_margin=_rounded(with_margin),
            )
        )
    # Untiered rows first, then ascending tiers.
    prices.sort(
        key=lambda p: (
            p.provider_slug,
            p.model_name,
            p.tier_unit is not None,
            p.tier_unit or "",
            p.tier_min is not None,
            p.tier_min or 0.0,
        )
    )
    return prices


def filter_public_prices(
    prices: list[PublicPrice],
    *,
    q: str | None = None,
    provider_slug: str | None = None,
    modality: str | None = None,
    tier_unit: str | None = None,
) -> list[PublicPrice]:
    needle = (q or "").lower()
    result = []
    for price in prices:
        if provider_slug and price.provider_slug != provider_slug:
            continue
        if modality and price.modality != modality:
            continue
        if tier_unit and price.tier_unit != tier_unit:
            continue
        if needle and not any(
            needle in field.lower()
            for field in (price.model_name, price.model_key, price.provider_slug, price.modality)
        ):
            continue
        result.append(price)
    return result
