from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any


CURRENCY_DECIMALS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "KRW": 0,
    "JPY": 0,
}


def normalize_currency(value: Any) -> str:
    # Three-letter ISO codes only; anything else normalizes to "".
    key = value.strip().upper() if isinstance(value, str) else ""
    return key if len(key) == 3 else ""


def currency_decimals(currency: str) -> int:
    return CURRENCY_DECIMALS.get((currency or "").strip().upper(), 2)


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc


def round_money(value: Any, currency: str) -> Decimal:
    """Round half-up to the currency's minor unit (0 decimals for KRW/JPY)."""
    exponent = Decimal(1).scaleb(-currency_decimals(currency))
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)
