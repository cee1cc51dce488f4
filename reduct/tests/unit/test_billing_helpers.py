from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from reduct.services.billing.cards import card_summary, detect_card_brand, format_card_number, parse_expiry
from reduct.services.billing.checkout import add_months, make_invoice_number, period_end_for
from reduct.services.billing.money import normalize_currency, round_money, to_decimal


def test_round_money_respects_currency_minor_units() -> None:
    assert round_money("10.005", "USD") == Decimal("10.01")
    assert round_money(Decimal("1234.5"), "KRW") == Decimal("1235")
    assert round_money(None, "JPY") == Decimal("0")


def test_currency_normalization() -> None:
    assert normalize_currency(" usd ") == "USD"
    assert normalize_currency("US") == ""
    assert normalize_currency(None) == ""


def test_to_decimal_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        to_decimal("ten")


def test_card_brands_and_summary() -> None:
    assert detect_card_brand("4111 1111 1111 1111") == "visa"
    assert detect_card_brand("5500000000000004") == "master"
    assert detect_card_brand("2221000000000009") == "master"
    assert detect_card_brand("378282246310005") == "amex"
    assert detect_card_brand("3530111333300000") == "jcb"
    assert detect_card_brand("6200000000000005") == "union"
    assert detect_card_brand("9999") is None
    assert format_card_number("4111-1111-1111-1111") == "4111 1111 1111 1111"
    assert card_summary("4111111111111111", "12/29") == {
        "brand": "visa",
        "last4": "1111",
        "exp_month": 12,
        "exp_year": 2029,
    }


def test_parse_expiry_rejects_bad_month() -> None:
    assert parse_expiry("1329") is None
    assert parse_expiry("129") is None


def test_add_months_clamps_to_month_end() -> None:
    jan_31 = datetime(2024, 1, 31, 9, 30, tzinfo=timezone.utc)
    assert add_months(jan_31, 1) == datetime(2024, 2, 29, 9, 30, tzinfo=timezone.utc)
    assert add_months(datetime(2023, 1, 31, tzinfo=timezone.utc), 1).day == 28
    assert add_months(datetime(2024, 11, 15, tzinfo=timezone.utc), 3) == datetime(2025, 2, 15, tzinfo=timezone.utc)
    assert period_end_for(jan_31, "yearly") == datetime(2025, 1, 31, 9, 30, tzinfo=timezone.utc)


def test_invoice_number_format() -> None:
    number = make_invoice_number("USR", datetime(2026, 3, 4, 5, 6, tzinfo=timezone.utc))
    prefix, day, minute, suffix = number.split("-")
    assert (prefix, day, minute) == ("USR", "20260304", "0506")
    assert len(suffix) == 4
    assert suffix.isalnum() and suffix.upper() == suffix
