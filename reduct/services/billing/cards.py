from __future__ import annotations

from dataclasses import dataclass
import re


CARD_NUMBER_LENGTH = 16
_NON_DIGIT = re.compile(r"\D")


@dataclass(frozen=True)
class CardExpiry:
    month: int
    year: int


def normalize_card_number(value: str) -> str:
    # Strip separators and cap at the 16 digits the checkout form accepts.
    return _NON_DIGIT.sub("", value or "")[:CARD_NUMBER_LENGTH]


def format_card_number(value: str) -> str:
    digits = normalize_card_number(value)
    return " ".join(digits[i : i + 4] for i in range(0, len(digits), 4))


def detect_card_brand(value: str) -> str | None:
    digits = normalize_card_number(value)
    if not digits:
        return None
    if digits.startswith("4"):
        return "visa"
    if len(digits) >= 2 and 51 <= int(digits[:2]) <= 55:
        return "master"
    if len(digits) >= 4 and 2221 <= int(digits[:4]) <= 2720:
        return "master"
    if digits[:2] in {"34", "37"}:
        return "amex"
    if len(digits) >= 4 and 3528 <= int(digits[:4]) <= 3589:
        return "jcb"
    if digits.startswith("62"):
        return "union"
    return None


def parse_expiry(value: str) -> CardExpiry | None:
    """Parse ``MMYY`` (separators allowed) into month and four-digit year."""
    digits = _NON_DIGIT.sub("", value or "")
    if len(digits) != 4:
        return None
    month = int(digits[:2])
    if not 1 <= month <= 12:
        return None
    return CardExpiry(month=month, year=2000 + int(digits[2:]))


def card_summary(number: str, expiry: str | None = None) -> dict[str, object]:
    # Brand and last4 are the only card details ever persisted.
    digits = normalize_card_number(number)
    summary: dict[str, object] = {"brand": detect_card_brand(digits), "last4": digits[-4:] if len(digits) >= 4 else None}
    parsed = parse_expiry(expiry) if expiry else None
    if parsed is not None:
        summary["exp_month"] = parsed.month
        summary["exp_year"] = parsed.year
    return summary
