from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ffe_sync.errors import ValidationError


# ISO 4217 minor units that differ from the usual two decimals.
_MINOR_UNITS = {
    "BHD": 3,
    "CLP": 0,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "VND": 0,
}

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

ZERO = Decimal("0")


def normalize_currency(value: str | None, default: str = "USD") -> str:
    currency = str(value or default or "").strip().upper()
    if not _CURRENCY_PATTERN.match(currency):
        raise ValidationError(
            code="currency_invalid",
            message_key="currency_invalid",
            details=f"invalid currency: {value!r}",
            payload={"field": "currency"},
        )
    return currency


def minor_unit_exponent(currency: str) -> Decimal:
    digits = _MINOR_UNITS.get(str(currency or "").upper(), 2)
    return Decimal(1).scaleb(-digits)


def quantize(amount: Decimal, currency: str) -> Decimal:
    return amount.quantize(minor_unit_exponent(currency), rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    """Reads a stored or submitted amount. Floats go through str() to avoid binary noise."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(
            code="amount_invalid",
            message_key="amount_invalid",
            details=f"invalid amount: {value!r}",
        ) from exc


def parse_amount(value, currency: str, *, field: str = "amount", allow_zero: bool = False) -> Decimal:
    if value is None or isinstance(value, bool) or str(value).strip() == "":
        raise ValidationError(
            code="amount_invalid",
            message_key="amount_invalid",
            details=f"{field} is required",
            payload={"field": field},
        )
    amount = to_decimal(value)
    if not amount.is_finite() or amount < ZERO or (amount == ZERO and not allow_zero):
        raise ValidationError(
            code="amount_invalid",
            message_key="amount_invalid",
            details=f"{field} must be positive",
            payload={"field": field},
        )
    if quantize(amount, currency) != amount:
        raise ValidationError(
            code="amount_invalid",
            message_key="amount_invalid",
            details=f"{field} has more precision than {currency} allows",
            payload={"field": field},
        )
    return quantize(amount, currency)


def to_db_amount(amount: Decimal | None) -> str | None:
    if amount is None:
        return None
    return format(amount, "f")


def to_json_amount(amount) -> str | None:
    if amount is None:
        return None
    return format(to_decimal(amount), "f")
