# Overview: Conversion between decimal currency amounts and integer minor units.

"""
Money helpers.

All amounts are stored and computed as integer minor units (paise for INR,
cents elsewhere). Decimals only exist at the API boundary: incoming JSON is
converted with to_cents(), outgoing values with from_cents().
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

# Upper bound for any single amount: 9,999,999.99
MAX_AMOUNT_CENTS = 999_999_999

_TWO_PLACES = Decimal("0.01")


class MoneyError(ValueError):
    """Raised when a value cannot be interpreted as a currency amount."""


def to_cents(value: Any) -> int:
    """
    Convert a decimal amount (Decimal, str, int or float) to minor units.

    Floats go through str() first so 0.1 + 0.2 style representation noise
    does not leak into the integer result. Rounds half-up to 2 places.
    """
    if value is None or isinstance(value, bool):
        raise MoneyError("amount is required")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "").lstrip("₹$")
        if not text:
            raise MoneyError("amount is required")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise MoneyError(f"invalid amount: {value!r}")
    else:
        raise MoneyError(f"invalid amount: {value!r}")

    if not amount.is_finite():
        raise MoneyError(f"invalid amount: {value!r}")

    cents = int((amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise MoneyError("amount exceeds maximum of 9,999,999.99")
    return cents


def from_cents(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(int(cents)) / 100).quantize(_TWO_PLACES)


def cents_to_json(cents: int | None) -> float | None:
    """JSON has no decimal type; emit a 2-place float for API payloads."""
    amount = from_cents(cents)
    return float(amount) if amount is not None else None
