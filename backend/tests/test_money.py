"""Money conversion at the API boundary."""

from decimal import Decimal

import pytest

from agroflow.money import MoneyError, cents_to_json, from_cents, to_cents


@pytest.mark.parametrize(
    "value,expected",
    [
        ("12.34", 1234),
        (5, 500),
        (0.1, 10),
        (25.0, 2500),
        ("1,250.50", 125050),
        ("₹99", 9900),
        (Decimal("2.005"), 201),
        ("  7.5 ", 750),
    ],
)
def test_to_cents_accepts_common_inputs(value, expected):
    assert to_cents(value) == expected


def test_float_noise_does_not_leak():
    assert to_cents(0.1 + 0.2) == 30


@pytest.mark.parametrize("value", [None, True, "", "abc", "NaN", "Infinity", [1], "10000000"])
def test_to_cents_rejects_invalid(value):
    with pytest.raises(MoneyError):
        to_cents(value)


def test_from_cents_quantizes_to_two_places():
    assert from_cents(1234) == Decimal("12.34")
    assert from_cents(5) == Decimal("0.05")
    assert from_cents(None) is None


def test_cents_to_json_is_float():
    assert cents_to_json(2500) == 25.0
    assert isinstance(cents_to_json(1), float)
    assert cents_to_json(None) is None
