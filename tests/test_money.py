"""Tests for the Amount value type and currency-aware rounding."""

from decimal import Decimal

import pytest

from core.money import Amount, CurrencyMismatch, Rounder


def test_amount_arithmetic_keeps_currency():
    total = Amount("30.00", "usd") * 2 + Amount("9.50", "USD") - Amount("5", "USD")
    assert total == Amount("64.50", "USD")
    assert total.currency_code == "USD"
    assert -total == Amount("-64.5", "USD")
    assert abs(Amount("-1.25", "EUR")) == Amount("1.25", "EUR")


def test_amount_rejects_floats():
    with pytest.raises(TypeError):
        Amount(0.1, "USD")


def test_amount_rejects_garbage():
    with pytest.raises(ValueError):
        Amount("ten", "USD")


@pytest.mark.parametrize(
    "operation",
    [
        lambda a, b: a + b,
        lambda a, b: a - b,
        lambda a, b: a < b,
        lambda a, b: a == b,
    ],
)
def test_mixed_currencies_raise(operation):
    with pytest.raises(CurrencyMismatch):
        operation(Amount("1", "USD"), Amount("1", "EUR"))


def test_to_wire_is_fixed_point():
    assert Amount("89.5", "USD").to_wire() == "89.50"
    assert Amount(Decimal("1E+1"), "USD").to_wire() == "10.00"
    assert Amount("1500.4", "JPY").to_wire() == "1500"


@pytest.mark.parametrize(
    "number,currency,expected",
    [
        ("10.005", "USD", "10.01"),
        ("10.004", "USD", "10.00"),
        ("-0.125", "EUR", "-0.13"),
        ("999.5", "HUF", "1000"),
        ("12.49", "TWD", "12"),
    ],
)
def test_rounder_half_up_to_currency_precision(number, currency, expected):
    rounded = Rounder().round(Amount(number, currency))
    assert format(rounded.number, "f") == expected


def test_zero_and_sign_helpers():
    zero = Amount.zero("USD")
    assert zero.is_zero()
    assert not zero.is_positive()
    assert Amount("0.01", "USD").is_positive()
    assert str(Amount("3.20", "USD")) == "3.20 USD"
