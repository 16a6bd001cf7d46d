"""Decimal helpers for monetary amounts (currency minor-unit rounding)."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# Digits after the decimal point per ISO-4217 currency
MINOR_UNITS: dict[str, int] = {
    "ZAR": 2,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "KES": 2,
    "NGN": 2,
    "INR": 2,
    "JPY": 0,
}

ZERO = Decimal("0")


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    """Convert without binary-float artefacts (``0.1`` -> ``Decimal('0.1')``)."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Decimal | float | int | str, currency: str = "ZAR") -> Decimal:
    """Round half-up to the currency's minor unit."""
    exponent = Decimal(1).scaleb(-MINOR_UNITS.get(currency.upper(), 2))
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal | float | int) -> Decimal:
    return amount * to_decimal(percent) / Decimal(100)
