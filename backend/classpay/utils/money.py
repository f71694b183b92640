"""Decimal helpers for monetary values (two fractional digits, half-up)."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings, floats and Decimals to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a monetary value: {value!r}") from exc


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Any) -> int:
    """Amount in minor units for the processor API."""
    return int((quantize_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))
