"""
Currency Normalizer

Every derived monetary value in the engine passes through round_currency
before it is stored or compared.

DESIGN DECISION: Money is carried as Decimal. Floats can still arrive from
JSON payloads or callers, so they are converted through their shortest
repr first; this strips binary representation error (1.005 stays 1.005
instead of 1.00499999...) before quantizing to cents.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union


Amount = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Cents within this distance of an integer are considered clean
PRECISION_TOLERANCE = Decimal("1e-9")


def to_decimal(value: Amount) -> Decimal:
    """Convert a raw amount to Decimal without rounding."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_currency(value: Amount) -> Decimal:
    """
    Round to 2 decimal places, half away from zero.

    round_currency(-x) == -round_currency(x), so the two endpoints of a
    transfer always cancel exactly.
    """
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def needs_precision_fix(value: Amount) -> bool:
    """True if the value carries more than whole cents."""
    cents = to_decimal(value) * 100
    return abs(cents - cents.to_integral_value()) > PRECISION_TOLERANCE


def currency_equal(a: Amount, b: Amount) -> bool:
    """Round-then-compare equality used for change detection."""
    return round_currency(a) == round_currency(b)


def sum_currency(values: Iterable[Amount]) -> Decimal:
    """Sum raw amounts and round once at the end."""
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return round_currency(total)
