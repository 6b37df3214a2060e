"""
PayEngine - Money Utilities

Fixed-precision monetary arithmetic. Every amount that is compared, summed
across employees or persisted passes through round_money().
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """
    Convert an input value to Decimal without going through binary floats.

    None is treated as zero. Floats are converted via their shortest
    string representation.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Boolean is not a monetary amount")
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, ValueError) as exc:
        raise TypeError(f"Cannot interpret {value!r} as an amount") from exc


def round_money(value: Any) -> Decimal:
    """Round to the currency minor unit, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Any, rate: Any) -> Decimal:
    """Apply a percentage rate (e.g. Decimal("4.48")) and round."""
    return round_money(to_decimal(amount) * to_decimal(rate) / HUNDRED)


def sum_money(values: Iterable[Any]) -> Decimal:
    """Sum amounts exactly and round the total."""
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return round_money(total)


def completion_percentage(part: Any, whole: Any) -> Decimal:
    """
    Share of part in whole as a percentage, truncated to 0.01 and capped at 100.

    Truncation keeps anything short of the whole below 100. Zero when
    whole is zero or negative.
    """
    whole = to_decimal(whole)
    if whole <= 0:
        return ZERO
    share = (to_decimal(part) / whole * HUNDRED).quantize(CENT, rounding=ROUND_DOWN)
    return min(HUNDRED, share)
