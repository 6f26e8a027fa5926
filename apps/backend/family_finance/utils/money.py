"""
Decimal helpers for currency and percentage arithmetic.

All amounts are rounded half-up to cents, percentages to two decimals.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Decimal | float | int | str | None) -> Decimal:
    """
    Coerce to a Decimal rounded to cents.

    Floats go through ``str`` first so 0.1 stays 0.1.

    Example:
        >>> to_money(10.005)
        Decimal('10.01')
        >>> to_money(None)
        Decimal('0.00')
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_percent(value: Decimal | float | int | str | None) -> Decimal:
    return to_money(value)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """``amount * percentage / 100`` rounded to cents."""
    return to_money(Decimal(amount) * Decimal(percentage) / HUNDRED)


def ratio_percent(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100`` rounded to two places; 0 when ``whole`` is 0."""
    whole = Decimal(whole)
    if whole == 0:
        return ZERO
    return to_money(Decimal(part) / whole * HUNDRED)
