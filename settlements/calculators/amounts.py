"""
Money helpers shared by every calculator.

All amounts are rounded to the minor currency unit with ROUND_HALF_UP.
"""

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0")


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half away from zero."""
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def within_tolerance(left: Decimal, right: Decimal) -> bool:
    """True when two amounts differ by at most one minor unit."""
    return abs(left - right) <= MINOR_UNIT
