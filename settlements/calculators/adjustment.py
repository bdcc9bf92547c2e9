"""
Adjustment Calculator

Computes the monetary impact of a manual adjustment on a line.
"""

from decimal import Decimal

from ..models import AbsoluteAdjustment, AdjustmentKind, PercentageAdjustment
from .amounts import quantize_money


class AdjustmentCalculator:
    """Derives the delta an adjustment applies to a line's current amount."""

    def impact(self, kind: AdjustmentKind, current_amount: Decimal) -> Decimal:
        """
        Absolute: the amount itself.
        Percentage: current_amount x percent / 100, rounded to the minor unit.
        """
        if isinstance(kind, AbsoluteAdjustment):
            return quantize_money(kind.amount)
        if isinstance(kind, PercentageAdjustment):
            return quantize_money(current_amount * kind.percent / Decimal("100"))
        raise TypeError(f"Unsupported adjustment kind: {kind!r}")
