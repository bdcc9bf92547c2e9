"""
Withholding Policy

A single flat rate applied to gross commission.
"""

from decimal import Decimal

from .amounts import quantize_money


class WithholdingPolicy:
    """Applies the configured withholding rate."""

    DEFAULT_RATE = Decimal("0.15")

    def __init__(self, rate: Decimal = DEFAULT_RATE):
        if not (0 <= rate <= 1):
            raise ValueError(f"withholding rate must be between 0 and 1, got: {rate}")
        self.rate = rate

    def withhold(self, gross: Decimal) -> Decimal:
        return quantize_money(gross * self.rate)
