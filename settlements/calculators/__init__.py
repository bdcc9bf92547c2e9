"""
Calculators Package

Provides all derivation components for settlement processing.
"""

from .adjustment import AdjustmentCalculator
from .amounts import quantize_money, within_tolerance
from .commission import CommissionCalculator
from .payout import PayoutCalculator
from .totals import SettlementTotalizer
from .withholding import WithholdingPolicy

__all__ = [
    "AdjustmentCalculator",
    "CommissionCalculator",
    "PayoutCalculator",
    "SettlementTotalizer",
    "WithholdingPolicy",
    "quantize_money",
    "within_tolerance",
]
