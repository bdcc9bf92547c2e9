"""
Settlement Totalizer

Recomputes settlement aggregates from its lines and checks the sum
invariant: net == gross - withholdings + sum(line.adjustments).
"""

from ..models import Settlement
from .amounts import ZERO, within_tolerance
from .withholding import WithholdingPolicy


class SettlementTotalizer:
    """Keeps settlement aggregates consistent with its lines."""

    def __init__(self, withholding: WithholdingPolicy | None = None):
        self.withholding = withholding or WithholdingPolicy()

    def recompute(self, settlement: Settlement) -> Settlement:
        """Refresh line nets and settlement aggregates in place."""
        for line in settlement.lines:
            line.net_amount = line.commission_amount + line.adjustments

        gross = sum((line.commission_amount for line in settlement.lines), ZERO)
        adjustments = sum((line.adjustments for line in settlement.lines), ZERO)
        withholdings = self.withholding.withhold(gross)

        settlement.gross = gross
        settlement.withholdings = withholdings
        settlement.adjustments = adjustments
        settlement.net = gross - withholdings + adjustments
        settlement.lines_count = len(settlement.lines)
        return settlement

    @staticmethod
    def is_balanced(settlement: Settlement) -> bool:
        adjustments = sum((line.adjustments for line in settlement.lines), ZERO)
        expected = settlement.gross - settlement.withholdings + adjustments
        return within_tolerance(settlement.net, expected)
