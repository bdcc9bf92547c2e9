"""
Payout Calculator

Groups settlement lines per agent and applies the withholding policy.
"""

from ..models import AgentTotals, SettlementLine
from .withholding import WithholdingPolicy


class PayoutCalculator:
    """Calculates what each agent is owed from a settlement."""

    def __init__(self, withholding: WithholdingPolicy | None = None):
        self.withholding = withholding or WithholdingPolicy()

    def by_agent(self, lines: list[SettlementLine]) -> list[AgentTotals]:
        """
        Net per agent = Commission
                      - Withholdings (on commission)
                      + Adjustments

        Agents are returned in order of first appearance.
        """
        grouped: dict[str, AgentTotals] = {}
        for line in lines:
            totals = grouped.get(line.agent_id)
            if totals is None:
                totals = AgentTotals(
                    agent_id=line.agent_id,
                    agent_name=line.agent_name,
                    team_id=line.team_id,
                    team_name=line.team_name,
                )
                grouped[line.agent_id] = totals
            totals.lines_count += 1
            totals.gross += line.commission_amount
            totals.adjustments += line.adjustments

        for totals in grouped.values():
            totals.withholdings = self.withholding.withhold(totals.gross)
            totals.net = totals.gross - totals.withholdings + totals.adjustments

        return list(grouped.values())
