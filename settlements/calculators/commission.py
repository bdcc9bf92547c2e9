"""
Commission Calculator

Turns selected commission items into per-line commissions and a per-agent
preview. Purely derivational: catalog records are never mutated.
"""

from decimal import Decimal

from ..models import AgentTotals, CalculatedLine, CalculationPreview, CommissionItem
from .amounts import ZERO, quantize_money
from .withholding import WithholdingPolicy


class CommissionCalculator:
    """Calculates commission = base x rate under the agent/team plan."""

    DEFAULT_RATE = Decimal("0.03")

    def __init__(self, withholding: WithholdingPolicy | None = None, default_rate: Decimal = DEFAULT_RATE):
        self.withholding = withholding or WithholdingPolicy()
        self.default_rate = default_rate

    def resolve_rate(self, item: CommissionItem, catalog=None) -> Decimal:
        """
        Resolve the rate applied to an item.

        Priority order:
        1. Item-specific rate
        2. Agent plan
        3. Team plan
        4. Default plan rate
        """
        if item.commission_rate is not None:
            return item.commission_rate

        if catalog is not None:
            agent = catalog.agent(item.agent_id)
            if agent is not None and agent.commission_rate is not None:
                return agent.commission_rate

            team_id = item.team_id or (agent.team_id if agent else None)
            team = catalog.team(team_id) if team_id else None
            if team is not None and team.commission_rate is not None:
                return team.commission_rate

        return self.default_rate

    def commission_for(self, base_amount: Decimal, rate: Decimal) -> Decimal:
        return quantize_money(base_amount * rate)

    def calculate(self, items: list[CommissionItem], catalog=None) -> CalculationPreview:
        """Calculate every item and group the results per agent."""
        lines = []
        by_agent: dict[str, AgentTotals] = {}

        for item in items:
            rate = self.resolve_rate(item, catalog)
            commission = self.commission_for(item.base_amount, rate)
            lines.append(CalculatedLine(item=item, rate=rate, commission=commission))

            totals = by_agent.get(item.agent_id)
            if totals is None:
                totals = AgentTotals(
                    agent_id=item.agent_id,
                    agent_name=item.agent_name,
                    team_id=item.team_id,
                    team_name=item.team_name,
                )
                by_agent[item.agent_id] = totals
            totals.lines_count += 1
            totals.gross += commission

        for totals in by_agent.values():
            totals.withholdings = self.withholding.withhold(totals.gross)
            totals.net = totals.gross - totals.withholdings

        gross = sum((line.commission for line in lines), ZERO)
        withholdings = self.withholding.withhold(gross)

        return CalculationPreview(
            lines=lines,
            by_agent=list(by_agent.values()),
            gross=gross,
            withholdings=withholdings,
            net=gross - withholdings,
        )
