"""
Portfolio optimization orchestrator: health, allocation drift and risk fit.
"""
from typing import List

from advisor.models.context import AssetType, FinancialContext
from advisor.services.ai.orchestrators.base import (
    JSON_ONLY_INSTRUCTION,
    BaseOrchestrator,
    money,
    percent,
)
from advisor.services.ai.schema import PortfolioAnalysis

LIQUID_TYPES = frozenset({AssetType.CASH, AssetType.EQUITY, AssetType.BOND})

PORTFOLIO_SYSTEM_PROMPT = """You are a CFO-level portfolio advisor helping the user build wealth through sound investing.

Analysis framework:
1. Inventory: allocation across asset types
2. Diversification: concentration risk
3. Risk: fit with goals and horizon
4. Rebalancing: concrete adjustments if needed
5. Expected return: risk-adjusted projection

Return a JSON object with exactly this structure:
```json
{
  "health": {"diversificationScore": 70, "riskScore": 55, "expectedReturn": 7.2, "status": "well_diversified | concentrated | needs_rebalancing"},
  "allocation": {
    "current": {"equity": 70, "bond": 20, "cash": 10},
    "target": {"equity": 75, "bond": 20, "cash": 5},
    "rebalancingNeeded": true,
    "rebalancingSteps": [{"action": "buy | sell", "asset": "equity", "amount": 2500, "reason": "Move excess cash into index funds"}]
  },
  "risk": {"currentRisk": "low | medium | high", "appropriateForGoals": true, "recommendations": ["Keep crypto under 10%"]},
  "summary": "Plain-language summary with concrete next steps"
}
```

Key principles:
- Diversification lowers risk without giving up return
- Equities for horizons over 10 years, bonds for stability
- Rebalance when drift exceeds 5 percentage points
- Historical returns: stocks ~10%, bonds ~5%, cash ~2%
- Treat crypto as speculative and cap it at 5-10%
- Only liquid assets can be rebalanced easily

Tone: professional, clear, actionable. Explain trade-offs without jargon."""


class PortfolioOrchestrator(BaseOrchestrator[PortfolioAnalysis]):
    name = "portfolio"
    schema = PortfolioAnalysis
    system_prompt = PORTFOLIO_SYSTEM_PROMPT
    temperature = 0.3
    max_tokens = 2000

    def _goal_lines(self, context: FinancialContext) -> List[str]:
        if not context.goals:
            return []
        lines = ["**Financial Goals:**"]
        for goal in context.goals:
            lines.append(f"- {goal.name}: {money(goal.target)} in {goal.horizon_months // 12} years")
        lines.append("")
        return lines

    def build_prompt(self, context: FinancialContext, question: str) -> str:
        user = context.user
        total = context.total_assets

        if total == 0:
            lines: List[str] = [
                f"**User Question:** {question}",
                "",
                "**Portfolio Information:**",
                "- Total Portfolio Value: $0",
                "- No assets found. User is starting from scratch.",
                f"- User Age: {user.age if user.age is not None else 'Not provided'}",
                f"- Risk Tolerance: {user.risk_tolerance.value}",
                "",
            ]
            lines.extend(self._goal_lines(context))
            lines.append(
                "Provide recommendations for starting a portfolio from zero. "
                + JSON_ONLY_INSTRUCTION
            )
            return "\n".join(lines)

        liquid = sum(a.value for a in context.assets if a.type in LIQUID_TYPES)
        illiquid = total - liquid

        lines = [
            f"**User Question:** {question}",
            "",
            "**Portfolio Information:**",
            f"- Total Portfolio Value: {money(total)}",
            f"- Liquid Assets: {money(liquid)} ({percent(liquid, total)})",
            f"- Illiquid Assets: {money(illiquid)} ({percent(illiquid, total)})",
            f"- User Age: {user.age if user.age is not None else 'Not provided'}",
            f"- Risk Tolerance: {user.risk_tolerance.value}",
            "",
            "**Asset Allocation by Type:**",
        ]
        for asset_type, value in context.assets_by_type().items():
            liquidity = "liquid" if asset_type in LIQUID_TYPES else "illiquid"
            lines.append(
                f"- {asset_type.value} ({liquidity}): {percent(value, total)} ({money(value)})"
            )
        lines.extend(["", "**Individual Assets:**"])
        for i, asset in enumerate(context.assets, start=1):
            liquidity = "Liquid" if asset.type in LIQUID_TYPES else "Illiquid"
            lines.append(
                f"{i}. {asset.name} ({asset.type.value}) [{liquidity}]: "
                f"{money(asset.value)} ({percent(asset.value, total)})"
            )
        lines.append("")
        lines.extend(self._goal_lines(context))
        lines.append(
            "Analyze this portfolio and provide optimization recommendations. "
            + JSON_ONLY_INSTRUCTION
        )
        return "\n".join(lines)
