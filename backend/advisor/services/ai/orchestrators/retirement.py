"""
Retirement planning orchestrator: readiness, glidepath, income projection and
contribution strategy.
"""
from typing import List

from advisor.models.context import AssetType, FinancialContext
from advisor.services.ai.orchestrators.base import (
    JSON_ONLY_INSTRUCTION,
    BaseOrchestrator,
    money,
    percent,
)
from advisor.services.ai.schema import RetirementAnalysis

# Goals further out than this count as retirement goals
RETIREMENT_HORIZON_MONTHS = 120

RETIREMENT_SYSTEM_PROMPT = """You are a CFO-level retirement planning advisor.

Analysis framework:
1. Current position: retirement savings and asset allocation
2. Target income: usually 70-80% of current income
3. Glidepath: age-appropriate allocation
4. Contributions: 401k, IRA and Roth priorities
5. Readiness score: likelihood of reaching the goal

Return a JSON object with exactly this structure:
```json
{
  "readiness": {"score": 65, "status": "on_track | behind | ahead", "yearsToRetirement": 30, "monthlyGap": 800},
  "glidepath": {
    "current": {"stocks": 60, "bonds": 30, "cash": 10},
    "target": {"stocks": 80, "bonds": 15, "cash": 5},
    "reasoning": "Long horizon supports a higher equity share"
  },
  "incomeProjection": {
    "targetMonthlyIncome": 6000,
    "projectedMonthlyIncome": 5800,
    "sources": [{"name": "401k", "monthlyAmount": 4200}, {"name": "Social Security", "monthlyAmount": 1600}]
  },
  "contributionStrategy": {
    "monthlyTarget": 1500,
    "allocation": [{"account": "401k (to match)", "monthlyAmount": 500, "reason": "Captures the full employer match"}]
  },
  "summary": "Plain-language summary with concrete next steps"
}
```

Key principles:
- Rule of 110: stock share = 110 - age, adjusted for risk tolerance
- 4% rule for sustainable withdrawals
- Employer match first
- Roth for long horizons, traditional for near-term retirees
- Aim for 10-15x final salary saved; Social Security replaces roughly 40% of income

Tone: professional, clear, actionable. Explain trade-offs without jargon."""


class RetirementOrchestrator(BaseOrchestrator[RetirementAnalysis]):
    name = "retirement"
    schema = RetirementAnalysis
    system_prompt = RETIREMENT_SYSTEM_PROMPT
    temperature = 0.3
    max_tokens = 2500

    def build_prompt(self, context: FinancialContext, question: str) -> str:
        by_type = context.assets_by_type()
        stocks = by_type.get(AssetType.EQUITY, 0.0)
        bonds = by_type.get(AssetType.BOND, 0.0)
        cash = by_type.get(AssetType.CASH, 0.0)
        invested = stocks + bonds + cash
        user = context.user

        lines: List[str] = [
            f"**User Question:** {question}",
            "",
            "**Current Financial Situation:**",
            f"- Age: {user.age if user.age is not None else 'Not provided'}",
            f"- Monthly Income: {money(context.gross_monthly_income)}",
            f"- Monthly Expenses: {money(context.expenses.monthly)}",
            f"- Monthly Surplus: {money(context.income.monthly_net)}",
            f"- Risk Tolerance: {user.risk_tolerance.value}",
            "",
            f"**Current Retirement Savings: {money(stocks + bonds)}**",
            "",
        ]

        if invested > 0:
            lines.extend([
                "**Current Asset Allocation:**",
                f"- Stocks/Equity: {percent(stocks, invested)} ({money(stocks)})",
                f"- Bonds: {percent(bonds, invested)} ({money(bonds)})",
                f"- Cash: {percent(cash, invested)} ({money(cash)})",
                "",
            ])
        else:
            lines.extend([
                "**Current Asset Allocation:** No investment assets found. Starting from zero.",
                "",
            ])

        retirement_goals = [
            g for g in context.goals
            if "retire" in g.name.lower() or g.horizon_months > RETIREMENT_HORIZON_MONTHS
        ]
        if retirement_goals:
            lines.append("**Retirement Goals:**")
            for goal in retirement_goals:
                lines.append(
                    f"- {goal.name}: {money(goal.target)} in {goal.horizon_months // 12} years "
                    f"(current: {money(goal.current)})"
                )
            lines.append("")

        lines.append(
            "Analyze this retirement situation and provide a comprehensive strategy. "
            + JSON_ONLY_INSTRUCTION
        )
        return "\n".join(lines)
