"""
Tax optimization orchestrator: Roth vs. traditional, savings strategies and
an optional multi-year projection.
"""
from typing import List

from advisor.models.context import AssetType, FinancialContext
from advisor.services.ai.orchestrators.base import (
    JSON_ONLY_INSTRUCTION,
    BaseOrchestrator,
    money,
)
from advisor.services.ai.schema import TaxAnalysis

# Annual dividend/interest yield assumed for invested assets
INVESTMENT_INCOME_YIELD = 0.02

TAX_SYSTEM_PROMPT = """You are a CFO-level tax optimization advisor helping the user reduce their tax burden.

Analysis framework:
1. Current position: estimate the marginal tax bracket
2. Roth vs. traditional: recommend the retirement account mix
3. Optimization: identify ways to lower taxable income
4. Multi-year view: project tax over the next five years
5. Implementation: concrete steps

Return a JSON object with exactly this structure:
```json
{
  "rothVsTraditional": {
    "recommendation": "roth | traditional | split",
    "reason": "Currently in the 22% bracket, expecting 12% in retirement",
    "currentBracket": "22%",
    "projectedRetirementBracket": "12%",
    "splitRatio": null
  },
  "strategies": [
    {"strategy": "Capture the full 401k match", "estimatedSavings": 1200, "complexity": "low | medium | high", "description": "Free money that also lowers taxable income"}
  ],
  "multiYearProjection": {
    "currentYearTax": 15000,
    "fiveYearProjectedTax": 78000,
    "recommendedActions": ["Raise 401k contributions"]
  },
  "summary": "Plain-language summary with concrete next steps"
}
```

Key principles:
- Roth when a higher bracket is expected in retirement; traditional when lower
- Employer match comes before the Roth vs. traditional decision
- Holding both account types gives flexibility later
- Use current-year federal brackets and the standard deduction; assume single filing unless told otherwise

Tone: professional, clear, actionable. Acknowledge complexity but simplify."""


class TaxOrchestrator(BaseOrchestrator[TaxAnalysis]):
    name = "tax"
    schema = TaxAnalysis
    system_prompt = TAX_SYSTEM_PROMPT
    temperature = 0.2
    max_tokens = 2000

    def build_prompt(self, context: FinancialContext, question: str) -> str:
        annual_income = context.gross_monthly_income * 12
        by_type = context.assets_by_type()
        invested = by_type.get(AssetType.EQUITY, 0.0) + by_type.get(AssetType.BOND, 0.0)
        mortgage_interest = sum(
            d.balance * (d.apr / 100.0)
            for d in context.debts
            if "mortgage" in d.name.lower() or "home" in d.name.lower()
        )

        lines: List[str] = [
            f"**User Question:** {question}",
            "",
            "**Tax-Relevant Information:**",
            f"- Estimated Annual W-2 Income: {money(annual_income)}",
            f"- Estimated Investment Income: {money(invested * INVESTMENT_INCOME_YIELD)} (dividends/interest)",
            f"- Monthly Surplus: {money(context.income.monthly_net)}",
            f"- Region: {context.user.region or context.user.country_code}",
            "- Filing Status: assume single (user should specify if married)",
            f"- Estimated Mortgage Interest Deduction: {money(mortgage_interest)}",
            "",
            "**Investment Assets by Type:**",
        ]
        if by_type:
            for asset_type, value in by_type.items():
                lines.append(f"- {asset_type.value}: {money(value)}")
        else:
            lines.append("- none recorded")

        lines.extend([
            "",
            "Analyze this tax situation and provide optimization strategies. "
            + JSON_ONLY_INSTRUCTION,
        ])
        return "\n".join(lines)
