"""
Debt payoff orchestrator.

Requires at least one debt. Asks for a payoff strategy, an ordered payoff
plan and, when relevant, an invest-vs-payoff comparison.
"""
from typing import List

from advisor.core.errors import OrchestratorNotApplicableError
from advisor.models.context import FinancialContext
from advisor.services.ai.orchestrators.base import (
    JSON_ONLY_INSTRUCTION,
    BaseOrchestrator,
    cash_savings,
    money,
)
from advisor.services.ai.schema import DebtAnalysis

DEBT_SYSTEM_PROMPT = """You are a CFO-level debt optimization advisor helping the user become debt-free.

Analysis framework:
1. Debt inventory: balances, APRs, minimum payments
2. Cash flow: monthly surplus available for payoff
3. Strategy comparison: snowball (smallest balance first), avalanche (highest APR first), or a hybrid
4. Invest vs. payoff: compare expected returns with interest saved when there is investable income
5. Timeline: months to debt-free under the chosen strategy

Return a JSON object with exactly this structure:
```json
{
  "strategy": {
    "type": "snowball | avalanche | hybrid | invest_and_payoff",
    "reason": "Why this strategy fits",
    "projectedMonthsToDebtFree": 36,
    "totalInterestPaid": 5420.5
  },
  "payoffOrder": [
    {"debtName": "Credit Card A", "balance": 5000, "apr": 18.99, "payoffMonth": 12, "monthlyPayment": 450}
  ],
  "investVsPayoff": {
    "investReturns": 8500,
    "interestSaved": 6200,
    "recommendation": "invest | payoff | split",
    "splitRatio": null
  },
  "summary": "Plain-language summary with concrete next steps"
}
```

Key principles:
- Debt above 7% APR almost always beats investing
- Debt below 4% APR may justify investing instead
- An emergency fund comes before aggressive payoff
- Capture any employer retirement match first
- Snowball wins can matter for motivation

Tone: professional, clear, actionable. Explain trade-offs without jargon."""


class DebtOrchestrator(BaseOrchestrator[DebtAnalysis]):
    name = "debt"
    schema = DebtAnalysis
    system_prompt = DEBT_SYSTEM_PROMPT
    temperature = 0.3
    max_tokens = 2000

    def check_applicable(self, context: FinancialContext) -> None:
        if not context.debts:
            raise OrchestratorNotApplicableError(self.name, "No debts found in user context")

    def build_prompt(self, context: FinancialContext, question: str) -> str:
        surplus = context.income.monthly_net
        current_payments = sum(d.monthly_payment for d in context.debts)
        capacity = surplus - current_payments

        lines: List[str] = [
            f"**User Question:** {question}",
            "",
            "**Financial Situation:**",
            f"- Monthly Income: {money(context.gross_monthly_income)}",
            f"- Monthly Expenses: {money(context.expenses.monthly)}",
            f"- Monthly Surplus: {money(surplus)}",
            f"- Total Cash/Savings: {money(cash_savings(context))}",
            "",
            f"**Debts ({len(context.debts)} total):**",
        ]
        for i, debt in enumerate(context.debts, start=1):
            lines.extend([
                f"{i}. **{debt.name}**",
                f"   - Balance: {money(debt.balance)}",
                f"   - APR: {debt.apr:g}%",
                f"   - Minimum Payment: {money(debt.min)}",
                f"   - Current Monthly Payment: {money(debt.monthly_payment)}",
            ])
        lines.extend(["", f"**Additional Debt Payoff Capacity:** {money(capacity)}/month", ""])

        if context.goals:
            lines.append("**Active Goals:**")
            for goal in context.goals:
                lines.append(
                    f"- {goal.name}: {money(goal.target)} (current: {money(goal.current)})"
                )
            lines.append("")

        lines.append(
            "Analyze this debt situation and provide a comprehensive payoff strategy. "
            + JSON_ONLY_INSTRUCTION
        )
        return "\n".join(lines)
