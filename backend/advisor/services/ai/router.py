"""
Complexity router: decide whether a query stays on the fast model or is
escalated to the top-tier model.

Rules are evaluated in priority order and the first match wins. Both the
decision and the human-readable reason come from the same rule table, so they
can never disagree. Everything here is pure and deterministic.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from advisor.models.context import FinancialContext


class RouteDecision(str, Enum):
    FAST = "fast"
    TOP = "top"


class ComplexitySignals(BaseModel):
    """Inputs to the routing decision."""

    model_config = ConfigDict(frozen=True)

    message: str
    message_length: int = Field(0, ge=0)
    debts_count: int = Field(0, ge=0)
    assets_count: int = Field(0, ge=0)
    goals_count: int = Field(0, ge=0)
    context_tokens: int = Field(0, ge=0)

    @classmethod
    def from_context(
        cls, message: str, context: FinancialContext, context_tokens: int
    ) -> "ComplexitySignals":
        return cls(
            message=message,
            message_length=len(message),
            debts_count=len(context.debts),
            assets_count=len(context.assets),
            goals_count=len(context.goals),
            context_tokens=context_tokens,
        )


ESCALATION_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "multi_year": (
        "10 year", "10-year", "10year",
        "15 year", "15-year", "15year",
        "20 year", "20-year", "20year",
        "25 year", "25-year", "25year",
        "30 year", "30-year", "30year",
        "long term", "long-term",
        "decade",
    ),
    "invest_vs_payoff": (
        "invest or pay",
        "invest vs pay",
        "pay off or invest",
        "debt or invest",
        "investing vs debt",
    ),
    "tax_strategy": (
        "roth",
        "traditional ira",
        "tax bracket",
        "tax optimization",
        "tax strategy",
        "tax planning",
        "tax efficient",
    ),
    "retirement": (
        "retire",
        "retirement",
        "glidepath",
        "target date",
        "401k",
        "pension",
    ),
    "portfolio": (
        "portfolio",
        "asset allocation",
        "rebalance",
        "diversif",
        "risk tolerance",
        "modern portfolio",
    ),
    "complex": (
        "optimize",
        "optimal",
        "best strategy",
        "maximize",
        "minimize",
        "calculate",
    ),
}

SCENARIO_MARKERS: Tuple[str, ...] = (
    "option 1", "option 2", "option 3",
    "scenario 1", "scenario 2", "scenario 3",
    "first option", "second option", "third option",
    " or ", "versus", "vs.", "compared to",
)

# Any of these pairs two alternatives, so they imply at least two scenarios
PAIRING_MARKERS: Tuple[str, ...] = (" or ", "versus", "vs.")

MIN_SCENARIOS = 2
COMPLEX_DEBTS_THRESHOLD = 3
LONG_MESSAGE_THRESHOLD = 220
HIGH_CONTEXT_TOKENS = 2000

FAST_ROUTE_REASON = "Simple query - using fast model"


def contains_keywords(message: str, category: str) -> bool:
    lowered = message.lower() if isinstance(message, str) else ""
    return any(keyword in lowered for keyword in ESCALATION_KEYWORDS[category])


def count_scenarios(message: str) -> int:
    lowered = f" {message.lower()} " if isinstance(message, str) else ""
    count = sum(1 for marker in SCENARIO_MARKERS if marker in lowered)
    if count > 0 and any(marker in lowered for marker in PAIRING_MARKERS):
        count = max(count, MIN_SCENARIOS)
    return count


def _has_products(signals: ComplexitySignals) -> bool:
    return signals.debts_count > 0 or signals.assets_count > 0


@dataclass(frozen=True)
class EscalationRule:
    name: str
    matches: Callable[[ComplexitySignals], bool]
    reason: Callable[[ComplexitySignals], str]


ESCALATION_RULES: List[EscalationRule] = [
    EscalationRule(
        "multi_year",
        lambda s: contains_keywords(s.message, "multi_year"),
        lambda s: "Multi-year planning detected",
    ),
    EscalationRule(
        "complex_debt",
        lambda s: s.debts_count >= COMPLEX_DEBTS_THRESHOLD,
        lambda s: f"Complex debt situation ({s.debts_count} debts) - auto-escalated",
    ),
    EscalationRule(
        "invest_vs_payoff",
        lambda s: contains_keywords(s.message, "invest_vs_payoff"),
        lambda s: "Invest vs. payoff analysis",
    ),
    EscalationRule(
        "tax_strategy",
        lambda s: contains_keywords(s.message, "tax_strategy"),
        lambda s: "Tax strategy planning",
    ),
    EscalationRule(
        "retirement",
        lambda s: contains_keywords(s.message, "retirement"),
        lambda s: "Retirement planning",
    ),
    EscalationRule(
        "portfolio",
        lambda s: contains_keywords(s.message, "portfolio") and s.assets_count > 0,
        lambda s: "Portfolio optimization",
    ),
    EscalationRule(
        "multi_scenario",
        lambda s: count_scenarios(s.message) >= MIN_SCENARIOS,
        lambda s: f"Multi-scenario comparison ({count_scenarios(s.message)} scenarios)",
    ),
    EscalationRule(
        "complex_analysis",
        lambda s: contains_keywords(s.message, "complex") and _has_products(s),
        lambda s: "Complex analysis with financial products",
    ),
    EscalationRule(
        "long_detailed",
        lambda s: s.message_length > LONG_MESSAGE_THRESHOLD and _has_products(s),
        lambda s: "Long detailed query with financial products",
    ),
    EscalationRule(
        "high_context",
        lambda s: s.context_tokens > HIGH_CONTEXT_TOKENS,
        lambda s: "High context complexity",
    ),
]


def first_matching_rule(signals: ComplexitySignals) -> Optional[EscalationRule]:
    for rule in ESCALATION_RULES:
        if rule.matches(signals):
            return rule
    return None


def should_escalate(signals: ComplexitySignals) -> bool:
    return first_matching_rule(signals) is not None


def route_to_model(signals: ComplexitySignals) -> RouteDecision:
    return RouteDecision.TOP if should_escalate(signals) else RouteDecision.FAST


def get_routing_reason(signals: ComplexitySignals) -> str:
    """Reason for the routing decision, naming the rule that fired."""
    rule = first_matching_rule(signals)
    if rule is None:
        return FAST_ROUTE_REASON
    return rule.reason(signals)
