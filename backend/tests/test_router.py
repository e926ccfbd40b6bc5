"""
Unit tests for the complexity router.

Tests verify:
- Three or more debts always escalate
- Rule priority and the reason strings they produce
- Scenario counting
- Routing is deterministic
"""
import pytest

from advisor.services.ai.router import (
    FAST_ROUTE_REASON,
    ComplexitySignals,
    RouteDecision,
    count_scenarios,
    get_routing_reason,
    route_to_model,
    should_escalate,
)


def signals(message: str, debts: int = 0, assets: int = 0, context_tokens: int = 0) -> ComplexitySignals:
    return ComplexitySignals(
        message=message,
        message_length=len(message),
        debts_count=debts,
        assets_count=assets,
        context_tokens=context_tokens,
    )


class TestEscalation:
    """Escalation rules and reasons."""

    def test_simple_budget_question_stays_fast(self):
        s = signals("Help me with my budget")
        assert should_escalate(s) is False
        assert route_to_model(s) == RouteDecision.FAST
        assert get_routing_reason(s) == FAST_ROUTE_REASON

    @pytest.mark.parametrize("debts", [3, 4, 10])
    @pytest.mark.parametrize("message", ["hi", "", "what did I spend on coffee?"])
    def test_three_or_more_debts_always_escalate(self, debts, message):
        assert should_escalate(signals(message, debts=debts)) is True

    def test_complex_debt_reason_mentions_count(self):
        reason = get_routing_reason(signals("hello", debts=3))
        assert "3 debts" in reason
        assert "auto-escalated" in reason

    def test_multi_year_planning(self):
        s = signals("Create a 10-year retirement plan")
        assert route_to_model(s) == RouteDecision.TOP
        assert get_routing_reason(s) == "Multi-year planning detected"

    def test_multi_year_wins_over_debt_count(self):
        reason = get_routing_reason(signals("long-term plan please", debts=5))
        assert reason == "Multi-year planning detected"

    def test_invest_vs_payoff(self):
        s = signals("Should I invest or pay down my loan?")
        assert get_routing_reason(s) == "Invest vs. payoff analysis"

    def test_tax_strategy(self):
        assert get_routing_reason(signals("Is a Roth better for me?")) == "Tax strategy planning"

    def test_retirement(self):
        assert get_routing_reason(signals("When can I retire?")) == "Retirement planning"

    def test_portfolio_requires_assets(self):
        message = "How should I rebalance?"
        assert should_escalate(signals(message)) is False
        assert get_routing_reason(signals(message, assets=2)) == "Portfolio optimization"

    def test_complex_analysis_requires_products(self):
        message = "What is the optimal amount to save?"
        assert should_escalate(signals(message)) is False
        assert (
            get_routing_reason(signals(message, debts=1))
            == "Complex analysis with financial products"
        )

    def test_long_message_requires_products(self):
        message = "I would like some help " * 12
        assert len(message) > 220
        assert should_escalate(signals(message)) is False
        assert (
            get_routing_reason(signals(message, assets=1))
            == "Long detailed query with financial products"
        )

    def test_high_context(self):
        s = signals("hello", context_tokens=2001)
        assert get_routing_reason(s) == "High context complexity"
        assert should_escalate(signals("hello", context_tokens=2000)) is False


class TestScenarios:
    """Scenario marker counting."""

    def test_or_is_word_bounded(self):
        # "order" and "for" must not count as the word "or"
        assert count_scenarios("order food for the party") == 0

    def test_pairing_marker_counts_two(self):
        assert count_scenarios("rent or buy") == 2

    def test_multiple_options(self):
        assert count_scenarios("option 1 is renting, option 2 is buying") == 2

    def test_multi_scenario_reason(self):
        reason = get_routing_reason(signals("lease versus buy a car"))
        assert reason.startswith("Multi-scenario comparison")
        assert "scenarios" in reason


def test_routing_is_deterministic():
    s = signals("Compare paying my card vs. saving", debts=1, assets=1, context_tokens=150)
    decisions = {route_to_model(s) for _ in range(50)}
    reasons = {get_routing_reason(s) for _ in range(50)}
    assert len(decisions) == 1
    assert len(reasons) == 1
