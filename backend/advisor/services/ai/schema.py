"""
Pydantic models for domain orchestrator outputs.

Models are asked to answer in camelCase JSON; fields are snake_case in Python
with camelCase aliases. Validation is strict (no string-to-number coercion)
and unknown extra keys are kept, so a valid payload dumps back unchanged via
analysis_to_dict().
"""
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class AnalysisModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        strict=True,
    )


class SplitRatio(AnalysisModel):
    invest: float = Field(..., ge=0.0, le=1.0)
    payoff: float = Field(..., ge=0.0, le=1.0)


# ============================================================================
# DEBT
# ============================================================================

class DebtStrategy(AnalysisModel):
    type: Literal["snowball", "avalanche", "hybrid", "invest_and_payoff"]
    reason: str = Field(..., min_length=10)
    projected_months_to_debt_free: float = Field(..., ge=0, le=600)
    total_interest_paid: float = Field(..., ge=0)


class PayoffStep(AnalysisModel):
    debt_name: str
    balance: float = Field(..., ge=0)
    apr: float = Field(..., ge=0, le=100)
    payoff_month: int = Field(..., ge=1)
    monthly_payment: float = Field(..., ge=0)


class InvestVsPayoff(AnalysisModel):
    invest_returns: float
    interest_saved: float
    recommendation: Literal["invest", "payoff", "split"]
    split_ratio: Optional[SplitRatio] = None


class DebtAnalysis(AnalysisModel):
    """
    {
      "strategy": {"type": "avalanche", "reason": "...",
                   "projectedMonthsToDebtFree": 28, "totalInterestPaid": 3120},
      "payoffOrder": [{"debtName": "...", "balance": 5000, "apr": 24.99,
                       "payoffMonth": 9, "monthlyPayment": 600}],
      "investVsPayoff": {...},            (optional)
      "summary": "at least 50 characters"
    }
    """

    strategy: DebtStrategy
    payoff_order: List[PayoffStep]
    invest_vs_payoff: Optional[InvestVsPayoff] = None
    summary: str = Field(..., min_length=50)


# ============================================================================
# TAX
# ============================================================================

class RothSplitRatio(AnalysisModel):
    roth: float = Field(..., ge=0.0, le=1.0)
    traditional: float = Field(..., ge=0.0, le=1.0)


class RothVsTraditional(AnalysisModel):
    recommendation: Literal["roth", "traditional", "split"]
    reason: str = Field(..., min_length=20)
    current_bracket: str
    projected_retirement_bracket: str
    split_ratio: Optional[RothSplitRatio] = None


class TaxStrategyItem(AnalysisModel):
    strategy: str
    estimated_savings: float = Field(..., ge=0)
    complexity: Literal["low", "medium", "high"]
    description: str = Field(..., min_length=10)


class MultiYearProjection(AnalysisModel):
    current_year_tax: float = Field(..., ge=0)
    five_year_projected_tax: float = Field(..., ge=0)
    recommended_actions: List[str]


class TaxAnalysis(AnalysisModel):
    roth_vs_traditional: RothVsTraditional
    strategies: List[TaxStrategyItem]
    multi_year_projection: Optional[MultiYearProjection] = None
    summary: str = Field(..., min_length=50)


# ============================================================================
# RETIREMENT
# ============================================================================

class Readiness(AnalysisModel):
    score: float = Field(..., ge=0, le=100)
    status: Literal["on_track", "behind", "ahead"]
    years_to_retirement: float = Field(..., ge=0, le=100)
    monthly_gap: float


class AllocationMix(AnalysisModel):
    stocks: float = Field(..., ge=0, le=100)
    bonds: float = Field(..., ge=0, le=100)
    cash: float = Field(..., ge=0, le=100)


class Glidepath(AnalysisModel):
    current: AllocationMix
    target: AllocationMix
    reasoning: str = Field(..., min_length=20)


class IncomeSourceProjection(AnalysisModel):
    name: str
    monthly_amount: float = Field(..., ge=0)


class IncomeProjection(AnalysisModel):
    target_monthly_income: float = Field(..., ge=0)
    projected_monthly_income: float = Field(..., ge=0)
    sources: List[IncomeSourceProjection]


class ContributionAllocation(AnalysisModel):
    account: str
    monthly_amount: float = Field(..., ge=0)
    reason: str = Field(..., min_length=10)


class ContributionStrategy(AnalysisModel):
    monthly_target: float = Field(..., ge=0)
    allocation: List[ContributionAllocation]


class RetirementAnalysis(AnalysisModel):
    readiness: Readiness
    glidepath: Glidepath
    income_projection: IncomeProjection
    contribution_strategy: ContributionStrategy
    summary: str = Field(..., min_length=50)


# ============================================================================
# PORTFOLIO
# ============================================================================

class PortfolioHealth(AnalysisModel):
    diversification_score: float = Field(..., ge=0, le=100)
    risk_score: float = Field(..., ge=0, le=100)
    expected_return: float
    status: Literal["well_diversified", "concentrated", "needs_rebalancing"]


class RebalancingStep(AnalysisModel):
    action: Literal["buy", "sell"]
    asset: str
    amount: float = Field(..., ge=0)
    reason: str = Field(..., min_length=10)


class PortfolioAllocation(AnalysisModel):
    current: Dict[str, float]
    target: Dict[str, float]
    rebalancing_needed: bool
    rebalancing_steps: Optional[List[RebalancingStep]] = None


class PortfolioRisk(AnalysisModel):
    current_risk: Literal["low", "medium", "high"]
    appropriate_for_goals: bool
    recommendations: List[str]


class PortfolioAnalysis(AnalysisModel):
    health: PortfolioHealth
    allocation: PortfolioAllocation
    risk: PortfolioRisk
    summary: str = Field(..., min_length=50)


# ============================================================================
# VALIDATION
# ============================================================================

class SchemaValidationError(Exception):
    """Raised when model output cannot be extracted or fails schema validation."""

    def __init__(self, agent: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.agent = agent
        self.raw_output = raw_output


AnalysisT = TypeVar("AnalysisT", bound=AnalysisModel)


def validate_analysis_payload(
    agent: str,
    schema: Type[AnalysisT],
    payload: Any,
    raw_output: Optional[str] = None,
) -> AnalysisT:
    """
    Validate a parsed JSON payload against an analysis schema.

    Raises:
        SchemaValidationError if validation fails.
    """
    if not isinstance(payload, dict):
        raise SchemaValidationError(
            agent=agent,
            message=f"{agent} output must be a JSON object",
            raw_output=raw_output,
        )
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise SchemaValidationError(
            agent=agent,
            message=f"Invalid {agent} output: {exc.error_count()} validation error(s)",
            raw_output=raw_output,
        ) from exc


def analysis_to_dict(analysis: AnalysisModel) -> Dict[str, Any]:
    """Dump with the camelCase wire names, keeping only what the model sent."""
    return analysis.model_dump(by_alias=True, exclude_unset=True, mode="json")
