"""
Domain orchestrators and the keyword dispatcher that picks one.
"""
from typing import Dict, Optional, Tuple

from advisor.models.context import FinancialContext
from advisor.services.ai.orchestrators.base import (
    BaseOrchestrator,
    OrchestratorResult,
    extract_json,
    parse_analysis,
)
from advisor.services.ai.orchestrators.debt import DebtOrchestrator
from advisor.services.ai.orchestrators.portfolio import PortfolioOrchestrator
from advisor.services.ai.orchestrators.retirement import RetirementOrchestrator
from advisor.services.ai.orchestrators.tax import TaxOrchestrator

# Checked in order; the first entry whose keyword matches (and whose data
# requirement holds) wins.
ORCHESTRATOR_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("debt", ("debt", "pay off", "snowball", "avalanche")),
    ("retirement", ("retire", "retirement", "glidepath", "401k", "ira")),
    ("tax", ("tax", "roth", "traditional", "bracket")),
    ("portfolio", ("portfolio", "asset allocation", "rebalance", "diversif")),
)


def _has_required_data(name: str, context: FinancialContext) -> bool:
    if name == "debt":
        return len(context.debts) > 0
    if name == "portfolio":
        return len(context.assets) > 0
    return True


def detect_orchestrator(message: str, context: FinancialContext) -> Optional[str]:
    """Name of the orchestrator that should handle the message, or None."""
    msg_lower = (message or "").lower()
    for name, keywords in ORCHESTRATOR_KEYWORDS:
        if not _has_required_data(name, context):
            continue
        if any(keyword in msg_lower for keyword in keywords):
            return name
    return None


def build_orchestrators() -> Dict[str, BaseOrchestrator]:
    return {
        "debt": DebtOrchestrator(),
        "retirement": RetirementOrchestrator(),
        "tax": TaxOrchestrator(),
        "portfolio": PortfolioOrchestrator(),
    }


__all__ = [
    "BaseOrchestrator",
    "DebtOrchestrator",
    "ORCHESTRATOR_KEYWORDS",
    "OrchestratorResult",
    "PortfolioOrchestrator",
    "RetirementOrchestrator",
    "TaxOrchestrator",
    "build_orchestrators",
    "detect_orchestrator",
    "extract_json",
    "parse_analysis",
]
