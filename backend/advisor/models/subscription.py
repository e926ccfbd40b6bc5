"""
Subscription, quota and usage-log models.
"""
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ModelAccess(str, Enum):
    """Capability levels, ordered from cheapest to most capable."""

    FAST = "fast"
    REASONING = "reasoning"
    MATH = "math"
    CFO = "cfo"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class UsageSnapshot(BaseModel):
    """Per-model query counts for the current monthly period."""

    counts: Dict[ModelAccess, int] = Field(default_factory=dict)

    def used(self, model: ModelAccess) -> int:
        return self.counts.get(model, 0)


class PlanLimits(BaseModel):
    """Per-model monthly limits for a plan."""

    limits: Dict[ModelAccess, int] = Field(default_factory=dict)

    def limit(self, model: ModelAccess) -> int:
        return self.limits.get(model, 0)


class SubscriptionUsage(BaseModel):
    """Combined subscription + usage + plan read, one storage call."""

    subscription_id: str
    tier: SubscriptionTier
    usage: UsageSnapshot = Field(default_factory=UsageSnapshot)
    limits: PlanLimits = Field(default_factory=PlanLimits)

    def has_quota(self, model: ModelAccess) -> bool:
        return self.usage.used(model) < self.limits.limit(model)


class QuotaExceeded(BaseModel):
    """
    Returned (not raised) when no allowed model has quota left.

    The caller is expected to show an upgrade prompt when upgrade_required
    is set and next_tier is not None.
    """

    type: str = "quota_exceeded"
    model: ModelAccess
    remaining: int = 0
    used: int
    limit: int
    next_tier: Optional[SubscriptionTier] = None
    upgrade_required: bool = True


class AIUsageLogEntry(BaseModel):
    """Audit record written after a successful advice response."""

    user_id: str
    subscription_id: str
    query: str
    response: str
    model_used: ModelAccess
    model_name: str
    escalated: bool = False
    escalation_reason: Optional[str] = None
    orchestrator_used: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    tier_at_query: SubscriptionTier
