"""
AI advice services.

Layers, bottom up:
- clients: one async HTTP client per model backend
- context_builder / router: cheap, deterministic inputs to routing
- orchestrators: structured domain analysis on a capable model
- hybrid: fast vs. escalated answering with a uniform response
- tier_router: subscription access, quotas and usage tracking
"""
from advisor.services.ai.factory import configure_observability, create_advisor
from advisor.services.ai.hybrid import GenerateAdviceOptions, HybridAdviceService
from advisor.services.ai.tier_router import TierAwareRouter

__all__ = [
    "GenerateAdviceOptions",
    "HybridAdviceService",
    "TierAwareRouter",
    "configure_observability",
    "create_advisor",
]
