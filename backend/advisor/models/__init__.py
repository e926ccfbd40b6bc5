"""Pydantic models for financial context, subscriptions and responses."""

from .context import FinancialContext
from .responses import AIResponse, HybridAdviceResponse, StreamChunk, ToolCall
from .subscription import (
    AIUsageLogEntry,
    ModelAccess,
    QuotaExceeded,
    SubscriptionTier,
    SubscriptionUsage,
)

__all__ = [
    "AIResponse",
    "AIUsageLogEntry",
    "FinancialContext",
    "HybridAdviceResponse",
    "ModelAccess",
    "QuotaExceeded",
    "StreamChunk",
    "SubscriptionTier",
    "SubscriptionUsage",
    "ToolCall",
]
