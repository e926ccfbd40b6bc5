"""
Tier-aware routing: subscription access control and quota enforcement in
front of the hybrid advice service.

Tier access:
- free: fast only
- pro: fast (unlimited), reasoning, math
- enterprise: fast (unlimited), reasoning, math, cfo

The preferred model is picked from the message; when its quota is spent the
request cascades through the other allowed models, cheapest specialty model
first, with the fast model last. When nothing has quota left a QuotaExceeded
result is returned instead of raising.
"""
from contextlib import aclosing
from typing import AsyncIterator, Dict, List, Optional, Tuple, Union

from advisor.core.errors import SubscriptionNotFoundError
from advisor.core.logging import bind_request_context, get_logger
from advisor.core.metrics import (
    record_quota_exceeded,
    record_tier_downgrade,
    record_usage_tracking_failure,
)
from advisor.models.context import FinancialContext
from advisor.models.responses import HybridAdviceResponse, StreamChunk
from advisor.models.subscription import (
    AIUsageLogEntry,
    ModelAccess,
    PlanLimits,
    QuotaExceeded,
    SubscriptionTier,
    SubscriptionUsage,
    UsageSnapshot,
)
from advisor.services.ai.context_builder import (
    build_financial_context,
    estimate_context_tokens,
)
from advisor.services.ai.hybrid import (
    GenerateAdviceOptions,
    HybridAdviceService,
    describe_selection,
)
from advisor.services.ai.router import ComplexitySignals, should_escalate
from advisor.storage.base import AdvisorStorage

logger = get_logger(__name__)

TIER_ALLOWED_MODELS: Dict[SubscriptionTier, List[ModelAccess]] = {
    SubscriptionTier.FREE: [ModelAccess.FAST],
    SubscriptionTier.PRO: [ModelAccess.FAST, ModelAccess.REASONING, ModelAccess.MATH],
    SubscriptionTier.ENTERPRISE: [
        ModelAccess.FAST,
        ModelAccess.REASONING,
        ModelAccess.MATH,
        ModelAccess.CFO,
    ],
}

# Specialty models, cheapest first
COST_ORDER: List[ModelAccess] = [ModelAccess.MATH, ModelAccess.REASONING, ModelAccess.CFO]

NEXT_TIER: Dict[SubscriptionTier, Optional[SubscriptionTier]] = {
    SubscriptionTier.FREE: SubscriptionTier.PRO,
    SubscriptionTier.PRO: SubscriptionTier.ENTERPRISE,
    SubscriptionTier.ENTERPRISE: None,
}

CFO_KEYWORDS = (
    "portfolio",
    "multi-currency",
    "macroeconomic",
    "de-dollarization",
    "high stakes",
    "asset allocation",
    "tax optimization",
    "wealth management",
)

MATH_KEYWORDS = (
    "projection",
    "simulate",
    "compound interest",
    "retirement",
    "amortization",
    "inflation",
    "multi-year",
    "monte carlo",
    "calculate",
)

REASONING_KEYWORDS = (
    "strategy",
    "debt payoff",
    "investment",
    "risk",
    "crypto",
    "budget optimi",
    "should i",
    "analyze",
    "compare",
)

# Checked in order; the first allowed model whose keywords match is preferred
MODEL_KEYWORDS: List[Tuple[ModelAccess, Tuple[str, ...]]] = [
    (ModelAccess.CFO, CFO_KEYWORDS),
    (ModelAccess.MATH, MATH_KEYWORDS),
    (ModelAccess.REASONING, REASONING_KEYWORDS),
]

TierAwareResult = Union[HybridAdviceResponse, QuotaExceeded]


def resolve_allowed_models(tier: SubscriptionTier) -> List[ModelAccess]:
    return list(TIER_ALLOWED_MODELS.get(tier, [ModelAccess.FAST]))


def get_next_tier(tier: SubscriptionTier) -> Optional[SubscriptionTier]:
    return NEXT_TIER.get(tier)


def select_model_for_tier(signals: ComplexitySignals, tier: SubscriptionTier) -> ModelAccess:
    """Preferred model for the message, ignoring quotas. Always an allowed model."""
    if tier == SubscriptionTier.FREE:
        return ModelAccess.FAST

    allowed = resolve_allowed_models(tier)
    msg_lower = signals.message.lower()
    for model, keywords in MODEL_KEYWORDS:
        if model not in allowed:
            continue
        if any(keyword in msg_lower for keyword in keywords):
            return model
        if model == ModelAccess.REASONING and should_escalate(signals):
            return model
    return ModelAccess.FAST


def build_fallback_list(preferred: ModelAccess, tier: SubscriptionTier) -> List[ModelAccess]:
    """
    Order in which models are tried for quota.

    Preferred first, then the other allowed specialty models in ascending
    cost order, then the fast model when it was not the preferred one.
    """
    if tier == SubscriptionTier.FREE:
        return [ModelAccess.FAST]

    allowed = resolve_allowed_models(tier)
    fallback = [preferred]
    fallback.extend(m for m in COST_ORDER if m != preferred and m in allowed)
    if preferred != ModelAccess.FAST and ModelAccess.FAST in allowed:
        fallback.append(ModelAccess.FAST)
    return fallback


def find_available_model(
    fallback: List[ModelAccess], usage: UsageSnapshot, limits: PlanLimits
) -> Optional[ModelAccess]:
    for model in fallback:
        if usage.used(model) < limits.limit(model):
            return model
    return None


def downgrade_notice(
    from_model: ModelAccess, to_model: ModelAccess, tier: SubscriptionTier
) -> str:
    notice = (
        f"Note: Your {from_model.value} quota is exhausted. "
        f"Using {to_model.value} instead."
    )
    next_tier = get_next_tier(tier)
    if next_tier is not None:
        notice += f" Upgrade to {next_tier.value} for more {from_model.value} queries."
    return notice


class TierAwareRouter:
    """Entry point for advice requests: tier access, quotas, usage tracking."""

    def __init__(
        self,
        storage: AdvisorStorage,
        advice_service: HybridAdviceService,
        testing_mode: bool = False,
    ):
        self.storage = storage
        self.advice_service = advice_service
        self.testing_mode = testing_mode

    async def _load_subscription(self, user_id: str) -> SubscriptionUsage:
        subscription = await self.storage.get_user_subscription_with_usage(user_id)
        if subscription is None:
            raise SubscriptionNotFoundError(user_id)
        return subscription

    async def _plan(
        self, user_id: str, message: str
    ) -> Tuple[
        SubscriptionUsage,
        FinancialContext,
        ComplexitySignals,
        Union[ModelAccess, QuotaExceeded],
        Optional[ModelAccess],
    ]:
        """
        Subscription, context, signals, then the served model (or QuotaExceeded)
        and the model it was downgraded from, if any.
        """
        subscription = await self._load_subscription(user_id)
        tier = subscription.tier

        context = await build_financial_context(
            user_id,
            self.storage,
            fetch_timeout_seconds=self.advice_service.context_fetch_timeout_seconds,
        )
        signals = ComplexitySignals.from_context(
            message, context, estimate_context_tokens(context)
        )
        preferred = select_model_for_tier(signals, tier)

        if self.testing_mode:
            logger.warning(
                "quota_check_bypassed",
                tier=tier.value,
                model=preferred.value,
            )
            return subscription, context, signals, preferred, None

        fallback = build_fallback_list(preferred, tier)
        selected = find_available_model(fallback, subscription.usage, subscription.limits)

        if selected is None:
            record_quota_exceeded(tier.value, preferred.value)
            logger.info(
                "quota_exceeded",
                tier=tier.value,
                model=preferred.value,
                used=subscription.usage.used(preferred),
                limit=subscription.limits.limit(preferred),
            )
            quota = QuotaExceeded(
                model=preferred,
                remaining=0,
                used=subscription.usage.used(preferred),
                limit=subscription.limits.limit(preferred),
                next_tier=get_next_tier(tier),
                upgrade_required=True,
            )
            return subscription, context, signals, quota, None

        downgraded_from = preferred if selected != preferred else None
        if downgraded_from is not None:
            record_tier_downgrade(tier.value, preferred.value, selected.value)
            logger.info(
                "tier_downgrade",
                tier=tier.value,
                from_model=preferred.value,
                to_model=selected.value,
            )
        return subscription, context, signals, selected, downgraded_from

    async def _track_usage(self, subscription: SubscriptionUsage, entry: AIUsageLogEntry) -> None:
        """Audit log plus counter increment. Failures are logged, never raised."""
        try:
            await self.storage.insert_ai_usage_log(entry)
            await self.storage.increment_usage_counters(
                entry.user_id, subscription.subscription_id, entry.model_used
            )
        except Exception as exc:
            record_usage_tracking_failure()
            logger.error(
                "usage_tracking_failed",
                model=entry.model_used.value,
                subscription_id=subscription.subscription_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def route_with_tier_check(
        self,
        user_id: str,
        message: str,
        conversation_history: Optional[List[Dict[str, str]]] = None,
    ) -> TierAwareResult:
        """
        Answer a question within the user's plan.

        Returns:
            HybridAdviceResponse, or QuotaExceeded when no allowed model has
            quota left.

        Raises:
            SubscriptionNotFoundError: the user has no subscription
            AIClientError: the serving backend failed after retries
        """
        bind_request_context(user_id)
        message = message if isinstance(message, str) else ""

        subscription, context, _, selected, downgraded_from = await self._plan(user_id, message)
        if isinstance(selected, QuotaExceeded):
            return selected

        options = GenerateAdviceOptions(
            force_model=selected,
            preselected_context=context,
            skip_auto_escalation=True,
            conversation_history=conversation_history or [],
        )
        response = await self.advice_service.generate_advice(
            user_id, message, self.storage, options
        )

        if downgraded_from is not None:
            notice = downgrade_notice(downgraded_from, selected, subscription.tier)
            response = response.model_copy(update={
                "answer": f"{notice}\n\n{response.answer}",
                "tier_downgraded": True,
            })

        await self._track_usage(
            subscription,
            AIUsageLogEntry(
                user_id=user_id,
                subscription_id=subscription.subscription_id,
                query=message,
                response=response.answer,
                model_used=response.model_used,
                model_name=response.model_slug,
                escalated=response.escalated,
                escalation_reason=response.escalation_reason,
                orchestrator_used=response.orchestrator_used,
                tokens_in=response.tokens_in,
                tokens_out=response.tokens_out,
                total_tokens=response.tokens_in + response.tokens_out,
                cost_usd=response.cost,
                tier_at_query=subscription.tier,
            ),
        )
        return response

    async def stream_with_tier_check(
        self,
        user_id: str,
        message: str,
        conversation_history: Optional[List[Dict[str, str]]] = None,
    ) -> Union[AsyncIterator[StreamChunk], QuotaExceeded]:
        """
        Same selection as route_with_tier_check, streamed.

        Returns QuotaExceeded directly, otherwise an async iterator of chunks.
        Usage is tracked when the done chunk arrives, before it is yielded;
        a stream abandoned earlier is never counted.
        """
        bind_request_context(user_id)
        message = message if isinstance(message, str) else ""

        subscription, context, signals, selected, downgraded_from = await self._plan(
            user_id, message
        )
        if isinstance(selected, QuotaExceeded):
            return selected

        options = GenerateAdviceOptions(
            force_model=selected,
            preselected_context=context,
            skip_auto_escalation=True,
            conversation_history=conversation_history or [],
        )
        escalated, reason = describe_selection(selected, signals)
        return self._stream(
            user_id, message, subscription, options, escalated, reason, downgraded_from
        )

    async def _stream(
        self,
        user_id: str,
        message: str,
        subscription: SubscriptionUsage,
        options: GenerateAdviceOptions,
        escalated: bool,
        reason: Optional[str],
        downgraded_from: Optional[ModelAccess],
    ) -> AsyncIterator[StreamChunk]:
        served = options.force_model
        parts: List[str] = []

        if downgraded_from is not None:
            notice = downgrade_notice(downgraded_from, served, subscription.tier)
            yield StreamChunk(type="text", content=f"{notice}\n\n")

        stream = self.advice_service.stream_advice(user_id, message, self.storage, options)
        async with aclosing(stream) as chunks:
            async for chunk in chunks:
                if chunk.type == "text" and chunk.content:
                    parts.append(chunk.content)
                elif chunk.type == "done":
                    tokens_in = chunk.tokens_in or 0
                    tokens_out = chunk.tokens_out or 0
                    await self._track_usage(
                        subscription,
                        AIUsageLogEntry(
                            user_id=user_id,
                            subscription_id=subscription.subscription_id,
                            query=message,
                            response="".join(parts),
                            model_used=served,
                            model_name=chunk.model or "",
                            escalated=escalated,
                            escalation_reason=reason,
                            tokens_in=tokens_in,
                            tokens_out=tokens_out,
                            total_tokens=tokens_in + tokens_out,
                            cost_usd=chunk.cost or 0.0,
                            tier_at_query=subscription.tier,
                        ),
                    )
                yield chunk
                if chunk.is_terminal:
                    break
