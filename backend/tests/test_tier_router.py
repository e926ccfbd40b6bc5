"""
Unit tests for tier-aware routing.

Tests verify:
- Allowed models and preferred-model selection per tier
- Fallback list ordering (fast model last and once)
- quota_exceeded results with upgrade metadata
- Downgrade notices and usage tracking of the served model
- Testing mode and best-effort usage tracking
- Streaming only counts usage once the stream completes

These tests use in-memory stubs only and do NOT perform real HTTP calls.
"""
from typing import List

import pytest
from prometheus_client import REGISTRY

from advisor.core.config import UNLIMITED
from advisor.core.errors import SubscriptionNotFoundError
from advisor.models.responses import AIResponse, HybridAdviceResponse, StreamChunk
from advisor.models.subscription import (
    ModelAccess,
    PlanLimits,
    QuotaExceeded,
    SubscriptionTier,
    UsageSnapshot,
)
from advisor.services.ai.hybrid import HybridAdviceService
from advisor.services.ai.router import ComplexitySignals
from advisor.services.ai.tier_router import (
    TierAwareRouter,
    build_fallback_list,
    downgrade_notice,
    find_available_model,
    get_next_tier,
    resolve_allowed_models,
    select_model_for_tier,
)
from advisor.storage.memory import InMemoryStorage

USER = "user_1"


class DummyModelClient:
    """Stub model client that records calls and returns a canned answer."""

    def __init__(self, model: str, text: str = "Here is my advice."):
        self.model = model
        self.text = text
        self.calls: List = []

    async def chat(self, options):
        self.calls.append(options)
        return AIResponse(
            text=self.text,
            tokens_in=100,
            tokens_out=50,
            cost=0.002,
            model=self.model,
        )

    async def chat_stream(self, options):
        self.calls.append(options)
        for part in ("Here is ", "my advice."):
            yield StreamChunk(type="text", content=part)
        yield StreamChunk(type="done", tokens_in=100, tokens_out=50, cost=0.002, model=self.model)


class FailingLogStorage(InMemoryStorage):
    async def insert_ai_usage_log(self, entry):
        raise RuntimeError("audit table unavailable")


def make_clients():
    return {
        ModelAccess.FAST: DummyModelClient("llama-fast"),
        ModelAccess.REASONING: DummyModelClient("claude-sonnet"),
        ModelAccess.MATH: DummyModelClient("gpt-5"),
        ModelAccess.CFO: DummyModelClient("claude-opus"),
    }


def make_router(storage, testing_mode: bool = False):
    clients = make_clients()
    service = HybridAdviceService(clients, top_model=ModelAccess.CFO)
    return TierAwareRouter(storage, service, testing_mode=testing_mode), clients


def make_storage(tier: SubscriptionTier, usage=None, storage_cls=InMemoryStorage):
    storage = storage_cls()
    storage.add_subscription(USER, tier, usage=usage)
    storage.set_profile(USER, 6000, 4000)
    return storage


def signals(message: str, debts: int = 0) -> ComplexitySignals:
    return ComplexitySignals(message=message, message_length=len(message), debts_count=debts)


def sample_value(name: str, labels=None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestModelSelection:
    """Allowed models and preferred-model selection."""

    def test_allowed_models(self):
        assert resolve_allowed_models(SubscriptionTier.FREE) == [ModelAccess.FAST]
        assert resolve_allowed_models(SubscriptionTier.PRO) == [
            ModelAccess.FAST,
            ModelAccess.REASONING,
            ModelAccess.MATH,
        ]
        assert ModelAccess.CFO in resolve_allowed_models(SubscriptionTier.ENTERPRISE)

    def test_free_tier_always_fast(self):
        s = signals("Full portfolio analysis and asset allocation please", debts=5)
        assert select_model_for_tier(s, SubscriptionTier.FREE) == ModelAccess.FAST

    def test_enterprise_cfo_query(self):
        s = signals("Review my portfolio")
        assert select_model_for_tier(s, SubscriptionTier.ENTERPRISE) == ModelAccess.CFO

    def test_pro_never_gets_cfo(self):
        s = signals("Review my portfolio")
        assert select_model_for_tier(s, SubscriptionTier.PRO) in resolve_allowed_models(
            SubscriptionTier.PRO
        )

    def test_math_query(self):
        s = signals("Calculate compound interest on 10k")
        assert select_model_for_tier(s, SubscriptionTier.PRO) == ModelAccess.MATH

    def test_reasoning_query(self):
        s = signals("Should I refinance my car loan?")
        assert select_model_for_tier(s, SubscriptionTier.PRO) == ModelAccess.REASONING

    def test_router_escalation_picks_reasoning(self):
        s = signals("hello", debts=3)
        assert select_model_for_tier(s, SubscriptionTier.ENTERPRISE) == ModelAccess.REASONING

    def test_simple_query_is_fast(self):
        s = signals("What did I spend on groceries?")
        assert select_model_for_tier(s, SubscriptionTier.ENTERPRISE) == ModelAccess.FAST

    def test_next_tier(self):
        assert get_next_tier(SubscriptionTier.FREE) == SubscriptionTier.PRO
        assert get_next_tier(SubscriptionTier.PRO) == SubscriptionTier.ENTERPRISE
        assert get_next_tier(SubscriptionTier.ENTERPRISE) is None


class TestFallbackList:
    """Fallback cascade ordering."""

    def test_free_tier(self):
        assert build_fallback_list(ModelAccess.FAST, SubscriptionTier.FREE) == [ModelAccess.FAST]

    def test_pro_reasoning(self):
        assert build_fallback_list(ModelAccess.REASONING, SubscriptionTier.PRO) == [
            ModelAccess.REASONING,
            ModelAccess.MATH,
            ModelAccess.FAST,
        ]

    def test_enterprise_cfo(self):
        assert build_fallback_list(ModelAccess.CFO, SubscriptionTier.ENTERPRISE) == [
            ModelAccess.CFO,
            ModelAccess.MATH,
            ModelAccess.REASONING,
            ModelAccess.FAST,
        ]

    @pytest.mark.parametrize("tier", [SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE])
    def test_fast_is_last_and_unique(self, tier):
        for preferred in resolve_allowed_models(tier):
            fallback = build_fallback_list(preferred, tier)
            assert fallback[0] == preferred
            assert fallback.count(ModelAccess.FAST) == 1
            assert len(fallback) == len(set(fallback))
            assert set(fallback) <= set(resolve_allowed_models(tier))
            if preferred != ModelAccess.FAST:
                assert fallback[-1] == ModelAccess.FAST

    def test_find_available_model(self):
        usage = UsageSnapshot(counts={ModelAccess.REASONING: 25, ModelAccess.MATH: 1})
        limits = PlanLimits(limits={ModelAccess.REASONING: 25, ModelAccess.MATH: 5})
        fallback = [ModelAccess.REASONING, ModelAccess.MATH, ModelAccess.FAST]
        assert find_available_model(fallback, usage, limits) == ModelAccess.MATH

    def test_preferred_with_quota_is_chosen(self):
        usage = UsageSnapshot(counts={ModelAccess.CFO: 3})
        limits = PlanLimits(limits={ModelAccess.CFO: 20, ModelAccess.FAST: UNLIMITED})
        fallback = build_fallback_list(ModelAccess.CFO, SubscriptionTier.ENTERPRISE)
        assert find_available_model(fallback, usage, limits) == ModelAccess.CFO

    def test_downgrade_notice(self):
        notice = downgrade_notice(ModelAccess.REASONING, ModelAccess.MATH, SubscriptionTier.PRO)
        assert notice == (
            "Note: Your reasoning quota is exhausted. Using math instead. "
            "Upgrade to enterprise for more reasoning queries."
        )
        top = downgrade_notice(ModelAccess.CFO, ModelAccess.FAST, SubscriptionTier.ENTERPRISE)
        assert "Upgrade" not in top


class TestRouteWithTierCheck:
    """End-to-end tier routing over in-memory storage."""

    @pytest.mark.asyncio
    async def test_missing_subscription_raises(self):
        router, _ = make_router(InMemoryStorage())
        with pytest.raises(SubscriptionNotFoundError):
            await router.route_with_tier_check("nobody", "hi")

    @pytest.mark.asyncio
    async def test_free_tier_quota_exceeded(self):
        storage = make_storage(SubscriptionTier.FREE, usage={ModelAccess.FAST: 50})
        router, clients = make_router(storage)

        result = await router.route_with_tier_check(USER, "Help me with my budget")

        assert isinstance(result, QuotaExceeded)
        assert result.type == "quota_exceeded"
        assert result.model == ModelAccess.FAST
        assert result.used == 50
        assert result.limit == 50
        assert result.remaining == 0
        assert result.upgrade_required is True
        assert result.next_tier == SubscriptionTier.PRO
        assert clients[ModelAccess.FAST].calls == []
        assert storage.usage_logs == []

    @pytest.mark.asyncio
    async def test_enterprise_quota_exceeded_has_no_next_tier(self):
        usage = {
            ModelAccess.FAST: UNLIMITED,
            ModelAccess.REASONING: 60,
            ModelAccess.MATH: 10,
            ModelAccess.CFO: 20,
        }
        storage = make_storage(SubscriptionTier.ENTERPRISE, usage=usage)
        router, _ = make_router(storage)

        result = await router.route_with_tier_check(USER, "Review my portfolio")

        assert isinstance(result, QuotaExceeded)
        assert result.model == ModelAccess.CFO
        assert result.next_tier is None
        assert result.upgrade_required is True

    @pytest.mark.asyncio
    async def test_preferred_model_served_and_counted(self):
        storage = make_storage(SubscriptionTier.PRO)
        router, clients = make_router(storage)

        result = await router.route_with_tier_check(USER, "Should I refinance my car loan?")

        assert isinstance(result, HybridAdviceResponse)
        assert result.model_used == ModelAccess.REASONING
        assert result.model_slug == "claude-sonnet"
        assert result.tier_downgraded is False
        assert result.escalated is True
        assert result.answer == "Here is my advice."
        assert len(clients[ModelAccess.REASONING].calls) == 1
        assert storage.usage[(USER, ModelAccess.REASONING)] == 1

        entry = storage.usage_logs[0]
        assert entry.model_used == ModelAccess.REASONING
        assert entry.model_name == "claude-sonnet"
        assert entry.total_tokens == 150
        assert entry.tier_at_query == SubscriptionTier.PRO

    @pytest.mark.asyncio
    async def test_downgrade_prepends_notice(self):
        storage = make_storage(SubscriptionTier.PRO, usage={ModelAccess.REASONING: 25})
        router, clients = make_router(storage)
        before = sample_value(
            "advisor_tier_downgrades_total",
            {"tier": "pro", "from_model": "reasoning", "to_model": "math"},
        )

        result = await router.route_with_tier_check(USER, "Should I refinance my car loan?")

        assert result.model_used == ModelAccess.MATH
        assert result.tier_downgraded is True
        assert result.answer.startswith(
            "Note: Your reasoning quota is exhausted. Using math instead. "
            "Upgrade to enterprise for more reasoning queries.\n\n"
        )
        assert result.answer.endswith("Here is my advice.")
        assert clients[ModelAccess.REASONING].calls == []
        assert storage.usage[(USER, ModelAccess.MATH)] == 1
        assert storage.usage[(USER, ModelAccess.REASONING)] == 25
        after = sample_value(
            "advisor_tier_downgrades_total",
            {"tier": "pro", "from_model": "reasoning", "to_model": "math"},
        )
        assert after == before + 1

    @pytest.mark.asyncio
    async def test_specialty_models_exhausted_falls_back_to_fast(self):
        usage = {ModelAccess.REASONING: 25, ModelAccess.MATH: 5}
        storage = make_storage(SubscriptionTier.PRO, usage=usage)
        router, clients = make_router(storage)

        result = await router.route_with_tier_check(USER, "Should I refinance my car loan?")

        assert result.model_used == ModelAccess.FAST
        assert result.escalated is False
        assert result.tier_downgraded is True
        assert len(clients[ModelAccess.FAST].calls) == 1

    @pytest.mark.asyncio
    async def test_testing_mode_bypasses_quota(self):
        storage = make_storage(SubscriptionTier.FREE, usage={ModelAccess.FAST: 50})
        router, clients = make_router(storage, testing_mode=True)

        result = await router.route_with_tier_check(USER, "Help me with my budget")

        assert isinstance(result, HybridAdviceResponse)
        assert result.model_used == ModelAccess.FAST
        assert result.tier_downgraded is False
        assert len(clients[ModelAccess.FAST].calls) == 1

    @pytest.mark.asyncio
    async def test_usage_tracking_failure_is_swallowed(self):
        storage = make_storage(SubscriptionTier.FREE, storage_cls=FailingLogStorage)
        router, _ = make_router(storage)
        before = sample_value("advisor_usage_tracking_failures_total")

        result = await router.route_with_tier_check(USER, "Help me with my budget")

        assert isinstance(result, HybridAdviceResponse)
        assert result.answer == "Here is my advice."
        assert sample_value("advisor_usage_tracking_failures_total") == before + 1

    @pytest.mark.asyncio
    async def test_conversation_history_forwarded(self):
        storage = make_storage(SubscriptionTier.FREE)
        router, clients = make_router(storage)
        history = [
            {"role": "user", "content": f"question {i}"} if i % 2 == 0
            else {"role": "assistant", "content": f"answer {i}"}
            for i in range(14)
        ]

        await router.route_with_tier_check(USER, "And groceries?", conversation_history=history)

        sent = clients[ModelAccess.FAST].calls[0].messages
        assert len(sent) == 11
        assert sent[0]["content"] == "question 4"
        assert sent[-1] == {"role": "user", "content": "And groceries?"}


class TestStreamWithTierCheck:
    """Streaming through the tier router."""

    @pytest.mark.asyncio
    async def test_completed_stream_counts_usage(self):
        storage = make_storage(SubscriptionTier.FREE)
        router, _ = make_router(storage)

        stream = await router.stream_with_tier_check(USER, "Help me with my budget")
        chunks = [chunk async for chunk in stream]

        assert [c.type for c in chunks] == ["text", "text", "done"]
        assert storage.usage[(USER, ModelAccess.FAST)] == 1
        assert storage.usage_logs[0].response == "Here is my advice."
        assert storage.usage_logs[0].model_name == "llama-fast"

    @pytest.mark.asyncio
    async def test_abandoned_stream_is_not_counted(self):
        storage = make_storage(SubscriptionTier.FREE)
        router, _ = make_router(storage)

        stream = await router.stream_with_tier_check(USER, "Help me with my budget")
        first = await stream.__anext__()
        await stream.aclose()

        assert first.type == "text"
        assert storage.usage[(USER, ModelAccess.FAST)] == 0
        assert storage.usage_logs == []

    @pytest.mark.asyncio
    async def test_stream_quota_exceeded(self):
        storage = make_storage(SubscriptionTier.FREE, usage={ModelAccess.FAST: 50})
        router, _ = make_router(storage)

        result = await router.stream_with_tier_check(USER, "Help me with my budget")

        assert isinstance(result, QuotaExceeded)
        assert result.next_tier == SubscriptionTier.PRO

    @pytest.mark.asyncio
    async def test_stream_downgrade_notice_comes_first(self):
        storage = make_storage(SubscriptionTier.PRO, usage={ModelAccess.REASONING: 25})
        router, _ = make_router(storage)

        stream = await router.stream_with_tier_check(USER, "Should I refinance my car loan?")
        chunks = [chunk async for chunk in stream]

        assert chunks[0].content.startswith("Note: Your reasoning quota is exhausted.")
        assert chunks[-1].type == "done"
        assert storage.usage[(USER, ModelAccess.MATH)] == 1
