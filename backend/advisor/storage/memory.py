"""
In-memory AdvisorStorage for tests and local runs.

Usage increments are serialized per (user, model) with an asyncio.Lock.
When a RedisUsageCounter is supplied, counters live in Redis instead and the
in-memory maps only hold subscriptions and domain records.
"""
import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from advisor.core.config import DEFAULT_PLAN_LIMITS
from advisor.models.subscription import (
    AIUsageLogEntry,
    ModelAccess,
    PlanLimits,
    SubscriptionTier,
    SubscriptionUsage,
    UsageSnapshot,
)
from advisor.storage.base import AdvisorStorage, Record
from advisor.storage.redis_usage import RedisUsageCounter


class InMemoryStorage(AdvisorStorage):
    def __init__(self, usage_counter: Optional[RedisUsageCounter] = None):
        self.profiles: Dict[str, Record] = {}
        self.expense_categories: Dict[str, List[Record]] = defaultdict(list)
        self.debts: Dict[str, List[Record]] = defaultdict(list)
        self.assets: Dict[str, List[Record]] = defaultdict(list)
        self.goals: Dict[str, List[Record]] = defaultdict(list)
        self.transactions: Dict[str, List[Record]] = defaultdict(list)
        self.users: Dict[str, Record] = {}
        self.subscriptions: Dict[str, Tuple[str, SubscriptionTier, PlanLimits]] = {}
        self.usage: Dict[Tuple[str, ModelAccess], int] = defaultdict(int)
        self.usage_logs: List[AIUsageLogEntry] = []
        self.usage_counter = usage_counter
        self._locks: Dict[Tuple[str, ModelAccess], asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------

    def add_subscription(
        self,
        user_id: str,
        tier: SubscriptionTier,
        subscription_id: Optional[str] = None,
        limits: Optional[Dict[ModelAccess, int]] = None,
        usage: Optional[Dict[ModelAccess, int]] = None,
    ) -> None:
        plan = PlanLimits(limits=dict(limits or DEFAULT_PLAN_LIMITS[tier]))
        self.subscriptions[user_id] = (subscription_id or f"sub_{user_id}", tier, plan)
        for model, count in (usage or {}).items():
            self.usage[(user_id, model)] = count

    def set_profile(self, user_id: str, monthly_income: Any, monthly_expenses: Any) -> None:
        self.profiles[user_id] = {
            "monthly_income": monthly_income,
            "monthly_expenses": monthly_expenses,
        }

    # ------------------------------------------------------------------
    # AdvisorStorage
    # ------------------------------------------------------------------

    async def get_user_financial_profile(self, user_id: str) -> Optional[Record]:
        return self.profiles.get(user_id)

    async def get_user_expense_categories(self, user_id: str) -> List[Record]:
        return list(self.expense_categories.get(user_id, []))

    async def get_user_debts(self, user_id: str) -> List[Record]:
        return list(self.debts.get(user_id, []))

    async def get_user_assets(self, user_id: str) -> List[Record]:
        return list(self.assets.get(user_id, []))

    async def get_financial_goals(self, user_id: str) -> List[Record]:
        return list(self.goals.get(user_id, []))

    async def get_transactions(self, user_id: str, limit: int) -> List[Record]:
        rows = sorted(
            self.transactions.get(user_id, []),
            key=lambda r: str(r.get("date", "")),
            reverse=True,
        )
        return rows[:limit]

    async def get_user(self, user_id: str) -> Optional[Record]:
        return self.users.get(user_id)

    async def get_user_subscription_with_usage(
        self, user_id: str
    ) -> Optional[SubscriptionUsage]:
        entry = self.subscriptions.get(user_id)
        if entry is None:
            return None
        subscription_id, tier, limits = entry
        if self.usage_counter is not None:
            usage = await self.usage_counter.get_usage(user_id)
        else:
            usage = UsageSnapshot(counts={
                model: count
                for (uid, model), count in self.usage.items()
                if uid == user_id
            })
        return SubscriptionUsage(
            subscription_id=subscription_id,
            tier=tier,
            usage=usage,
            limits=limits,
        )

    async def increment_usage_counters(
        self, user_id: str, subscription_id: str, model: ModelAccess
    ) -> None:
        if self.usage_counter is not None:
            await self.usage_counter.increment(user_id, model)
            return
        async with self._locks[(user_id, model)]:
            current = self.usage[(user_id, model)]
            # read-modify-write spans an await; the lock serializes it
            await asyncio.sleep(0)
            self.usage[(user_id, model)] = current + 1

    async def insert_ai_usage_log(self, entry: AIUsageLogEntry) -> None:
        self.usage_logs.append(entry)

    def use_usage_counter(self, counter: RedisUsageCounter) -> bool:
        self.usage_counter = counter
        return True
