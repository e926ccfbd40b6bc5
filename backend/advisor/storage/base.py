"""
Storage interface consumed by the advice pipeline.

Domain-entity persistence lives outside this package. Implementations return
plain records (mappings, as a database driver would) and the context builder
does the parsing, so loosely typed sources like numeric strings from SQL
DECIMAL columns are tolerated.
"""
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional

from advisor.models.subscription import AIUsageLogEntry, ModelAccess, SubscriptionUsage
from advisor.storage.redis_usage import RedisUsageCounter

Record = Mapping[str, Any]


class AdvisorStorage(ABC):
    """Async storage operations required by context building and quota tracking."""

    @abstractmethod
    async def get_user_financial_profile(self, user_id: str) -> Optional[Record]:
        """Profile with monthly_income and monthly_expenses."""

    @abstractmethod
    async def get_user_expense_categories(self, user_id: str) -> List[Record]:
        """Records with category and monthly_amount."""

    @abstractmethod
    async def get_user_debts(self, user_id: str) -> List[Record]:
        """Records with name, balance, interest_rate, minimum_payment, monthly_payment."""

    @abstractmethod
    async def get_user_assets(self, user_id: str) -> List[Record]:
        """Records with name, value, type."""

    @abstractmethod
    async def get_financial_goals(self, user_id: str) -> List[Record]:
        """Records with name, target_amount, current_amount, target_date."""

    @abstractmethod
    async def get_transactions(self, user_id: str, limit: int) -> List[Record]:
        """Most recent transactions first: date, description, amount, category, type."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[Record]:
        """User record: country_code, region, age, risk_tolerance."""

    @abstractmethod
    async def get_user_subscription_with_usage(
        self, user_id: str
    ) -> Optional[SubscriptionUsage]:
        """Subscription, current-period usage and plan limits in one read."""

    @abstractmethod
    async def increment_usage_counters(
        self, user_id: str, subscription_id: str, model: ModelAccess
    ) -> None:
        """Atomically add one to the (user, model) counter for the current period."""

    @abstractmethod
    async def insert_ai_usage_log(self, entry: AIUsageLogEntry) -> None:
        """Append an audit record."""

    def use_usage_counter(self, counter: RedisUsageCounter) -> bool:
        """
        Route usage counters through an external counter.

        Returns False when the store keeps counters itself (for example in the
        same transaction as the subscription row).
        """
        return False
