"""
Unit tests for the financial context builder.

Tests verify:
- A failing or slow source degrades to its empty default
- Loosely typed amounts are parsed to non-negative floats
- Asset types and goal horizons are normalized
- Token estimation is monotonic in context size
"""
import asyncio
from datetime import date
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from advisor.models.context import AssetType, TransactionType
from advisor.services.ai.context_builder import (
    build_financial_context,
    estimate_context_tokens,
    months_until,
    normalize_asset_type,
    parse_amount,
)
from advisor.storage.memory import InMemoryStorage

TODAY = date(2026, 10, 19)


def failures(source: str) -> float:
    return REGISTRY.get_sample_value(
        "advisor_context_fetch_failures_total", {"source": source}
    ) or 0.0


class BrokenDebtsStorage(InMemoryStorage):
    async def get_user_debts(self, user_id):
        raise ConnectionError("debts table unavailable")


class SlowAssetsStorage(InMemoryStorage):
    async def get_user_assets(self, user_id):
        await asyncio.sleep(1)
        return [{"name": "Too late", "value": 1, "type": "cash"}]


def seed(storage: InMemoryStorage) -> InMemoryStorage:
    storage.set_profile("u1", "6,500.00", Decimal("4200"))
    storage.expense_categories["u1"] = [
        {"category": "Housing", "monthly_amount": "1800"},
        {"category": "Food", "monthly_amount": 650.5},
    ]
    storage.debts["u1"] = [
        {"name": "Visa", "balance": "5000", "interest_rate": "24.99", "minimum_payment": None},
    ]
    storage.assets["u1"] = [
        {"name": "Brokerage", "value": 25000, "type": "Stocks"},
        {"name": "Emergency fund", "value": "8000", "type": "savings"},
        {"name": "Art", "value": 1000, "type": "collectibles"},
    ]
    storage.goals["u1"] = [
        {"title": "House", "target_amount": 60000, "current_amount": 10000, "target_date": "2028-04-01"},
    ]
    storage.transactions["u1"] = [
        {"date": "2026-10-01T09:00:00Z", "description": "Payroll", "amount": "3250", "category": "Salary", "type": "income"},
        {"date": "2026-10-02", "description": "Groceries", "amount": -82.4, "category": "Food", "type": "expense"},
    ]
    storage.users["u1"] = {"country_code": "US", "region": "CA", "age": "41", "risk_tolerance": "HIGH"}
    return storage


class TestBuildFinancialContext:
    """Assembling the snapshot from storage."""

    @pytest.mark.asyncio
    async def test_full_context(self):
        context = await build_financial_context("u1", seed(InMemoryStorage()), today=TODAY)

        assert context.gross_monthly_income == 6500
        assert context.income.monthly_net == 2300
        assert context.expenses.by_category == {"Housing": 1800, "Food": 650.5}
        assert context.debts[0].balance == 5000
        assert context.debts[0].apr == 24.99
        assert context.debts[0].min == 0
        assert [a.type for a in context.assets] == [AssetType.EQUITY, AssetType.CASH, AssetType.OTHER]
        assert context.goals[0].name == "House"
        assert context.goals[0].horizon_months == 18
        assert context.user.age == 41
        assert context.user.risk_tolerance.value == "high"

        groceries, payroll = context.recent_transactions_sample
        assert groceries.date == "2026-10-02"
        assert groceries.amount == 82.4
        assert groceries.type == TransactionType.EXPENSE
        assert payroll.date == "2026-10-01"
        assert payroll.type == TransactionType.INCOME

    @pytest.mark.asyncio
    async def test_failing_source_degrades_to_empty(self):
        before = failures("debts")
        storage = seed(BrokenDebtsStorage())

        context = await build_financial_context("u1", storage, today=TODAY)

        assert context.debts == []
        assert len(context.assets) == 3
        assert failures("debts") == before + 1

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self):
        before = failures("assets")
        storage = seed(SlowAssetsStorage())

        context = await build_financial_context(
            "u1", storage, fetch_timeout_seconds=0.05, today=TODAY
        )

        assert context.assets == []
        assert len(context.debts) == 1
        assert failures("assets") == before + 1

    @pytest.mark.asyncio
    async def test_unknown_user_gets_empty_context(self):
        context = await build_financial_context("nobody", InMemoryStorage(), today=TODAY)

        assert context.user.id == "nobody"
        assert context.user.country_code == "US"
        assert context.income.sources == []
        assert context.income.monthly_net == 0
        assert context.total_debt == 0

    @pytest.mark.asyncio
    async def test_expenses_above_income_clamp_surplus(self):
        storage = InMemoryStorage()
        storage.set_profile("u1", 3000, 3500)

        context = await build_financial_context("u1", storage, today=TODAY)

        assert context.income.monthly_net == 0


class TestParsing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (1250, 1250.0),
            ("1,250.50", 1250.5),
            ("$80", 80.0),
            ("18.99%", 18.99),
            (" 7.5 % ", 7.5),
            (Decimal("19.99"), 19.99),
            (None, 0.0),
            ("n/a", 0.0),
            (-40, 0.0),
            (float("nan"), 0.0),
            (True, 0.0),
        ],
    )
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == pytest.approx(expected)

    def test_normalize_asset_type(self):
        assert normalize_asset_type(" Mutual Fund ") == AssetType.EQUITY
        assert normalize_asset_type("bitcoin") == AssetType.CRYPTO
        assert normalize_asset_type("property") == AssetType.REAL_ESTATE
        assert normalize_asset_type(None) == AssetType.OTHER

    def test_months_until(self):
        assert months_until("2027-10-01", TODAY) == 12
        assert months_until("2020-01-01", TODAY) == 0
        assert months_until(None, TODAY) == 0
        assert months_until("not a date", TODAY) == 0


@pytest.mark.asyncio
async def test_estimate_context_tokens_grows_with_context():
    small = await build_financial_context("u1", InMemoryStorage(), today=TODAY)
    large = await build_financial_context("u1", seed(InMemoryStorage()), today=TODAY)

    assert 0 < estimate_context_tokens(small) < estimate_context_tokens(large)
