"""
Financial context builder.

Assembles a FinancialContext snapshot for one request from several storage
sources fetched concurrently. A failing or slow source degrades to its empty
default and never fails the whole build.

The snapshot is rebuilt per request; nothing is cached across requests.
"""
import asyncio
import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Dict, List, Mapping, Optional, TypeVar

from advisor.core.logging import get_logger
from advisor.core.metrics import record_context_fetch_failure
from advisor.core.tracing import get_tracer, set_span_attribute
from advisor.models.context import (
    Asset,
    AssetType,
    Debt,
    Expenses,
    FinancialContext,
    Goal,
    Income,
    IncomeSource,
    RiskTolerance,
    Transaction,
    TransactionType,
    UserInfo,
)
from advisor.storage.base import AdvisorStorage

logger = get_logger(__name__)

T = TypeVar("T")

TRANSACTION_SAMPLE_SIZE = 20

ASSET_TYPE_MAP: Dict[str, AssetType] = {
    "savings": AssetType.CASH,
    "cash": AssetType.CASH,
    "stocks": AssetType.EQUITY,
    "equity": AssetType.EQUITY,
    "etf": AssetType.EQUITY,
    "mutual fund": AssetType.EQUITY,
    "investment": AssetType.EQUITY,
    "bonds": AssetType.BOND,
    "bond": AssetType.BOND,
    "fixed income": AssetType.BOND,
    "treasury": AssetType.BOND,
    "crypto": AssetType.CRYPTO,
    "cryptocurrency": AssetType.CRYPTO,
    "bitcoin": AssetType.CRYPTO,
    "ethereum": AssetType.CRYPTO,
    "real_estate": AssetType.REAL_ESTATE,
    "real estate": AssetType.REAL_ESTATE,
    "property": AssetType.REAL_ESTATE,
    "home": AssetType.REAL_ESTATE,
    "vehicle": AssetType.VEHICLE,
    "car": AssetType.VEHICLE,
    "auto": AssetType.VEHICLE,
}


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, str):
            cleaned = value.replace(",", "").replace("$", "").replace("%", "").strip()
            if not cleaned:
                return None
            number = float(Decimal(cleaned))
        else:
            number = float(value)
    except (ValueError, TypeError, InvalidOperation):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_amount(value: Any) -> float:
    """
    Best-effort conversion of a stored amount to a non-negative float.

    Numbers, Decimals and numeric strings ("1,250.50", "$80", "18.99%") are
    accepted.
    Missing, unparsable, NaN, infinite or negative values become 0.0.
    """
    number = _to_float(value)
    if number is None or number < 0:
        return 0.0
    return number


def parse_magnitude(value: Any) -> float:
    """Like parse_amount, but signed values keep their magnitude."""
    number = _to_float(value)
    return abs(number) if number is not None else 0.0


def normalize_asset_type(raw: Any) -> AssetType:
    if not isinstance(raw, str):
        return AssetType.OTHER
    return ASSET_TYPE_MAP.get(raw.strip().lower(), AssetType.OTHER)


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def months_until(target: Any, today: Optional[date] = None) -> int:
    """Whole calendar months from today to target, never negative."""
    target_date = _parse_date(target)
    if target_date is None:
        return 0
    today = today or datetime.now(timezone.utc).date()
    months = (target_date.year - today.year) * 12 + (target_date.month - today.month)
    return max(0, months)


def _text(record: Mapping[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = record.get(key)
        if value:
            return str(value)
    return default


async def _safe_fetch(
    source: str,
    awaitable: Awaitable[T],
    default: T,
    user_id: str,
    timeout_seconds: float,
) -> T:
    try:
        result = await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        record_context_fetch_failure(source)
        logger.warning(
            "context_fetch_failed",
            source=source,
            user_id=user_id,
            error="timeout",
            error_type="TimeoutError",
        )
        return default
    except Exception as exc:
        record_context_fetch_failure(source)
        logger.warning(
            "context_fetch_failed",
            source=source,
            user_id=user_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return default
    return default if result is None else result


def _build_debts(rows: List[Mapping[str, Any]]) -> List[Debt]:
    return [
        Debt(
            name=_text(row, "name", default="Debt"),
            balance=parse_amount(row.get("balance")),
            apr=parse_amount(row.get("interest_rate", row.get("apr"))),
            min=parse_amount(row.get("minimum_payment", row.get("min"))),
            monthly_payment=parse_amount(row.get("monthly_payment")),
        )
        for row in rows
    ]


def _build_assets(rows: List[Mapping[str, Any]]) -> List[Asset]:
    return [
        Asset(
            name=_text(row, "name", default="Asset"),
            value=parse_amount(row.get("value")),
            type=normalize_asset_type(row.get("type")),
        )
        for row in rows
    ]


def _build_goals(rows: List[Mapping[str, Any]], today: Optional[date]) -> List[Goal]:
    return [
        Goal(
            name=_text(row, "title", "name", default="Goal"),
            horizon_months=months_until(row.get("target_date"), today),
            target=parse_amount(row.get("target_amount")),
            current=parse_amount(row.get("current_amount")),
        )
        for row in rows
    ]


def _build_transactions(rows: List[Mapping[str, Any]]) -> List[Transaction]:
    sample: List[Transaction] = []
    for row in rows[:TRANSACTION_SAMPLE_SIZE]:
        tx_date = _parse_date(row.get("date"))
        raw_type = str(row.get("type") or "expense").lower()
        try:
            tx_type = TransactionType(raw_type)
        except ValueError:
            tx_type = TransactionType.EXPENSE
        category = _text(row, "category", default="Uncategorized")
        sample.append(
            Transaction(
                date=tx_date.isoformat() if tx_date else "",
                desc=_text(row, "description", "category", default=""),
                # direction lives in type
                amount=parse_magnitude(row.get("amount")),
                category=category,
                type=tx_type,
            )
        )
    return sample


def _build_user(user_id: str, row: Optional[Mapping[str, Any]]) -> UserInfo:
    row = row or {}
    age = row.get("age")
    try:
        age = int(age) if age is not None else None
    except (TypeError, ValueError):
        age = None
    try:
        risk = RiskTolerance(str(row.get("risk_tolerance") or "med").lower())
    except ValueError:
        risk = RiskTolerance.MED
    return UserInfo(
        id=user_id,
        country_code=_text(row, "country_code", default="US"),
        region=row.get("region"),
        age=age,
        risk_tolerance=risk,
    )


async def build_financial_context(
    user_id: str,
    storage: AdvisorStorage,
    fetch_timeout_seconds: float = 5.0,
    today: Optional[date] = None,
) -> FinancialContext:
    """
    Fetch all context sources concurrently and normalize them.

    Args:
        user_id: User to build the snapshot for
        storage: Storage implementation
        fetch_timeout_seconds: Per-source timeout; a slow source degrades to empty
        today: Reference date for goal horizons (defaults to the current UTC date)

    Returns:
        A frozen FinancialContext. Never raises for individual source failures.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span("context.build") as span:
        set_span_attribute(span, "user_id", user_id)

        def fetch(source: str, awaitable: Awaitable[T], default: T) -> Awaitable[T]:
            return _safe_fetch(source, awaitable, default, user_id, fetch_timeout_seconds)

        (
            profile,
            expense_categories,
            debts,
            assets,
            goals,
            transactions,
            user,
        ) = await asyncio.gather(
            fetch("profile", storage.get_user_financial_profile(user_id), None),
            fetch("expense_categories", storage.get_user_expense_categories(user_id), []),
            fetch("debts", storage.get_user_debts(user_id), []),
            fetch("assets", storage.get_user_assets(user_id), []),
            fetch("goals", storage.get_financial_goals(user_id), []),
            fetch(
                "transactions",
                storage.get_transactions(user_id, TRANSACTION_SAMPLE_SIZE),
                [],
            ),
            fetch("user", storage.get_user(user_id), None),
        )

        profile = profile or {}
        monthly_income = parse_amount(profile.get("monthly_income"))
        monthly_expenses = parse_amount(profile.get("monthly_expenses"))
        sources = (
            [IncomeSource(name="Primary Income", amount=monthly_income)]
            if monthly_income > 0
            else []
        )

        by_category: Dict[str, float] = {}
        for row in expense_categories:
            category = _text(row, "category", default="Other")
            by_category[category] = parse_amount(row.get("monthly_amount"))

        context = FinancialContext(
            user=_build_user(user_id, user),
            income=Income(
                monthly_net=max(monthly_income - monthly_expenses, 0.0),
                sources=sources,
            ),
            expenses=Expenses(monthly=monthly_expenses, by_category=by_category),
            debts=_build_debts(debts),
            assets=_build_assets(assets),
            goals=_build_goals(goals, today),
            recent_transactions_sample=_build_transactions(transactions),
        )

        set_span_attribute(span, "debts_count", len(context.debts))
        set_span_attribute(span, "assets_count", len(context.assets))
        logger.debug(
            "context_built",
            user_id=user_id,
            debts=len(context.debts),
            assets=len(context.assets),
            goals=len(context.goals),
        )
        return context


def estimate_context_tokens(context: FinancialContext) -> int:
    """Rough token estimate (4 characters per token). Advisory only."""
    serialized = json.dumps(context.model_dump(mode="json"), separators=(",", ":"))
    return math.ceil(len(serialized) / 4)
