"""
Financial context snapshot assembled per request.

All monetary fields are non-negative floats. Instances are frozen: the
snapshot is built once and then only read by routing, prompts and
orchestrators.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RiskTolerance(str, Enum):
    LOW = "low"
    MED = "med"
    HIGH = "high"


class AssetType(str, Enum):
    CASH = "cash"
    EQUITY = "equity"
    CRYPTO = "crypto"
    BOND = "bond"
    REAL_ESTATE = "real_estate"
    VEHICLE = "vehicle"
    OTHER = "other"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class UserInfo(_Frozen):
    id: str
    country_code: str = "US"
    region: Optional[str] = None
    age: Optional[int] = None
    risk_tolerance: RiskTolerance = RiskTolerance.MED


class IncomeSource(_Frozen):
    name: str
    amount: float = Field(0.0, ge=0.0)


class Income(_Frozen):
    monthly_net: float = Field(0.0, ge=0.0)
    sources: List[IncomeSource] = Field(default_factory=list)


class Expenses(_Frozen):
    monthly: float = Field(0.0, ge=0.0)
    by_category: Dict[str, float] = Field(default_factory=dict)


class Debt(_Frozen):
    name: str
    balance: float = Field(0.0, ge=0.0)
    apr: float = Field(0.0, ge=0.0)
    min: float = Field(0.0, ge=0.0)
    monthly_payment: float = Field(0.0, ge=0.0)


class Asset(_Frozen):
    name: str
    value: float = Field(0.0, ge=0.0)
    type: AssetType = AssetType.OTHER


class Goal(_Frozen):
    name: str
    horizon_months: int = Field(0, ge=0)
    target: float = Field(0.0, ge=0.0)
    current: float = Field(0.0, ge=0.0)


class Transaction(_Frozen):
    date: str
    desc: str
    amount: float = Field(0.0, ge=0.0)
    category: str = "Uncategorized"
    type: TransactionType = TransactionType.EXPENSE


class FinancialContext(_Frozen):
    user: UserInfo
    income: Income = Field(default_factory=Income)
    expenses: Expenses = Field(default_factory=Expenses)
    debts: List[Debt] = Field(default_factory=list)
    assets: List[Asset] = Field(default_factory=list)
    goals: List[Goal] = Field(default_factory=list)
    recent_transactions_sample: List[Transaction] = Field(
        default_factory=list, max_length=20
    )

    @property
    def total_debt(self) -> float:
        return sum(d.balance for d in self.debts)

    @property
    def total_assets(self) -> float:
        return sum(a.value for a in self.assets)

    @property
    def gross_monthly_income(self) -> float:
        return sum(s.amount for s in self.income.sources)

    def assets_by_type(self) -> Dict[AssetType, float]:
        totals: Dict[AssetType, float] = {}
        for asset in self.assets:
            totals[asset.type] = totals.get(asset.type, 0.0) + asset.value
        return totals
