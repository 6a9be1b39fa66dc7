from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType
from periods import PresetKind


def _normalize_currency(value: str) -> str:
    return value.strip().upper()


class TagIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = Field(None, max_length=9)


class TransactionIn(BaseModel):
    occurred_at: datetime
    type: TransactionType = TransactionType.expense
    amount_cents: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    name: Optional[str] = Field(default=None, max_length=200)
    note: Optional[str] = None
    primary_tag_id: Optional[int] = None
    tag_ids: list[int] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str) -> str:
        return _normalize_currency(value)


class BudgetItemIn(BaseModel):
    tag_id: Optional[int] = None
    expected_amount_cents: int = Field(..., gt=0)


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    start_date: datetime
    end_date: datetime
    currency: str = Field(..., min_length=3, max_length=3)
    items: list[BudgetItemIn] = Field(..., min_length=1)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str) -> str:
        return _normalize_currency(value)


class BudgetUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    items: Optional[list[BudgetItemIn]] = Field(default=None, min_length=1)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_currency(value) if value is not None else None


class PresetQuery(BaseModel):
    kind: PresetKind = PresetKind.monthly
    year: Optional[int] = Field(default=None, ge=1970, le=3000)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    start: Optional[str] = None
    end: Optional[str] = None


class PresetOut(BaseModel):
    kind: PresetKind
    start: datetime
    end: datetime
    name: str


class TagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: Optional[str] = None


class TransactionOut(BaseModel):
    id: int
    type: TransactionType
    amount: Decimal
    currency: str
    occurred_at: datetime
    name: Optional[str] = None
    tags: list[TagOut] = Field(default_factory=list)
    primary_tag: Optional[TagOut] = None


class BudgetItemOut(BaseModel):
    id: int
    budget_id: int
    tag_id: Optional[int]
    tag: Optional[TagOut] = None
    expected_amount: Decimal


class BudgetOut(BaseModel):
    id: int
    user_id: int
    name: str
    start_date: datetime
    end_date: datetime
    currency: str
    items: list[BudgetItemOut]


class BudgetItemComparison(BaseModel):
    item: BudgetItemOut
    expected: Decimal
    actual: Decimal
    difference: Decimal
    percentage: float
    transactions: list[TransactionOut]


class BudgetAlert(BaseModel):
    tag_id: Optional[int]
    tag_name: str
    tag_color: Optional[str] = None
    transaction_count: int
    total_amount: Decimal
    transactions: list[TransactionOut]


class BudgetTotals(BaseModel):
    total_expected: Decimal
    total_actual: Decimal
    total_difference: Decimal


class BudgetComparison(BaseModel):
    budget: BudgetOut
    items: list[BudgetItemComparison]
    alerts: list[BudgetAlert]
    totals: BudgetTotals


class OverallHealth(BaseModel):
    total_expected: Decimal = Decimal("0.00")
    total_actual: Decimal = Decimal("0.00")
    remaining: Decimal = Decimal("0.00")
    percentage: float = 0.0
    active_count: int = 0
    currency: Optional[str] = None


class RiskSummary(BaseModel):
    nearing_limit: int = 0
    over_budget: int = 0
    total_active: int = 0


class TimeContext(BaseModel):
    earliest_start_date: Optional[datetime] = None
    earliest_end_date: Optional[datetime] = None
    days_remaining: Optional[int] = None
    days_elapsed: int = 0
    total_days: int = 0
    spending_pace: Optional[Literal["faster", "slower"]] = None


class TopSpender(BaseModel):
    tag_id: int
    tag_name: str
    tag_color: Optional[str] = None
    amount: Decimal
    percentage: float


class OverviewContext(BaseModel):
    total_budgets: int = 0
    total_expected_all: Decimal = Decimal("0.00")


class BudgetsOverviewResponse(BaseModel):
    overall_health: OverallHealth = Field(default_factory=OverallHealth)
    risk_summary: RiskSummary = Field(default_factory=RiskSummary)
    time_context: TimeContext = Field(default_factory=TimeContext)
    top_spenders: list[TopSpender] = Field(default_factory=list)
    context: OverviewContext = Field(default_factory=OverviewContext)
