from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from config import get_settings
from database import read_snapshot
from models import Budget, BudgetItem, Tag, Transaction
from periods import local_now
from schemas import (
    BudgetAlert,
    BudgetComparison,
    BudgetItemComparison,
    BudgetItemOut,
    BudgetOut,
    BudgetsOverviewResponse,
    BudgetTotals,
    OverallHealth,
    OverviewContext,
    RiskSummary,
    TagOut,
    TimeContext,
    TopSpender,
    TransactionOut,
)
from services import (
    BudgetService,
    NotFoundError,
    TransactionService,
    cents_to_decimal,
    get_current_user_id,
)

logger = logging.getLogger(__name__)

NEARING_LIMIT_PCT = Decimal("80")
OVER_BUDGET_PCT = Decimal("100")
TOP_SPENDERS_LIMIT = 3
MISC_ALERT_NAME = "Miscellaneous"

_HUNDRED = Decimal("100")
_PERCENT_PLACES = Decimal("0.01")
_ONE_DAY = timedelta(days=1)


def percentage_of(part_cents: int, whole_cents: int) -> Decimal:
    if whole_cents <= 0:
        return Decimal("0")
    return Decimal(part_cents) / Decimal(whole_cents) * _HUNDRED


def round_percentage(value: Decimal) -> float:
    return float(value.quantize(_PERCENT_PLACES, rounding=ROUND_HALF_UP))


def ceil_days(start: datetime, end: datetime) -> int:
    return math.ceil((end - start) / _ONE_DAY)


def calculate_spending_pace(
    actual_cents: int,
    expected_cents: int,
    days_elapsed: int,
    total_days: int,
    *,
    tolerance_pct: int = 5,
) -> Optional[str]:
    """Compare how much of the budget is spent with how much time has passed.

    The budget is assumed to be consumed linearly over ``total_days``. Spend
    within ``tolerance_pct`` percent of that line counts as on track and
    yields ``None``; otherwise ``"faster"`` or ``"slower"``.
    """
    if days_elapsed <= 0 or total_days <= 0 or expected_cents <= 0:
        return None

    expected_to_date = Decimal(expected_cents) / Decimal(total_days) * days_elapsed
    variance = Decimal(actual_cents) - expected_to_date
    variance_pct = variance / expected_to_date * _HUNDRED
    if abs(variance_pct) < tolerance_pct:
        return None
    return "faster" if variance > 0 else "slower"


@dataclass
class TransactionPartition:
    """Transactions of one budget split by primary tag.

    ``buckets`` holds untagged spend under ``None`` and spend for tags that
    have a budget item; ``alerts`` holds spend for tags without one, in the
    order the tags were first seen.
    """

    buckets: dict[Optional[int], list[Transaction]] = field(default_factory=dict)
    alerts: dict[int, list[Transaction]] = field(default_factory=dict)

    @property
    def total_cents(self) -> int:
        groups = list(self.buckets.values()) + list(self.alerts.values())
        return sum(txn.amount_cents for group in groups for txn in group)


def partition_transactions(
    items: Iterable[BudgetItem], transactions: Iterable[Transaction]
) -> TransactionPartition:
    budgeted_tag_ids = {item.tag_id for item in items if item.tag_id is not None}
    partition = TransactionPartition()
    for txn in transactions:
        tag_id = txn.primary_tag_id
        if tag_id is None or tag_id in budgeted_tag_ids:
            partition.buckets.setdefault(tag_id, []).append(txn)
        else:
            partition.alerts.setdefault(tag_id, []).append(txn)
    return partition


def _sum_cents(transactions: Iterable[Transaction]) -> int:
    return sum(txn.amount_cents for txn in transactions)


def _tag_out(tag: Optional[Tag]) -> Optional[TagOut]:
    if tag is None:
        return None
    return TagOut(id=tag.id, name=tag.name, color=tag.color)


def _transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        type=txn.type,
        amount=cents_to_decimal(txn.amount_cents),
        currency=txn.currency_code,
        occurred_at=txn.occurred_at,
        name=txn.name,
        tags=[_tag_out(tag) for tag in txn.tags],
        primary_tag=_tag_out(txn.primary_tag),
    )


def _item_out(item: BudgetItem) -> BudgetItemOut:
    return BudgetItemOut(
        id=item.id,
        budget_id=item.budget_id,
        tag_id=item.tag_id,
        tag=_tag_out(item.tag),
        expected_amount=cents_to_decimal(item.expected_amount_cents),
    )


def budget_out(budget: Budget) -> BudgetOut:
    return BudgetOut(
        id=budget.id,
        user_id=budget.user_id,
        name=budget.name,
        start_date=budget.start_date,
        end_date=budget.end_date,
        currency=budget.currency_code,
        items=[_item_out(item) for item in budget.items],
    )


def _alert(
    tag_id: Optional[int], tag_name: str, tag_color: Optional[str], txns: list
) -> BudgetAlert:
    return BudgetAlert(
        tag_id=tag_id,
        tag_name=tag_name,
        tag_color=tag_color,
        transaction_count=len(txns),
        total_amount=cents_to_decimal(_sum_cents(txns)),
        transactions=[_transaction_out(txn) for txn in txns],
    )


class BudgetAnalyticsService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        tolerance_pct: Optional[int] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        if tolerance_pct is None:
            tolerance_pct = get_settings().pace_tolerance_pct
        self.tolerance_pct = tolerance_pct
        self.budgets = BudgetService(session, self.user_id)
        self.transactions = TransactionService(session, self.user_id)

    def _transactions_for(self, budget: Budget) -> list[Transaction]:
        return self.transactions.list_for_range(
            budget.currency_code, budget.start_date, budget.end_date
        )

    def compare_budget(self, budget_id: int) -> BudgetComparison:
        with read_snapshot(self.session):
            budget = self.budgets.get(budget_id)
            if budget is None:
                raise NotFoundError("Budget not found")

            transactions = self._transactions_for(budget)
            partition = partition_transactions(budget.items, transactions)

            item_comparisons: list[BudgetItemComparison] = []
            has_misc_item = False
            for item in budget.items:
                if item.tag_id is None:
                    has_misc_item = True
                item_txns = partition.buckets.get(item.tag_id, [])
                actual_cents = _sum_cents(item_txns)
                expected_cents = item.expected_amount_cents
                item_comparisons.append(
                    BudgetItemComparison(
                        item=_item_out(item),
                        expected=cents_to_decimal(expected_cents),
                        actual=cents_to_decimal(actual_cents),
                        difference=cents_to_decimal(actual_cents - expected_cents),
                        percentage=round_percentage(
                            percentage_of(actual_cents, expected_cents)
                        ),
                        transactions=[_transaction_out(txn) for txn in item_txns],
                    )
                )

            alerts: list[BudgetAlert] = []
            for tag_id, txns in partition.alerts.items():
                tag = txns[0].primary_tag
                alerts.append(_alert(tag_id, tag.name, tag.color, txns))

            untagged = partition.buckets.get(None, [])
            if untagged and not has_misc_item:
                alerts.append(_alert(None, MISC_ALERT_NAME, None, untagged))

            total_expected_cents = sum(
                item.expected_amount_cents for item in budget.items
            )
            total_actual_cents = partition.total_cents

            logger.info(
                f"budget_compare: user_id={self.user_id} budget_id={budget.id} "
                f"transactions={len(transactions)} alerts={len(alerts)}"
            )
            return BudgetComparison(
                budget=budget_out(budget),
                items=item_comparisons,
                alerts=alerts,
                totals=BudgetTotals(
                    total_expected=cents_to_decimal(total_expected_cents),
                    total_actual=cents_to_decimal(total_actual_cents),
                    total_difference=cents_to_decimal(
                        total_actual_cents - total_expected_cents
                    ),
                ),
            )

    def overview(self, now: Optional[datetime] = None) -> BudgetsOverviewResponse:
        now = now or local_now()
        with read_snapshot(self.session):
            budgets = self.budgets.list()
            context = OverviewContext(
                total_budgets=len(budgets),
                total_expected_all=cents_to_decimal(
                    sum(
                        item.expected_amount_cents
                        for budget in budgets
                        for item in budget.items
                    )
                ),
            )

            active = [b for b in budgets if b.start_date <= now <= b.end_date]
            if not active:
                logger.info(
                    f"budget_overview: user_id={self.user_id} "
                    f"budgets={len(budgets)} active=0"
                )
                return BudgetsOverviewResponse(context=context)

            currency = Counter(b.currency_code for b in active).most_common(1)[0][0]
            included = [b for b in active if b.currency_code == currency]

            total_expected_cents = 0
            total_actual_cents = 0
            nearing_limit = 0
            over_budget = 0
            tag_spending: dict[int, int] = {}
            tags_by_id: dict[int, Tag] = {}

            for budget in included:
                budget_expected = sum(
                    item.expected_amount_cents for item in budget.items
                )
                transactions = self._transactions_for(budget)
                spend_by_tag: dict[Optional[int], int] = {}
                for txn in transactions:
                    spend_by_tag[txn.primary_tag_id] = (
                        spend_by_tag.get(txn.primary_tag_id, 0) + txn.amount_cents
                    )
                    if txn.primary_tag is not None:
                        tags_by_id.setdefault(txn.primary_tag_id, txn.primary_tag)
                budget_actual = sum(spend_by_tag.values())

                budget_pct = percentage_of(budget_actual, budget_expected)
                if budget_pct > OVER_BUDGET_PCT:
                    over_budget += 1
                elif budget_pct >= NEARING_LIMIT_PCT:
                    nearing_limit += 1

                total_expected_cents += budget_expected
                total_actual_cents += budget_actual
                for tag_id, cents in spend_by_tag.items():
                    if tag_id is not None:
                        tag_spending[tag_id] = tag_spending.get(tag_id, 0) + cents

            earliest_start = min(b.start_date for b in included)
            earliest_end = min(b.end_date for b in included)
            days_elapsed = max(1, ceil_days(earliest_start, now))
            total_days = ceil_days(earliest_start, earliest_end)

            ranked = sorted(tag_spending.items(), key=lambda kv: (-kv[1], kv[0]))
            top_spenders = [
                TopSpender(
                    tag_id=tag_id,
                    tag_name=tags_by_id[tag_id].name,
                    tag_color=tags_by_id[tag_id].color,
                    amount=cents_to_decimal(cents),
                    percentage=round_percentage(
                        percentage_of(cents, total_actual_cents)
                    ),
                )
                for tag_id, cents in ranked[:TOP_SPENDERS_LIMIT]
            ]

            logger.info(
                f"budget_overview: user_id={self.user_id} budgets={len(budgets)} "
                f"active={len(active)} included={len(included)} currency={currency}"
            )
            return BudgetsOverviewResponse(
                overall_health=OverallHealth(
                    total_expected=cents_to_decimal(total_expected_cents),
                    total_actual=cents_to_decimal(total_actual_cents),
                    remaining=cents_to_decimal(
                        total_expected_cents - total_actual_cents
                    ),
                    percentage=round_percentage(
                        percentage_of(total_actual_cents, total_expected_cents)
                    ),
                    active_count=len(included),
                    currency=currency,
                ),
                risk_summary=RiskSummary(
                    nearing_limit=nearing_limit,
                    over_budget=over_budget,
                    total_active=len(included),
                ),
                time_context=TimeContext(
                    earliest_start_date=earliest_start,
                    earliest_end_date=earliest_end,
                    days_remaining=ceil_days(now, earliest_end),
                    days_elapsed=days_elapsed,
                    total_days=total_days,
                    spending_pace=calculate_spending_pace(
                        total_actual_cents,
                        total_expected_cents,
                        days_elapsed,
                        total_days,
                        tolerance_pct=self.tolerance_pct,
                    ),
                ),
                top_spenders=top_spenders,
                context=context,
            )
