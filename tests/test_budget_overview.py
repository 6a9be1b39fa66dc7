from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from analytics import BudgetAnalyticsService, calculate_spending_pace
from database import Base
from schemas import BudgetIn, BudgetItemIn, TagIn, TransactionIn
from services import BudgetService, FatalReadError, TagService, TransactionService

NOW = datetime(2025, 1, 16, 12, 0)


def _budget(
    session: Session,
    expected_cents: int,
    *,
    start: datetime = datetime(2025, 1, 1),
    end: datetime = datetime(2025, 1, 31, 23, 59, 59, 999999),
    currency: str = "USD",
    name: str = "Budget",
):
    return BudgetService(session).create(
        BudgetIn(
            name=name,
            start_date=start,
            end_date=end,
            currency=currency,
            items=[BudgetItemIn(tag_id=None, expected_amount_cents=expected_cents)],
        )
    )


def _spend(
    session: Session,
    amount_cents: int,
    occurred_at: datetime,
    tag_id: Optional[int] = None,
    currency: str = "USD",
):
    return TransactionService(session).create(
        TransactionIn(
            occurred_at=occurred_at,
            amount_cents=amount_cents,
            currency=currency,
            primary_tag_id=tag_id,
        )
    )


def test_overview_without_budgets_is_zeroed() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        overview = BudgetAnalyticsService(session).overview(now=NOW)

        assert overview.overall_health.active_count == 0
        assert overview.overall_health.currency is None
        assert overview.risk_summary.total_active == 0
        assert overview.time_context.days_remaining is None
        assert overview.time_context.spending_pace is None
        assert overview.top_spenders == []
        assert overview.context.total_budgets == 0
        assert overview.context.total_expected_all == Decimal("0.00")


def test_overview_without_active_budgets_still_reports_context() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _budget(
            session,
            10_000,
            start=datetime(2024, 1, 1),
            end=datetime(2024, 1, 31, 23, 59, 59),
        )
        _budget(
            session,
            5_050,
            start=datetime(2025, 3, 1),
            end=datetime(2025, 3, 31, 23, 59, 59),
            currency="EUR",
        )

        overview = BudgetAnalyticsService(session).overview(now=NOW)

        assert overview.overall_health.active_count == 0
        assert overview.risk_summary.total_active == 0
        assert overview.top_spenders == []
        assert overview.context.total_budgets == 2
        assert overview.context.total_expected_all == Decimal("150.50")


def test_risk_summary_counts_nearing_and_over_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _budget(session, 10_000, name="January")
        _budget(
            session,
            20_000,
            start=datetime(2025, 1, 10),
            end=datetime(2025, 3, 31, 23, 59, 59),
            name="Quarter",
        )
        # Before the quarter starts: only the January budget sees it.
        _spend(session, 11_000, datetime(2025, 1, 3, 9, 0))
        # Scheduled after January: only the quarter budget sees it.
        _spend(session, 17_000, datetime(2025, 2, 10, 9, 0))

        overview = BudgetAnalyticsService(session).overview(now=NOW)

        assert overview.risk_summary.over_budget == 1
        assert overview.risk_summary.nearing_limit == 1
        assert overview.risk_summary.total_active == 2
        health = overview.overall_health
        assert health.currency == "USD"
        assert health.active_count == 2
        assert health.total_expected == Decimal("300.00")
        assert health.total_actual == Decimal("280.00")
        assert health.remaining == Decimal("20.00")
        assert health.percentage == 93.33


def test_primary_currency_excludes_minority_currency_budgets() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _budget(session, 10_000, name="Food")
        _budget(session, 20_000, name="Home")
        _budget(session, 1_000, currency="EUR", name="Trip")
        _spend(session, 5_000, datetime(2025, 1, 5, 9, 0))
        _spend(session, 90_000, datetime(2025, 1, 6, 9, 0), currency="EUR")

        overview = BudgetAnalyticsService(session).overview(now=NOW)

        assert overview.overall_health.currency == "USD"
        assert overview.overall_health.active_count == 2
        # Both USD budgets cover the same range and both count the 50.00.
        assert overview.overall_health.total_actual == Decimal("100.00")
        assert overview.overall_health.total_expected == Decimal("300.00")
        assert overview.risk_summary.over_budget == 0
        assert overview.risk_summary.total_active == 2
        assert overview.context.total_budgets == 3
        assert overview.context.total_expected_all == Decimal("310.00")


def test_primary_currency_tie_goes_to_first_listed_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        # Budgets are listed newest start first.
        _budget(session, 10_000, currency="USD", start=datetime(2025, 1, 1))
        _budget(session, 10_000, currency="EUR", start=datetime(2025, 1, 5))

        overview = BudgetAnalyticsService(session).overview(now=NOW)

        assert overview.overall_health.currency == "EUR"
        assert overview.overall_health.active_count == 1


def test_time_context_uses_earliest_dates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _budget(session, 31_000)
        _budget(
            session,
            10_000,
            start=datetime(2025, 1, 10),
            end=datetime(2025, 6, 30, 23, 59, 59),
        )

        time_context = BudgetAnalyticsService(session).overview(now=NOW).time_context

        assert time_context.earliest_start_date == datetime(2025, 1, 1)
        assert time_context.earliest_end_date == datetime(
            2025, 1, 31, 23, 59, 59, 999999
        )
        assert time_context.days_remaining == 16
        assert time_context.days_elapsed == 16
        assert time_context.total_days == 31


def test_spending_pace_reported_when_ahead_of_schedule() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _budget(session, 31_000)
        _spend(session, 30_000, datetime(2025, 1, 2, 9, 0))

        overview = BudgetAnalyticsService(session).overview(now=NOW)

        assert overview.time_context.spending_pace == "faster"


def test_top_spenders_ranked_with_tag_id_tie_break() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        tags = TagService(session)
        rent = tags.create(TagIn(name="Rent", color="#112233"))
        books = tags.create(TagIn(name="Books"))
        food = tags.create(TagIn(name="Food"))
        games = tags.create(TagIn(name="Games"))
        _budget(session, 100_000)

        _spend(session, 10_000, datetime(2025, 1, 2), games.id)
        _spend(session, 30_000, datetime(2025, 1, 3), rent.id)
        _spend(session, 10_000, datetime(2025, 1, 4), books.id)
        _spend(session, 20_000, datetime(2025, 1, 5), food.id)
        _spend(session, 5_000, datetime(2025, 1, 6))

        top = BudgetAnalyticsService(session).overview(now=NOW).top_spenders

        assert [s.tag_name for s in top] == ["Rent", "Food", "Books"]
        assert top[0].tag_color == "#112233"
        assert top[0].amount == Decimal("300.00")
        assert top[0].percentage == 40.0
        assert top[1].percentage == 26.67
        assert top[2].percentage == 13.33


def test_spending_pace_classification() -> None:
    assert calculate_spending_pace(5_000, 10_000, 15, 30) is None
    assert calculate_spending_pace(5_200, 10_000, 15, 30) is None
    assert calculate_spending_pace(8_000, 10_000, 15, 30) == "faster"
    assert calculate_spending_pace(2_000, 10_000, 15, 30) == "slower"
    assert calculate_spending_pace(5_200, 10_000, 15, 30, tolerance_pct=2) == (
        "faster"
    )


def test_spending_pace_is_neutral_for_degenerate_inputs() -> None:
    assert calculate_spending_pace(1_000, 0, 15, 30) is None
    assert calculate_spending_pace(1_000, 10_000, 0, 30) is None
    assert calculate_spending_pace(1_000, 10_000, 15, 0) is None


def test_overview_read_failure_is_fatal_with_no_partial_result(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _budget(session, 10_000)
        _spend(session, 2_000, datetime(2025, 1, 5, 9, 0))

        calls = []

        def fail(*args, **kwargs):
            calls.append(args)
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "scalars", fail)
        with pytest.raises(FatalReadError, match="Failed to load budgets"):
            BudgetAnalyticsService(session).overview(now=NOW)

        assert len(calls) == 1
