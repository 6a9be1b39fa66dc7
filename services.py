from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models import Budget, BudgetItem, Tag, Transaction
from schemas import BudgetIn, BudgetItemIn, BudgetUpdateIn, TagIn, TransactionIn

logger = logging.getLogger(__name__)

MISC_LABEL = "Misc"
CENTS = Decimal("0.01")


class BudgetValidationError(ValueError):
    pass


class DuplicateBudgetItemError(BudgetValidationError):
    pass


class NotFoundError(ValueError):
    pass


class FatalReadError(RuntimeError):
    pass


def get_current_user_id() -> int:
    return 1


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENTS)


class TagService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.user_id == self.user_id).order_by(Tag.name)
        return self.session.scalars(stmt).all()

    def get(self, tag_id: int) -> Tag:
        tag = self.session.get(Tag, tag_id)
        if not tag or tag.user_id != self.user_id:
            raise NotFoundError("Tag not found")
        return tag

    def create(self, data: TagIn) -> Tag:
        clean_name = data.name.strip()
        if not clean_name:
            raise BudgetValidationError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.user_id == self.user_id, func.lower(Tag.name) == clean_name.lower()
        )
        if self.session.scalar(stmt):
            raise BudgetValidationError("Tag already exists")

        tag = Tag(user_id=self.user_id, name=clean_name, color=data.color)
        self.session.add(tag)
        self.session.commit()
        self.session.refresh(tag)
        return tag


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _owned_tags(self, tag_ids: list[int]) -> list[Tag]:
        if not tag_ids:
            return []
        unique_ids = set(tag_ids)
        tags = self.session.scalars(
            select(Tag).where(Tag.user_id == self.user_id, Tag.id.in_(unique_ids))
        ).all()
        if len(tags) != len(unique_ids):
            raise BudgetValidationError("Tag not found")
        return list(tags)

    def create(self, data: TransactionIn) -> Transaction:
        tags = self._owned_tags(data.tag_ids)
        if data.primary_tag_id is not None:
            self._owned_tags([data.primary_tag_id])

        txn = Transaction(
            user_id=self.user_id,
            occurred_at=data.occurred_at,
            type=data.type,
            amount_cents=data.amount_cents,
            currency_code=data.currency,
            name=data.name,
            note=data.note,
            primary_tag_id=data.primary_tag_id,
            tags=tags,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def list_for_range(
        self, currency: str, start: datetime, end: datetime
    ) -> list[Transaction]:
        """Transactions of the user in ``currency`` with ``start <= occurred_at <= end``.

        Results come back in ``occurred_at`` then ``id`` order with both
        ``primary_tag`` and ``tags`` loaded.
        """
        stmt = (
            select(Transaction)
            .options(
                selectinload(Transaction.primary_tag),
                selectinload(Transaction.tags),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.currency_code == currency,
                Transaction.occurred_at >= start,
                Transaction.occurred_at <= end,
            )
            .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise FatalReadError(
                f"Failed to load {currency} transactions for user {self.user_id}"
            ) from exc


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list(
        self,
        *,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(selectinload(Budget.items).selectinload(BudgetItem.tag))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.start_date.desc(), Budget.id.asc())
        )
        # Overlap: the budget starts before the window ends and ends after it starts.
        if date_to is not None:
            stmt = stmt.where(Budget.start_date <= date_to)
        if date_from is not None:
            stmt = stmt.where(Budget.end_date >= date_from)
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise FatalReadError(
                f"Failed to load budgets for user {self.user_id}"
            ) from exc

    def get(self, budget_id: int) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .options(selectinload(Budget.items).selectinload(BudgetItem.tag))
            .where(Budget.id == budget_id, Budget.user_id == self.user_id)
        )
        try:
            return self.session.scalar(stmt)
        except SQLAlchemyError as exc:
            raise FatalReadError(f"Failed to load budget {budget_id}") from exc

    def _require(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        if budget is None:
            raise NotFoundError("Budget not found")
        return budget

    def _validate_items(self, items: list[BudgetItemIn]) -> None:
        tag_ids = {item.tag_id for item in items if item.tag_id is not None}
        tags_by_id: dict[int, Tag] = {}
        if tag_ids:
            owned = self.session.scalars(
                select(Tag).where(Tag.user_id == self.user_id, Tag.id.in_(tag_ids))
            ).all()
            tags_by_id = {tag.id: tag for tag in owned}
            if len(tags_by_id) != len(tag_ids):
                raise BudgetValidationError("One or more tags do not belong to user")

        seen: set[Optional[int]] = set()
        for item in items:
            if item.expected_amount_cents <= 0:
                raise BudgetValidationError("Expected amount must be positive")
            if item.tag_id in seen:
                label = (
                    MISC_LABEL
                    if item.tag_id is None
                    else tags_by_id[item.tag_id].name
                )
                raise DuplicateBudgetItemError(f"Duplicate tag entry: {label}")
            seen.add(item.tag_id)

    @staticmethod
    def _validate_range(start: datetime, end: datetime) -> None:
        if start > end:
            raise BudgetValidationError("Start date must be before end date")

    def create(self, data: BudgetIn) -> Budget:
        name = data.name.strip()
        if not name:
            raise BudgetValidationError("Budget name cannot be empty")
        self._validate_range(data.start_date, data.end_date)
        self._validate_items(data.items)

        budget = Budget(
            user_id=self.user_id,
            name=name,
            start_date=data.start_date,
            end_date=data.end_date,
            currency_code=data.currency,
            items=[
                BudgetItem(
                    tag_id=item.tag_id,
                    expected_amount_cents=item.expected_amount_cents,
                )
                for item in data.items
            ],
        )
        self.session.add(budget)
        self.session.commit()
        logger.info(
            f"budget_created: user_id={self.user_id} budget_id={budget.id} "
            f"items={len(data.items)}"
        )
        return self._require(budget.id)

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self._require(budget_id)

        start = data.start_date or budget.start_date
        end = data.end_date or budget.end_date
        self._validate_range(start, end)
        if data.items is not None:
            self._validate_items(data.items)

        if data.name is not None:
            name = data.name.strip()
            if not name:
                raise BudgetValidationError("Budget name cannot be empty")
            budget.name = name
        budget.start_date = start
        budget.end_date = end
        if data.currency is not None:
            budget.currency_code = data.currency

        if data.items is not None:
            # Replacing the whole list; flush removals first so the unique
            # (budget_id, tag_id) constraint never sees old and new rows together.
            budget.items.clear()
            self.session.flush()
            budget.items.extend(
                BudgetItem(
                    tag_id=item.tag_id,
                    expected_amount_cents=item.expected_amount_cents,
                )
                for item in data.items
            )

        self.session.commit()
        logger.info(f"budget_updated: user_id={self.user_id} budget_id={budget_id}")
        return self._require(budget_id)

    def delete(self, budget_id: int) -> None:
        budget = self._require(budget_id)
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: user_id={self.user_id} budget_id={budget_id}")
