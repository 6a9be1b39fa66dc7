"""initial budgets schema

Revision ID: 202601051000
Revises:
Create Date: 2026-01-05 10:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601051000"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade():
    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("color", sa.String(length=9), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column(
            "primary_tag_id", sa.Integer(), sa.ForeignKey("tags.id"), nullable=True
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_currency_occurred",
        "transactions",
        ["user_id", "currency_code", "occurred_at"],
    )
    op.create_index(
        "ix_transactions_user_primary_tag",
        "transactions",
        ["user_id", "primary_tag_id"],
    )

    op.create_table(
        "transaction_tags",
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            primary_key=True,
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("start_date <= end_date", name="ck_budget_range_ordered"),
    )
    op.create_index(
        "ix_budget_user_range", "budgets", ["user_id", "start_date", "end_date"]
    )

    op.create_table(
        "budget_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), nullable=True),
        sa.Column("expected_amount_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "expected_amount_cents > 0", name="ck_budget_item_amount_positive"
        ),
        sa.UniqueConstraint("budget_id", "tag_id", name="uq_budget_item_budget_tag"),
    )

    # At most one Miscellaneous (NULL tag) item per budget.
    op.execute(
        "CREATE UNIQUE INDEX uq_budget_item_budget_tag_coalesce "
        "ON budget_items(budget_id, COALESCE(tag_id, -1))"
    )


def downgrade():
    op.drop_index("uq_budget_item_budget_tag_coalesce", table_name="budget_items")
    op.drop_table("budget_items")
    op.drop_index("ix_budget_user_range", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("transaction_tags")
    op.drop_index("ix_transactions_user_primary_tag", table_name="transactions")
    op.drop_index("ix_transactions_user_currency_occurred", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("tags")
