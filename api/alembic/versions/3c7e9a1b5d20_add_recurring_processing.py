"""add_recurring_processing

Revision ID: 3c7e9a1b5d20
Revises:
Create Date: 2026-10-12 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3c7e9a1b5d20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("amount", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("frequency", sa.String(length=20), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("process_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_processed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_undone", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_error", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_recurring_transactions_category"), "recurring_transactions", ["category"], unique=False)
    op.create_index(op.f("ix_recurring_transactions_next_due_date"), "recurring_transactions", ["next_due_date"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("recurring_id", sa.UUID(), nullable=True),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("amount", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_transactions_recurring_id"), "transactions", ["recurring_id"], unique=False)
    op.create_index(op.f("ix_transactions_date"), "transactions", ["date"], unique=False)

    op.create_table(
        "auto_processing_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_process_income", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_process_expenses", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_amount", sa.Numeric(precision=14, scale=2), nullable=False, server_default="10000"),
        sa.Column("require_confirmation", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("exclude_categories", sa.JSON(), nullable=False),
        sa.Column("processing_time", sa.String(length=5), nullable=True),
        sa.Column("weekends_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notify_after_processing", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("auto_processing_settings")
    op.drop_index(op.f("ix_transactions_date"), table_name="transactions")
    op.drop_index(op.f("ix_transactions_recurring_id"), table_name="transactions")
    op.drop_table("transactions")
    op.drop_index(op.f("ix_recurring_transactions_next_due_date"), table_name="recurring_transactions")
    op.drop_index(op.f("ix_recurring_transactions_category"), table_name="recurring_transactions")
    op.drop_table("recurring_transactions")
