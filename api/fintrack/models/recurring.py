import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from fintrack.core.database import Base


class RecurringTransaction(Base):
    """Template for a repeating income / expense entry and its schedule."""
    __tablename__ = "recurring_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(10))            # income | expense
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    description: Mapped[str] = mapped_column(String(200))
    category: Mapped[str] = mapped_column(String(100), index=True)
    frequency: Mapped[str] = mapped_column(String(20))       # daily | weekly | bi-weekly | monthly | quarterly | yearly
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Scheduler bookkeeping
    process_count: Mapped[int] = mapped_column(Integer, default=0)
    last_processed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_undone: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    has_error: Mapped[bool] = mapped_column(Boolean, default=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Weak back-reference: deleting the definition keeps its transactions
    recurring_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)
    type: Mapped[str] = mapped_column(String(10))
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    category: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String(255))
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AutoProcessingConfig(Base):
    """Single-row table (id=1) holding the unattended processing policy."""
    __tablename__ = "auto_processing_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_process_income: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_process_expenses: Mapped[bool] = mapped_column(Boolean, default=False)
    max_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("10000"))
    require_confirmation: Mapped[bool] = mapped_column(Boolean, default=True)
    exclude_categories: Mapped[list[str]] = mapped_column(JSON, default=list)
    processing_time: Mapped[str | None] = mapped_column(String(5), nullable=True)   # HH:MM
    weekends_only: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_after_processing: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
