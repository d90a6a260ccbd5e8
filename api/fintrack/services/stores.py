"""
SQLAlchemy-backed stores for the recurring processor.

All three stores share one sync ``Session``; the caller owns the outer
transaction (commit / rollback).  ``processor_for_session`` wires them into a
``RecurringProcessor`` with a SAVEPOINT per materialization, so a failed
ledger insert or a lost compare-and-swap never leaves half a write behind.

From async routers use ``await db.run_sync(lambda s: processor_for_session(s).due())``.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fintrack.core.config import settings
from fintrack.core.redis import get_redis
from fintrack.models.recurring import AutoProcessingConfig, RecurringTransaction, Transaction
from fintrack.services.errors import StoreError
from fintrack.services.locks import LockProvider, RedisLockProvider
from fintrack.services.notifications import NotificationService
from fintrack.services.recurring_processor import (
    AutoProcessingSettings,
    MaterializedTransaction,
    NotificationSink,
    RecurringDefinition,
    RecurringProcessor,
)

logger = logging.getLogger(__name__)

_SETTINGS_ROW_ID = 1

_DEFINITION_FIELDS = frozenset({
    "type", "amount", "description", "category", "frequency", "start_date",
    "next_due_date", "is_active", "process_count", "last_processed", "last_undone",
    "has_error", "last_error", "last_error_date",
})


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _aware(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return _aware(dt).astimezone(timezone.utc)


def definition_from_row(row: RecurringTransaction) -> RecurringDefinition:
    return RecurringDefinition(
        id=str(row.id),
        type=row.type,
        amount=row.amount,
        description=row.description,
        category=row.category,
        frequency=row.frequency,
        next_due_date=_aware(row.next_due_date),
        is_active=bool(row.is_active),
        process_count=row.process_count or 0,
        last_processed=_aware(row.last_processed),
        has_error=bool(row.has_error),
        last_error=row.last_error,
        last_error_date=_aware(row.last_error_date),
        last_undone=_aware(row.last_undone),
        start_date=_aware(row.start_date),
    )


def transaction_from_row(row: Transaction) -> MaterializedTransaction:
    return MaterializedTransaction(
        id=str(row.id),
        recurring_id=str(row.recurring_id) if row.recurring_id else None,
        type=row.type,
        amount=row.amount,
        category=row.category,
        description=row.description,
        date=_aware(row.date),
        is_recurring=bool(row.is_recurring),
    )


# ─── Stores ──────────────────────────────────────────────────────────────────

class SqlTransactionStore:
    def __init__(self, session: Session):
        self._db = session

    def append(self, transaction: MaterializedTransaction) -> MaterializedTransaction:
        row = Transaction(
            recurring_id=_as_uuid(transaction.recurring_id),
            type=transaction.type,
            amount=transaction.amount,
            category=transaction.category,
            description=transaction.description,
            date=_utc(transaction.date),
            is_recurring=transaction.is_recurring,
        )
        self._db.add(row)
        self._db.flush()
        return transaction_from_row(row)

    def remove_by_id(self, transaction_id: str) -> bool:
        tid = _as_uuid(transaction_id)
        row = self._db.get(Transaction, tid) if tid else None
        if row is None:
            return False
        self._db.delete(row)
        self._db.flush()
        return True

    def list_all(self) -> list[MaterializedTransaction]:
        rows = self._db.execute(select(Transaction).order_by(Transaction.date)).scalars().all()
        return [transaction_from_row(r) for r in rows]


class SqlRecurringDefinitionStore:
    def __init__(self, session: Session):
        self._db = session

    def list_all(self) -> list[RecurringDefinition]:
        rows = self._db.execute(
            select(RecurringTransaction).order_by(RecurringTransaction.next_due_date)
        ).scalars().all()
        return [definition_from_row(r) for r in rows]

    def get_by_id(self, recurring_id: str) -> RecurringDefinition | None:
        rid = _as_uuid(recurring_id)
        row = self._db.get(RecurringTransaction, rid) if rid else None
        return definition_from_row(row) if row else None

    def update(
        self,
        recurring_id: str,
        fields: dict[str, Any],
        expected_next_due_date: datetime | None = None,
    ) -> bool:
        rid = _as_uuid(recurring_id)
        if rid is None:
            return False

        unknown = set(fields) - _DEFINITION_FIELDS
        if unknown:
            raise StoreError(f"Unknown recurring fields: {', '.join(sorted(unknown))}")

        values = {k: _utc(v) if isinstance(v, datetime) else v for k, v in fields.items()}
        stmt = update(RecurringTransaction).where(RecurringTransaction.id == rid)
        if expected_next_due_date is not None:
            stmt = stmt.where(RecurringTransaction.next_due_date == _utc(expected_next_due_date))

        result = self._db.execute(stmt.values(**values).execution_options(synchronize_session="fetch"))
        return result.rowcount == 1


class SqlSettingsProvider:
    def __init__(self, session: Session):
        self._db = session

    def load(self) -> AutoProcessingSettings:
        try:
            row = self._db.get(AutoProcessingConfig, _SETTINGS_ROW_ID)
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not load auto-processing settings: {exc}") from exc
        if row is None:
            return AutoProcessingSettings()
        return AutoProcessingSettings(
            enabled=row.enabled,
            auto_process_income=row.auto_process_income,
            auto_process_expenses=row.auto_process_expenses,
            max_amount=row.max_amount,
            require_confirmation=row.require_confirmation,
            exclude_categories=list(row.exclude_categories or []),
            processing_time=row.processing_time,
            weekends_only=row.weekends_only,
            notify_after_processing=row.notify_after_processing,
        )

    def save(self, policy: AutoProcessingSettings) -> bool:
        try:
            row = self._db.get(AutoProcessingConfig, _SETTINGS_ROW_ID)
            if row is None:
                row = AutoProcessingConfig(id=_SETTINGS_ROW_ID)
                self._db.add(row)
            row.enabled = policy.enabled
            row.auto_process_income = policy.auto_process_income
            row.auto_process_expenses = policy.auto_process_expenses
            row.max_amount = policy.max_amount
            row.require_confirmation = policy.require_confirmation
            row.exclude_categories = list(policy.exclude_categories)
            row.processing_time = policy.processing_time
            row.weekends_only = policy.weekends_only
            row.notify_after_processing = policy.notify_after_processing
            self._db.flush()
        except SQLAlchemyError as exc:
            logger.error("Saving auto-processing settings failed: %s", exc)
            return False
        return True


# ─── Wiring ──────────────────────────────────────────────────────────────────

def processor_for_session(
    session: Session,
    notifier: NotificationSink | None = None,
    locks: LockProvider | None = None,
) -> RecurringProcessor:
    """Build a processor whose stores all write through ``session``."""
    return RecurringProcessor(
        transactions=SqlTransactionStore(session),
        definitions=SqlRecurringDefinitionStore(session),
        settings_provider=SqlSettingsProvider(session),
        notifier=notifier or NotificationService(),
        locks=locks or RedisLockProvider(
            get_redis(),
            timeout_seconds=settings.recurring_lock_timeout_seconds,
            wait_seconds=settings.recurring_lock_wait_seconds,
        ),
        atomic=session.begin_nested,
        timezone_name=settings.auto_processing_timezone,
        processing_window=timedelta(minutes=settings.processing_window_minutes),
        upcoming_days=settings.upcoming_days,
    )
