"""
Recurring transaction processor.

Turns due recurring definitions into ledger transactions and keeps each
definition's schedule in step:

  due / upcoming: read-only views over the definition store
  process_one: materialize one definition and advance next_due_date
  process_all_due: manual "process all", ignores auto-processing policy
  process_selected: manual bulk run over chosen ids, reports per-item errors
  run_auto_processing: unattended tick, gated by AutoProcessingSettings
  undo: remove one materialized transaction, rewind the schedule
  history: materialized transactions of one definition, newest first

All collaborators (stores, settings, notifications, locks, clock) are injected.
Every materialization runs under a per-definition lock, re-reads the definition,
and performs the ledger insert plus the schedule advance inside one
``atomic()`` block whose advance is a compare-and-swap on next_due_date.
"""
import logging
import math
import re
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, ContextManager, Iterable, Iterator, Protocol

import pytz

from fintrack.core.redis import recurring_lock_key
from fintrack.services.errors import (
    ConfigurationError,
    DefinitionNotFound,
    LockUnavailable,
    NotDue,
    RecurringProcessingError,
    ScheduleConflict,
    StoreError,
    ValidationError,
)
from fintrack.services.locks import LocalLockProvider, LockProvider
from fintrack.services.schedule import advance, retreat

logger = logging.getLogger(__name__)

AUTO_GENERATED_SUFFIX = " (Auto-generated)"
DEFAULT_UPCOMING_DAYS = 7

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


# ─── Domain records ──────────────────────────────────────────────────────────

@dataclass
class RecurringDefinition:
    id: str
    type: str                       # income | expense
    amount: Decimal | None
    description: str | None
    category: str | None
    frequency: str | None           # daily | weekly | bi-weekly | monthly | quarterly | yearly
    next_due_date: datetime | None
    is_active: bool = True
    process_count: int = 0
    last_processed: datetime | None = None
    has_error: bool = False
    last_error: str | None = None
    last_error_date: datetime | None = None
    last_undone: datetime | None = None
    start_date: datetime | None = None


@dataclass
class MaterializedTransaction:
    recurring_id: str | None
    type: str
    amount: Decimal
    category: str
    description: str
    date: datetime
    is_recurring: bool = True
    id: str | None = None           # assigned by the transaction store


@dataclass
class AutoProcessingSettings:
    enabled: bool = False
    auto_process_income: bool = True
    auto_process_expenses: bool = False
    max_amount: Decimal = Decimal("10000")
    require_confirmation: bool = True
    exclude_categories: list[str] = field(default_factory=lambda: ["Investments", "Loans"])
    processing_time: str | None = "09:00"   # HH:MM, local to the configured timezone
    weekends_only: bool = False
    notify_after_processing: bool = True

    def processing_time_of_day(self) -> time | None:
        """Parse ``processing_time``; None when the gate is disabled."""
        if not self.processing_time:
            return None
        match = _TIME_OF_DAY.match(self.processing_time.strip())
        if not match:
            raise ConfigurationError(f"Invalid processing time: {self.processing_time!r}")
        return time(int(match.group(1)), int(match.group(2)))


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str]


@dataclass
class ProcessedItem:
    recurring: RecurringDefinition
    transaction: MaterializedTransaction


@dataclass
class ProcessFailure:
    recurring_id: str
    error: str


@dataclass
class BulkResult:
    processed: list[ProcessedItem]
    errors: list[ProcessFailure]


@dataclass
class UpcomingItem:
    recurring: RecurringDefinition
    days_until_due: int


@dataclass
class HistoryEntry:
    id: str
    amount: Decimal
    date: datetime
    description: str


# ─── Collaborator interfaces ─────────────────────────────────────────────────

class TransactionStore(Protocol):
    def append(self, transaction: MaterializedTransaction) -> MaterializedTransaction: ...
    def remove_by_id(self, transaction_id: str) -> bool: ...
    def list_all(self) -> list[MaterializedTransaction]: ...


class RecurringDefinitionStore(Protocol):
    def list_all(self) -> list[RecurringDefinition]: ...
    def get_by_id(self, recurring_id: str) -> RecurringDefinition | None: ...

    def update(
        self,
        recurring_id: str,
        fields: dict[str, Any],
        expected_next_due_date: datetime | None = None,
    ) -> bool:
        """Apply ``fields``; when ``expected_next_due_date`` is given, only if it still matches."""
        ...


class SettingsProvider(Protocol):
    def load(self) -> AutoProcessingSettings: ...
    def save(self, settings: AutoProcessingSettings) -> bool: ...


class NotificationSink(Protocol):
    def notify_summary(self, count: int, total_amount: Decimal) -> None: ...
    def notify_confirmation_needed(self, count: int, total_amount: Decimal) -> None: ...


# ─── Pure helpers ────────────────────────────────────────────────────────────

def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Return ``value`` as an aware datetime (naive means UTC), or None when unreadable."""
    if isinstance(value, str) and value.strip():
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def validate_definition(recurring: RecurringDefinition) -> ValidationResult:
    """Check a definition before materialization, collecting every violated rule."""
    errors: list[str] = []

    if not recurring.is_active:
        errors.append("Transaction is not active")

    if recurring.amount is None or recurring.amount <= 0:
        errors.append("Invalid amount")

    if not recurring.description or not recurring.description.strip():
        errors.append("Description is required")

    if not recurring.category:
        errors.append("Category is required")

    if not recurring.frequency:
        errors.append("Frequency is required")

    if parse_timestamp(recurring.next_due_date) is None:
        errors.append("Invalid due date")

    return ValidationResult(is_valid=not errors, errors=errors)


def is_due(recurring: RecurringDefinition, now: datetime) -> bool:
    due_at = parse_timestamp(recurring.next_due_date)
    return bool(recurring.is_active) and due_at is not None and due_at <= now


def is_auto_eligible(
    recurring: RecurringDefinition,
    policy: AutoProcessingSettings,
    now: datetime,
) -> bool:
    """Due AND inside every unattended-processing policy limit."""
    if not is_due(recurring, now):
        return False
    if recurring.amount is None or recurring.amount > policy.max_amount:
        return False
    if recurring.category in policy.exclude_categories:
        return False
    if recurring.type == "income" and not policy.auto_process_income:
        return False
    if recurring.type == "expense" and not policy.auto_process_expenses:
        return False
    return True


def _total(amounts: Iterable[Decimal | None]) -> Decimal:
    return sum((a or Decimal(0) for a in amounts), Decimal(0))


# ─── Processor ───────────────────────────────────────────────────────────────

class RecurringProcessor:
    def __init__(
        self,
        transactions: TransactionStore,
        definitions: RecurringDefinitionStore,
        settings_provider: SettingsProvider,
        notifier: NotificationSink,
        locks: LockProvider | None = None,
        atomic: Callable[[], ContextManager[Any]] | None = None,
        clock: Callable[[], datetime] = _utc_now,
        timezone_name: str = "UTC",
        processing_window: timedelta = timedelta(minutes=60),
        upcoming_days: int = DEFAULT_UPCOMING_DAYS,
    ):
        self._transactions = transactions
        self._definitions = definitions
        self._settings = settings_provider
        self._notifier = notifier
        self._locks = locks or LocalLockProvider()
        self._atomic = atomic or nullcontext
        self._clock = clock
        self._tz = pytz.timezone(timezone_name)
        self._processing_window = processing_window
        self._upcoming_days = upcoming_days

    # ── Views ────────────────────────────────────────────────────────────────

    def due(self, now: datetime | None = None) -> list[RecurringDefinition]:
        """Active definitions whose next_due_date has been reached."""
        now = now or self._clock()
        return [r for r in self._definitions.list_all() if is_due(r, now)]

    def upcoming(self, days: int | None = None, now: datetime | None = None) -> list[UpcomingItem]:
        """Active definitions coming due within ``days``, soonest first."""
        now = now or self._clock()
        horizon = now + timedelta(days=self._upcoming_days if days is None else days)
        items: list[UpcomingItem] = []
        for recurring in self._definitions.list_all():
            due_at = parse_timestamp(recurring.next_due_date)
            if not recurring.is_active or due_at is None:
                continue
            if now <= due_at <= horizon:
                days_until = math.ceil((due_at - now).total_seconds() / 86400)
                items.append(UpcomingItem(recurring=recurring, days_until_due=days_until))
        items.sort(key=lambda i: i.days_until_due)
        return items

    def auto_eligible(
        self,
        policy: AutoProcessingSettings,
        now: datetime | None = None,
    ) -> list[RecurringDefinition]:
        now = now or self._clock()
        return [r for r in self._definitions.list_all() if is_auto_eligible(r, policy, now)]

    def validate(self, recurring: RecurringDefinition) -> ValidationResult:
        return validate_definition(recurring)

    def history(self, recurring_id: str, limit: int | None = None) -> list[HistoryEntry]:
        """Transactions materialized from ``recurring_id``, newest first."""
        matches = [t for t in self._transactions.list_all() if t.recurring_id == recurring_id]
        matches.sort(key=lambda t: t.date, reverse=True)
        entries = [
            HistoryEntry(id=t.id, amount=t.amount, date=t.date, description=t.description)
            for t in matches
        ]
        return entries[:limit] if limit is not None else entries

    # ── Materialization ──────────────────────────────────────────────────────

    @contextmanager
    def _store_call(self) -> Iterator[None]:
        """Re-raise persistence-layer failures as StoreError."""
        try:
            yield
        except RecurringProcessingError:
            raise
        except Exception as exc:
            raise StoreError(str(exc) or exc.__class__.__name__) from exc

    def _materialize(self, recurring_id: str, now: datetime) -> ProcessedItem:
        with self._locks.hold(recurring_lock_key(recurring_id)):
            with self._store_call():
                current = self._definitions.get_by_id(recurring_id)
            if current is None:
                raise DefinitionNotFound(recurring_id)

            result = validate_definition(current)
            if not result.is_valid:
                raise ValidationError(result.errors)

            if not is_due(current, now):
                raise NotDue(f"Not due until {parse_timestamp(current.next_due_date).isoformat()}")

            due_at = parse_timestamp(current.next_due_date)
            next_due = advance(current.frequency, due_at)
            changes = {
                "next_due_date": next_due,
                "process_count": (current.process_count or 0) + 1,
                "last_processed": now,
                "has_error": False,
                "last_error": None,
                "last_error_date": None,
            }

            with self._store_call(), self._atomic():
                transaction = self._transactions.append(
                    MaterializedTransaction(
                        recurring_id=current.id,
                        type=current.type,
                        amount=current.amount,
                        category=current.category,
                        description=f"{current.description}{AUTO_GENERATED_SUFFIX}",
                        date=now,
                    )
                )
                if not self._definitions.update(current.id, changes, expected_next_due_date=current.next_due_date):
                    raise ScheduleConflict(f"next_due_date of {current.id} changed concurrently")

        for key, value in changes.items():
            setattr(current, key, value)
        logger.info(
            "Processed recurring %s (%s %s) — next due %s",
            current.id, current.type, current.amount, next_due.isoformat(),
        )
        return ProcessedItem(recurring=current, transaction=transaction)

    def _record_failure(self, recurring_id: str, exc: RecurringProcessingError, now: datetime) -> None:
        """Attach the failure to the definition so it shows up in listings."""
        try:
            self._definitions.update(
                recurring_id,
                {"has_error": True, "last_error": str(exc), "last_error_date": now},
            )
        except Exception:
            logger.exception("Could not record processing error on recurring %s", recurring_id)

    def _process_guarded(self, recurring_id: str, now: datetime) -> ProcessedItem:
        """``_materialize`` plus error bookkeeping; re-raises for the caller to collect."""
        try:
            return self._materialize(recurring_id, now)
        except (NotDue, ScheduleConflict, LockUnavailable, DefinitionNotFound) as exc:
            # Not a defect of the definition; leave its error fields alone.
            # A lost compare-and-swap means another actor already processed it.
            logger.info("Skipped recurring %s: %s", recurring_id, exc)
            raise
        except RecurringProcessingError as exc:
            logger.warning("Failed to process recurring %s: %s", recurring_id, exc)
            self._record_failure(recurring_id, exc, now)
            raise

    def process_one(self, recurring: RecurringDefinition, now: datetime | None = None) -> ProcessedItem | None:
        """Materialize one definition. Returns None on any failure (recorded on the definition)."""
        now = now or self._clock()
        try:
            return self._process_guarded(recurring.id, now)
        except RecurringProcessingError:
            return None

    # ── Batch operations ─────────────────────────────────────────────────────

    def process_all_due(self, now: datetime | None = None) -> list[ProcessedItem]:
        """Manual run over every due definition, regardless of auto-processing policy."""
        now = now or self._clock()
        processed = [item for r in self.due(now) if (item := self.process_one(r, now)) is not None]
        if processed:
            self._notifier.notify_summary(len(processed), _total(p.transaction.amount for p in processed))
        return processed

    def process_selected(
        self,
        recurring_ids: Iterable[str],
        notify: bool = True,
        now: datetime | None = None,
    ) -> BulkResult:
        """Manual run over chosen ids; failures are returned, not raised."""
        now = now or self._clock()
        processed: list[ProcessedItem] = []
        errors: list[ProcessFailure] = []

        for recurring_id in recurring_ids:
            try:
                processed.append(self._process_guarded(recurring_id, now))
            except RecurringProcessingError as exc:
                errors.append(ProcessFailure(recurring_id=recurring_id, error=str(exc)))

        if notify and processed:
            self._notifier.notify_summary(len(processed), _total(p.transaction.amount for p in processed))
        return BulkResult(processed=processed, errors=errors)

    # ── Unattended tick ──────────────────────────────────────────────────────

    def _in_processing_window(self, local_now: datetime, start: time) -> bool:
        # A window that began yesterday may still be open shortly after midnight
        for day in (local_now.date(), local_now.date() - timedelta(days=1)):
            # localize() picks the offset valid on that day, not the current one (DST)
            window_start = self._tz.localize(datetime.combine(day, start))
            if window_start <= local_now < window_start + self._processing_window:
                return True
        return False

    def run_auto_processing(self, now: datetime | None = None) -> list[ProcessedItem]:
        """
        Unattended tick. Skips (returns []) when auto-processing is disabled,
        the settings are unreadable, it is a weekday under ``weekends_only``,
        or the clock is outside the processing window.  With
        ``require_confirmation`` the eligible items are only announced.
        """
        now = now or self._clock()

        try:
            policy = self._settings.load()
            start = policy.processing_time_of_day()
        except (ConfigurationError, StoreError) as exc:
            logger.error("Auto-processing skipped — settings unusable: %s", exc)
            return []

        if not policy.enabled:
            logger.debug("Auto-processing is disabled")
            return []

        local_now = now.astimezone(self._tz)

        if policy.weekends_only and local_now.weekday() < 5:
            logger.debug("Auto-processing skipped — weekends only")
            return []

        if start is not None and not self._in_processing_window(local_now, start):
            logger.debug("Auto-processing skipped — outside %s window", policy.processing_time)
            return []

        eligible = self.auto_eligible(policy, now)
        if not eligible:
            return []

        if policy.require_confirmation:
            logger.info("%d recurring transaction(s) awaiting confirmation", len(eligible))
            self._notifier.notify_confirmation_needed(len(eligible), _total(r.amount for r in eligible))
            return []

        processed = [item for r in eligible if (item := self.process_one(r, now)) is not None]
        logger.info("Auto-processing done — %d of %d eligible processed", len(processed), len(eligible))
        if processed and policy.notify_after_processing:
            self._notifier.notify_summary(len(processed), _total(p.transaction.amount for p in processed))
        return processed

    # ── Undo ─────────────────────────────────────────────────────────────────

    def undo(self, recurring_id: str, transaction_id: str, now: datetime | None = None) -> bool:
        """
        Remove ``transaction_id`` and rewind ``recurring_id`` by one period.

        Refused when the transaction exists but was produced by another
        definition.  A transaction that is already gone still rewinds the
        schedule.
        """
        now = now or self._clock()
        try:
            with self._locks.hold(recurring_lock_key(recurring_id)), self._store_call():
                transaction = next(
                    (t for t in self._transactions.list_all() if t.id == transaction_id), None
                )
                if transaction is not None and transaction.recurring_id != recurring_id:
                    logger.warning(
                        "Undo refused: transaction %s belongs to recurring %s, not %s",
                        transaction_id, transaction.recurring_id, recurring_id,
                    )
                    return False

                recurring = self._definitions.get_by_id(recurring_id)
                with self._atomic():
                    self._transactions.remove_by_id(transaction_id)
                    if recurring is not None:
                        due_at = parse_timestamp(recurring.next_due_date)
                        changes: dict[str, Any] = {
                            "process_count": max((recurring.process_count or 0) - 1, 0),
                            "last_undone": now,
                        }
                        if due_at is not None:
                            changes["next_due_date"] = retreat(recurring.frequency, due_at)
                        self._definitions.update(recurring_id, changes)
        except RecurringProcessingError as exc:
            logger.warning("Undo of %s on recurring %s failed: %s", transaction_id, recurring_id, exc)
            return False

        logger.info("Undid transaction %s of recurring %s", transaction_id, recurring_id)
        return True
