"""
Tests for the recurring router's error reporting, without an HTTP client.

Run with:
    pytest api/tests/routers/test_recurring_router.py -v
"""
from datetime import timedelta
from decimal import Decimal

from fintrack.models.recurring import RecurringTransaction
from fintrack.routers.recurring import failure_detail
from fintrack.services.locks import LocalLockProvider
from fintrack.services.stores import definition_from_row, processor_for_session
from recurring_fakes import RecordingNotifier, utc

NOT_PROCESSED = "Recurring transaction was not processed: not due or in use by another run"


# ── failure_detail ───────────────────────────────────────────────────────────

class TestFailureDetail:
    def test_error_recorded_by_this_attempt(self):
        attempted_at = utc(2024, 1, 5, 12, 0)
        rec = RecurringTransaction(has_error=True, last_error="disk full", last_error_date=attempted_at)
        assert failure_detail(rec, attempted_at) == "disk full"

    def test_stale_error_is_not_reported(self):
        attempted_at = utc(2024, 1, 5, 12, 0)
        rec = RecurringTransaction(
            has_error=True, last_error="disk full", last_error_date=attempted_at - timedelta(days=3)
        )
        assert failure_detail(rec, attempted_at) == NOT_PROCESSED

    def test_naive_timestamp_is_utc(self):
        attempted_at = utc(2024, 1, 5, 12, 0)
        rec = RecurringTransaction(
            has_error=True, last_error="Invalid amount", last_error_date=attempted_at.replace(tzinfo=None)
        )
        assert failure_detail(rec, attempted_at) == "Invalid amount"

    def test_no_error(self):
        rec = RecurringTransaction(has_error=False, last_error=None, last_error_date=None)
        assert failure_detail(rec, utc(2024, 1, 5)) == NOT_PROCESSED


# ── process endpoint flow over SQLite ────────────────────────────────────────

class TestProcessFailureFlow:
    def _attempt(self, db_session, rec, attempted_at):
        processor = processor_for_session(db_session, notifier=RecordingNotifier(), locks=LocalLockProvider())
        item = processor.process_one(definition_from_row(rec), now=attempted_at)
        db_session.commit()
        db_session.refresh(rec)
        return item

    def test_not_due_with_old_error_reports_not_processed(self, db_session, rent_row):
        rent_row.next_due_date = utc(2024, 3, 1)
        rent_row.has_error = True
        rent_row.last_error = "disk full"
        rent_row.last_error_date = utc(2023, 12, 1)
        db_session.commit()

        attempted_at = utc(2024, 1, 5, 12, 0)
        assert self._attempt(db_session, rent_row, attempted_at) is None
        assert failure_detail(rent_row, attempted_at) == NOT_PROCESSED

    def test_new_validation_error_is_reported(self, db_session, rent_row):
        rent_row.amount = Decimal("0")
        db_session.commit()

        attempted_at = utc(2024, 1, 5, 12, 0)
        assert self._attempt(db_session, rent_row, attempted_at) is None
        assert failure_detail(rent_row, attempted_at) == "Invalid amount"
