"""Unattended recurring-transaction processing.

Runs as a Celery beat task every AUTO_PROCESSING_INTERVAL_MINUTES, plus one
check enqueued AUTO_PROCESSING_STARTUP_DELAY_SECONDS after a worker comes up.
The policy gates (enabled, weekends-only, processing window, confirmation)
live in ``RecurringProcessor.run_auto_processing``; this module only owns the
session and the schedule.
"""

import logging

from celery.result import AsyncResult
from celery.signals import worker_ready

from fintrack.core.config import settings
from fintrack.core.database import SessionLocal
from fintrack.services.stores import processor_for_session
from fintrack.worker import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="fintrack.services.auto_processing.run_auto_processing")
def run_auto_processing() -> int:
    """Run one unattended tick. Returns the number of transactions created."""
    with SessionLocal() as db:
        processed = processor_for_session(db).run_auto_processing()
        db.commit()

    if processed:
        logger.info("Auto-processing created %d transaction(s)", len(processed))
    return len(processed)


def schedule_startup_check(delay_seconds: int | None = None) -> AsyncResult:
    """Enqueue a single tick shortly after startup; revoke the result to cancel it."""
    countdown = settings.auto_processing_startup_delay_seconds if delay_seconds is None else delay_seconds
    return run_auto_processing.apply_async(countdown=countdown)


def cancel_scheduled(result: AsyncResult) -> None:
    """Dispose a pending tick. A tick already running finishes its current item set."""
    result.revoke()


@worker_ready.connect
def _on_worker_ready(sender=None, **kwargs):  # noqa: ANN001
    logger.info(
        "Worker ready — recurring auto-processing check in %ds",
        settings.auto_processing_startup_delay_seconds,
    )
    schedule_startup_check()
