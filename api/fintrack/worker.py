from datetime import timedelta

from celery import Celery

from fintrack.core.config import settings

celery_app = Celery(
    "fintrack",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# ─── Scheduled tasks ──────────────────────────
celery_app.conf.beat_schedule = {
    "recurring-auto-processing": {
        "task": "fintrack.services.auto_processing.run_auto_processing",
        # task applies the weekend / time-of-day gates itself
        "schedule": timedelta(minutes=settings.auto_processing_interval_minutes),
    },
}

# Explicitly include task modules so the worker registers them on startup.
celery_app.conf.include = [
    "fintrack.services.auto_processing",
]
