from celery import Celery
from celery.schedules import crontab

from callsync.core.config import settings
from callsync.core.logging import setup_logging

celery_app = Celery(
    "callsync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["callsync.tasks"],
)

setup_logging()

# Each batch runs hourly, offset so the batches spread over the hour.
batch_offset = 60 // settings.auto_sync_batches
celery_app.conf.beat_schedule = {
    **{
        f"auto-sync-batch-{batch}": {
            "task": "callsync.tasks.sync_account_batch",
            "schedule": crontab(minute=batch_offset * (batch - 1)),
            "kwargs": {"batch": batch},
        }
        for batch in range(1, settings.auto_sync_batches + 1)
    },
    "refresh-expiring-tokens": {
        "task": "callsync.tasks.refresh_tokens",
        "schedule": settings.sync_schedule_seconds,
    },
    "purge-sync-runs-daily": {
        "task": "callsync.tasks.purge_sync_runs",
        "schedule": crontab(hour=3, minute=30),
    },
}
