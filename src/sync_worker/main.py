"""Celery application for the sync recovery worker."""

from celery import Celery
from celery.schedules import crontab

from storefront_sync.config import get_settings
from storefront_sync.logging_setup import configure_logging

settings = get_settings()
configure_logging(settings)

# Create Celery app
app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.recover_syncs",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="sync",
    task_routes={
        "sync_worker.tasks.*": {"queue": "sync"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Fail stalled runs and schedule retries for failed syncs
    "recover-stale-syncs": {
        "task": "sync_worker.tasks.recover_syncs.recover_stale_syncs",
        "schedule": crontab(minute=f"*/{settings.recover_stale_syncs_interval_minutes}"),
    },
    # Start retries whose backoff has elapsed
    "dispatch-due-retries": {
        "task": "sync_worker.tasks.recover_syncs.dispatch_due_retries",
        "schedule": crontab(minute=f"*/{settings.dispatch_due_retries_interval_minutes}"),
    },
}


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "sync"])


if __name__ == "__main__":
    run()
