from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from aegis.common.logging import setup_logging
from aegis.config import settings

app = Celery(
    "aegis",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "aegis.tasks.escrow_tasks.*": {"queue": "escrow"},
    },
    beat_schedule={
        "check-escrow-timelocks": {
            "task": "aegis.tasks.escrow_tasks.check_all_timelocks",
            "schedule": crontab(minute=f"*/{settings.TIMELOCK_POLL_MINUTES}"),
        },
    },
)

app.autodiscover_tasks(["aegis.tasks.escrow_tasks"])


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    setup_logging()
