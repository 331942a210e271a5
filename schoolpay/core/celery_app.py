"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from schoolpay.core.config import settings

celery_app = Celery(
    "schoolpay",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "process-subscription-renewals": {
        "task": "billing.process_subscription_renewals",
        "schedule": crontab(hour=settings.RENEWAL_SCHEDULE_HOUR, minute=0),
    },
}

celery_app.autodiscover_tasks(["schoolpay.modules.billing"])
