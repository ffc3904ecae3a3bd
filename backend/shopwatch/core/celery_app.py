# Worker + beat for the webhook pipeline

from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue
from shopwatch.core.config import settings
from shopwatch.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)


def _cron(expr: str) -> crontab:
    """'m h dom mon dow' -> crontab"""
    minute, hour, day_of_month, month_of_year, day_of_week = expr.split()
    return crontab(minute=minute, hour=hour, day_of_month=day_of_month,
                   month_of_year=month_of_year, day_of_week=day_of_week)


'''
Celery app
   - beat: 1 instance
   - worker "jobs" queue: processing passes (single flight, low concurrency is enough)
   - worker "maintenance" queue: reclaim / retention / digest
'''
celery_app = Celery(
    "shopwatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "shopwatch.orchestration.tasks",
    ],
)


celery_app.conf.update(
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_track_started=True,
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,    # one pass at a time per worker process
    task_acks_late=True,             # a crashed pass is redelivered; claims make that safe
    broker_heartbeat=30,
    broker_pool_limit=10,
)


celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("jobs", Exchange("jobs"), routing_key="jobs"),
    Queue("maintenance", Exchange("maintenance"), routing_key="maintenance"),
)


celery_app.conf.task_routes = {
    "shopwatch.orchestration.tasks.process_jobs": {"queue": "jobs"},
    "shopwatch.orchestration.tasks.reclaim_stale_jobs": {"queue": "maintenance"},
    "shopwatch.orchestration.tasks.sweep_retention": {"queue": "maintenance"},
    "shopwatch.orchestration.tasks.send_digests": {"queue": "maintenance"},
}


celery_app.conf.beat_schedule = {

    # safety net: jobs whose kick was lost (redis/broker hiccup) still get processed
    "jobs-process-pending": {
        "task": "shopwatch.orchestration.tasks.process_jobs",
        "schedule": 60,  # seconds
    },

    "jobs-reclaim-stale": {
        "task": "shopwatch.orchestration.tasks.reclaim_stale_jobs",
        "schedule": max(60, settings.JOB_STALE_AFTER_SEC // 2),
    },

    "retention-sweep": {
        "task": "shopwatch.orchestration.tasks.sweep_retention",
        "schedule": _cron(settings.CRON_RETENTION_SWEEP),
    },

    "daily-digest": {
        "task": "shopwatch.orchestration.tasks.send_digests",
        "schedule": _cron(settings.CRON_DAILY_DIGEST),
    },
}
