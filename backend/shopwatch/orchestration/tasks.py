# feature: Celery entry points for the webhook pipeline
#   - process_jobs: one processing pass (dispatched by CeleryScheduler, plus a beat safety net)
#   - reclaim_stale_jobs / sweep_retention / send_digests: periodic maintenance (beat)

from __future__ import annotations
import logging
from dataclasses import asdict

from celery import shared_task

from shopwatch.core.config import settings
from shopwatch.db.session import SessionLocal
from shopwatch.orchestration.job_processor import JobProcessor
from shopwatch.orchestration.scheduler import CeleryScheduler, redis_client
from shopwatch.repository import job_repo
from shopwatch.services.digest import deliver_pending_digests, purge_digested_events
from shopwatch.services.notifications import LoggingDispatcher

logger = logging.getLogger(__name__)


def celery_scheduler() -> CeleryScheduler:
    return CeleryScheduler(process_jobs, redis_client())


@shared_task(name="shopwatch.orchestration.tasks.process_jobs")
def process_jobs(limit: int | None = None):
    processor = JobProcessor(SessionLocal, scheduler=celery_scheduler())
    return asdict(processor.process_pending(limit))


@shared_task(name="shopwatch.orchestration.tasks.reclaim_stale_jobs")
def reclaim_stale_jobs():
    db = SessionLocal()
    try:
        counts = job_repo.reclaim_stale(db, settings.JOB_STALE_AFTER_SEC)
    finally:
        db.close()
    if counts["requeued"]:
        celery_scheduler().request_run(0)
    return counts


@shared_task(name="shopwatch.orchestration.tasks.sweep_retention")
def sweep_retention():
    db = SessionLocal()
    try:
        jobs = job_repo.sweep(db, settings.JOB_RETENTION_DAYS)
        events = purge_digested_events(db, older_than_days=settings.EVENT_RETENTION_DAYS)
    finally:
        db.close()
    logger.info("retention.swept jobs=%s events=%s", jobs, events)
    return {"jobs": jobs, "events": events}


@shared_task(name="shopwatch.orchestration.tasks.send_digests")
def send_digests():
    return asdict(deliver_pending_digests(SessionLocal, LoggingDispatcher()))
