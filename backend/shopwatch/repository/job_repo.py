from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Session

from shopwatch.core.config import settings
from shopwatch.db.model.webhook_job import WebhookJob, TERMINAL_STATUSES
from shopwatch.db.upsert import dialect_insert
from shopwatch.utils.backoff import calc_next_delay
from shopwatch.utils.clock import now_utc

logger = logging.getLogger(__name__)

ERROR_MAX_LEN = 2000


@dataclass(slots=True)
class FailOutcome:
    job_id: str
    status: str                 # "pending" (retry scheduled) / "failed" (terminal) / "missing"
    attempts: int
    retry_in_seconds: Optional[int] = None


def _truncate(msg: str) -> str:
    return msg[:ERROR_MAX_LEN] + "…" if len(msg) > ERROR_MAX_LEN else msg



'''
Persist one job. Duplicate webhook_id (same delivery seen before) is absorbed:
   - INSERT ... ON CONFLICT (webhook_id) DO NOTHING
   - returns None for the duplicate, the new job id otherwise
'''
def enqueue(
    db: Session,
    *,
    shop: str,
    topic: str,
    payload: Any,
    resource_id: Optional[str] = None,
    webhook_id: Optional[str] = None,
    delay_seconds: float = 0,
    now: Optional[datetime] = None,
) -> Optional[str]:
    now = now or now_utc()
    job_id = uuid.uuid4().hex
    body = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)

    stmt = (
        dialect_insert(db, WebhookJob)
        .values(
            id=job_id,
            shop=shop,
            topic=topic,
            resource_id=resource_id,
            payload=body,
            webhook_id=webhook_id,
            status="pending",
            attempts=0,
            process_at=now + timedelta(seconds=max(0.0, float(delay_seconds))),
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=["webhook_id"])
    )
    result = db.execute(stmt)
    db.commit()

    if result.rowcount == 0:
        logger.info("job.duplicate shop=%s topic=%s webhook_id=%s", shop, topic, webhook_id)
        return None

    logger.info("job.enqueued job=%s shop=%s topic=%s resource=%s", job_id, shop, topic, resource_id)
    return job_id



'''
Atomic claim: a single conditional UPDATE guarded by status='pending'.
Of any number of concurrent callers exactly one sees rowcount == 1.
'''
def claim(db: Session, job_id: str, *, now: Optional[datetime] = None) -> bool:
    stmt = (
        sa.update(WebhookJob)
        .where(WebhookJob.id == job_id, WebhookJob.status == "pending")
        .values(
            status="processing",
            attempts=WebhookJob.attempts + 1,
            claimed_at=now or now_utc(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()

    claimed = result.rowcount == 1
    if not claimed:
        logger.debug("job.claim_lost job=%s", job_id)
    return claimed



'''
processing -> completed. Commits whatever else the session holds (snapshots, events),
so a job's effects and its completion land in one transaction.
'''
def complete(db: Session, job_id: str, *, now: Optional[datetime] = None) -> bool:
    stmt = (
        sa.update(WebhookJob)
        .where(WebhookJob.id == job_id, WebhookJob.status == "processing")
        .values(status="completed", completed_at=now or now_utc(), error=None)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()

    if result.rowcount == 0:
        logger.warning("job.complete_noop job=%s (not processing)", job_id)
        return False
    return True



'''
Record a failure for a claimed job.
   - attempts <= max_retries: back to pending at now + base * 2^(attempts-1)  (2s, 4s, 8s)
   - otherwise: terminal failed, logged at ERROR for operators
'''
def fail(
    db: Session,
    job_id: str,
    error: str,
    *,
    max_retries: Optional[int] = None,
    now: Optional[datetime] = None,
) -> FailOutcome:
    max_retries = settings.JOB_MAX_RETRIES if max_retries is None else max_retries
    now = now or now_utc()

    attempts = db.execute(
        sa.select(WebhookJob.attempts).where(WebhookJob.id == job_id)
    ).scalar_one_or_none()
    if attempts is None:
        logger.warning("job.fail_missing job=%s", job_id)
        return FailOutcome(job_id=job_id, status="missing", attempts=0)

    msg = _truncate(error or "unknown error")

    if attempts <= max_retries:
        delay = calc_next_delay(attempts, settings.JOB_BACKOFF_BASE_SEC, settings.JOB_BACKOFF_MAX_SEC)
        values: Dict[str, Any] = dict(
            status="pending",
            error=msg,
            process_at=now + timedelta(seconds=delay),
            claimed_at=None,
        )
        outcome = FailOutcome(job_id=job_id, status="pending", attempts=attempts, retry_in_seconds=delay)
    else:
        values = dict(status="failed", error=msg, claimed_at=None, completed_at=now)
        outcome = FailOutcome(job_id=job_id, status="failed", attempts=attempts)

    db.execute(
        sa.update(WebhookJob)
        .where(WebhookJob.id == job_id, WebhookJob.status == "processing")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if outcome.status == "failed":
        logger.error("job.abandoned job=%s attempts=%s error=%s", job_id, attempts, msg)
    else:
        logger.warning("job.retry_scheduled job=%s attempts=%s retry_in=%ss error=%s",
                       job_id, attempts, outcome.retry_in_seconds, msg)
    return outcome



# pending and due, oldest first
def list_ready(db: Session, limit: int = 20, *, now: Optional[datetime] = None) -> List[WebhookJob]:
    stmt = (
        sa.select(WebhookJob)
        .where(WebhookJob.status == "pending", WebhookJob.process_at <= (now or now_utc()))
        .order_by(WebhookJob.created_at.asc(), WebhookJob.id.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())



# retention: only terminal rows are ever deleted, aged from when they finished
def sweep(db: Session, max_age_days: Optional[int] = None, *, now: Optional[datetime] = None) -> int:
    days = settings.JOB_RETENTION_DAYS if max_age_days is None else max_age_days
    cutoff = (now or now_utc()) - timedelta(days=days)
    result = db.execute(
        sa.delete(WebhookJob)
        .where(
            WebhookJob.status.in_(TERMINAL_STATUSES),
            sa.func.coalesce(WebhookJob.completed_at, WebhookJob.created_at) < cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("job.sweep deleted=%s cutoff=%s", result.rowcount, cutoff.isoformat())
    return result.rowcount or 0



'''
Crashed-worker recovery: processing rows whose claim is older than the timeout
go back to pending, or to failed when the retry budget is already spent.
'''
def reclaim_stale(
    db: Session,
    stale_after_seconds: Optional[int] = None,
    *,
    max_retries: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    stale_after = settings.JOB_STALE_AFTER_SEC if stale_after_seconds is None else stale_after_seconds
    max_retries = settings.JOB_MAX_RETRIES if max_retries is None else max_retries
    now = now or now_utc()
    cutoff = now - timedelta(seconds=stale_after)

    stale = sa.and_(WebhookJob.status == "processing", WebhookJob.claimed_at < cutoff)

    abandoned = db.execute(
        sa.update(WebhookJob)
        .where(stale, WebhookJob.attempts > max_retries)
        .values(status="failed", error="stale claim; retry budget exhausted", claimed_at=None, completed_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount or 0

    requeued = db.execute(
        sa.update(WebhookJob)
        .where(stale, WebhookJob.attempts <= max_retries)
        .values(status="pending", error="stale claim reclaimed", process_at=now, claimed_at=None)
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    db.commit()

    if abandoned:
        logger.error("job.stale_abandoned count=%s", abandoned)
    if requeued:
        logger.warning("job.stale_requeued count=%s", requeued)
    return {"requeued": requeued, "failed": abandoned}


def get_job(db: Session, job_id: str) -> Optional[WebhookJob]:
    return db.get(WebhookJob, job_id, populate_existing=True)


def count_by_status(db: Session) -> Dict[str, int]:
    rows = db.execute(
        sa.select(WebhookJob.status, sa.func.count()).group_by(WebhookJob.status)
    ).all()
    return {status: int(n) for status, n in rows}
