''' Ops endpoints for the job queue (process now, counts, reclaim, sweep, digests) '''

from dataclasses import asdict
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from shopwatch.api.v1.deps import get_session_factory
from shopwatch.core.config import settings
from shopwatch.db.session import get_db
from shopwatch.orchestration.job_processor import JobProcessor
from shopwatch.repository import job_repo
from shopwatch.services.auth_service import require_ops_token
from shopwatch.services.digest import deliver_pending_digests, purge_digested_events
from shopwatch.services.notifications import LoggingDispatcher


router = APIRouter(
    prefix="/ops",
    tags=["ops"],
    dependencies=[Depends(require_ops_token)],
)


#=================== job queue ==================== #

''' run one processing pass inline (replaces the external cron call) '''
@router.post("/jobs/process")
def ops_process_now(
    limit: Optional[int] = Query(None, ge=1, le=500),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    result = JobProcessor(session_factory).process_pending(limit)
    return asdict(result)


@router.get("/jobs/counts")
def ops_job_counts(db: Session = Depends(get_db)):
    return {"counts": job_repo.count_by_status(db)}


''' processing rows stuck longer than the timeout -> pending (or failed when out of retries) '''
@router.post("/jobs/reclaim")
def ops_reclaim_stale(
    stale_after_seconds: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
):
    return job_repo.reclaim_stale(db, stale_after_seconds or settings.JOB_STALE_AFTER_SEC)


@router.post("/jobs/sweep")
def ops_sweep(
    max_age_days: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
):
    deleted = job_repo.sweep(db, max_age_days or settings.JOB_RETENTION_DAYS)
    events = purge_digested_events(db)
    return {"jobs_deleted": deleted, "events_deleted": events}


#=================== digests ==================== #

@router.post("/digests/send")
def ops_send_digests(session_factory: Callable[[], Session] = Depends(get_session_factory)):
    return asdict(deliver_pending_digests(session_factory, LoggingDispatcher()))
