from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from shopwatch.core.config import settings
from shopwatch.core.errors import PayloadError
from shopwatch.db.model.webhook_job import WebhookJob
from shopwatch.db.session import SessionLocal
from shopwatch.integrations.shopify.shopify_client import ShopifyClient
from shopwatch.orchestration.scheduler import ProcessorScheduler
from shopwatch.repository import job_repo, shop_repo
from shopwatch.repository.sales_repo import DbSalesVelocityProvider
from shopwatch.repository.shop_repo import DbScopeStore, DbShopSettingsProvider
from shopwatch.services import topics as t
from shopwatch.services.change_detection.engine import ChangeDetectionEngine, DetectionResult, JobContext
from shopwatch.services.interfaces import NotificationDispatcher
from shopwatch.services.notifications import LoggingDispatcher, dispatch_alerts
from shopwatch.services.payloads import parse_payload, resource_id_for
from shopwatch.utils.clock import now_utc

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Session, str], ChangeDetectionEngine]

# topics whose handlers ask the events API for the author
AUTHOR_LOOKUP_TOPICS = frozenset({
    t.PRODUCTS_CREATE, t.PRODUCTS_UPDATE, t.COLLECTIONS_CREATE, t.COLLECTIONS_UPDATE,
})


@dataclass(slots=True)
class BatchResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    events: int = 0


def default_engine_factory(db: Session, shop: str) -> ChangeDetectionEngine:
    """DB-backed collaborators on the job's session; platform client only when the shop has a token."""
    token = shop_repo.get_access_token(db, shop)
    client = ShopifyClient(shop, token) if token else None
    return ChangeDetectionEngine(
        settings_provider=DbShopSettingsProvider(db),
        velocity_provider=DbSalesVelocityProvider(db),
        client=client,
        scope_store=DbScopeStore(db),
    )



'''
Drains the webhook job table.
  - list ready -> claim each (lost claim = someone else has it, skip)
  - decode + route by topic category -> engine handler
  - handler writes and the job completion commit together
  - any exception: rollback, fail() (retry with backoff or terminal), next job
  - instant alerts go out only after the commit
process_pending never raises.
'''
class JobProcessor:

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        engine_factory: EngineFactory = default_engine_factory,
        dispatcher: Optional[NotificationDispatcher] = None,
        scheduler: Optional[ProcessorScheduler] = None,
        max_retries: Optional[int] = None,
        now: Callable[[], datetime] = now_utc,
    ):
        self.session_factory = session_factory
        self.engine_factory = engine_factory
        self.dispatcher = dispatcher or LoggingDispatcher()
        self.scheduler = scheduler
        self.max_retries = settings.JOB_MAX_RETRIES if max_retries is None else max_retries
        self.now = now

    def process_pending(self, limit: Optional[int] = None) -> BatchResult:
        limit = limit or settings.JOB_BATCH_LIMIT
        result = BatchResult()

        db = self.session_factory()
        try:
            job_ids = [job.id for job in job_repo.list_ready(db, limit, now=self.now())]
        except Exception as e:
            logger.error("jobs.list_failed err=%s: %s", type(e).__name__, e)
            return result
        finally:
            db.close()

        for job_id in job_ids:
            outcome, events = self._run_one(job_id)
            if outcome == "processed":
                result.processed += 1
                result.events += events
            elif outcome == "failed":
                result.failed += 1
            else:
                result.skipped += 1

        if job_ids:
            logger.info("jobs.batch processed=%s failed=%s skipped=%s events=%s",
                        result.processed, result.failed, result.skipped, result.events)

        # a full batch probably left more behind
        if len(job_ids) >= limit and self.scheduler is not None:
            self._request_run(settings.JOB_KICK_DELAY_SEC)
        return result

    def _run_one(self, job_id: str) -> tuple[str, int]:
        db = self.session_factory()
        try:
            if not job_repo.claim(db, job_id, now=self.now()):
                return "skipped", 0

            job = job_repo.get_job(db, job_id)
            if job is None:
                return "skipped", 0
            logger.info("job.claimed job=%s shop=%s topic=%s attempt=%s", job.id, job.shop, job.topic, job.attempts)

            try:
                detection = self.process_job(db, job)
                job_repo.complete(db, job_id, now=self.now())
            except Exception as e:
                db.rollback()
                logger.warning("job.error job=%s err=%s: %s", job_id, type(e).__name__, e)
                job_repo.fail(db, job_id, f"{type(e).__name__}: {e}", max_retries=self.max_retries, now=self.now())
                return "failed", 0

            logger.info("job.completed job=%s events=%s suppressed=%s%s", job_id,
                        len(detection.event_ids), detection.suppressed,
                        f" note={detection.note}" if detection.note else "")
            if detection.alerts:
                dispatch_alerts(self.dispatcher, detection.alerts)
            return "processed", len(detection.event_ids)

        except Exception as e:
            # claim/fail themselves blew up (database gone); the stale sweep recovers the row
            db.rollback()
            logger.error("job.unrecoverable job=%s err=%s: %s", job_id, type(e).__name__, e)
            return "failed", 0
        finally:
            db.close()

    def process_job(self, db: Session, job: WebhookJob) -> DetectionResult:
        topic = t.normalize_topic(job.topic)
        if not t.is_handled_topic(topic):
            logger.info("job.unhandled_topic job=%s topic=%s", job.id, topic)
            return DetectionResult(note="unhandled_topic")

        try:
            raw = json.loads(job.payload)
        except (TypeError, ValueError) as e:
            raise PayloadError(f"payload is not JSON: {e}") from e
        payload = parse_payload(topic, raw)

        ctx = JobContext(
            shop=job.shop,
            topic=topic,
            verb=t.topic_verb(topic),
            job_key=job.webhook_id or f"job-{job.id}",
        )
        engine = self.engine_factory(db, job.shop)
        handler = route(engine, t.topic_category(topic), ctx.verb)
        return handler(db, payload, ctx)

    def _request_run(self, delay: float) -> None:
        try:
            self.scheduler.request_run(delay)
        except Exception as e:
            logger.warning("scheduler.request_failed err=%s: %s", type(e).__name__, e)


def route(engine: ChangeDetectionEngine, category: t.TopicCategory, verb: str):
    if category is t.TopicCategory.PRODUCT:
        return {
            "create": engine.handle_product_create,
            "update": engine.handle_product_update,
            "delete": engine.handle_product_delete,
        }[verb]
    return {
        t.TopicCategory.COLLECTION: engine.handle_collection,
        t.TopicCategory.INVENTORY: engine.handle_inventory_update,
        t.TopicCategory.THEME: engine.handle_theme_publish,
        t.TopicCategory.DISCOUNT: engine.handle_discount,
        t.TopicCategory.DOMAIN: engine.handle_domain,
        t.TopicCategory.APP_SCOPES: engine.handle_scopes_update,
    }[category]



'''
Ingestion entry point (webhook receiver, replays):
  1) persist the job (duplicate webhook id -> None, nothing else happens)
  2) ask the scheduler for a processing pass
Topics that look up the author are delayed so the events API has caught up.
'''
def enqueue_webhook(
    db: Session,
    *,
    shop: str,
    topic: str,
    payload: Any,
    webhook_id: Optional[str] = None,
    scheduler: Optional[ProcessorScheduler] = None,
) -> Optional[str]:
    canonical = t.normalize_topic(topic)
    delay = settings.EVENTS_API_DELAY_SEC if canonical in AUTHOR_LOOKUP_TOPICS else 0

    job_id = job_repo.enqueue(
        db,
        shop=shop,
        topic=canonical,
        payload=payload,
        resource_id=resource_id_for(canonical, payload),
        webhook_id=webhook_id,
        delay_seconds=delay,
    )
    if job_id is None or scheduler is None:
        return job_id

    try:
        scheduler.request_run(delay + settings.JOB_KICK_DELAY_SEC)
    except Exception as e:
        # the job is durable; the next beat pass picks it up
        logger.warning("scheduler.request_failed job=%s err=%s: %s", job_id, type(e).__name__, e)
    return job_id
