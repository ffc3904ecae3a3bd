"""
Periodic digest hand-off.

For every installed shop with an alert email and undigested events in the window:
  1) collect at most DIGEST_MAX_EVENTS events, newest first
  2) mark them digested (conditional on digested_at IS NULL, so a concurrent run
     gets nothing for the same rows)
  3) hand the batch to the dispatcher
  4) commit when the dispatcher accepted it, roll back otherwise (events stay pending)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from shopwatch.core.config import settings
from shopwatch.db.model.change_event import ChangeEvent
from shopwatch.repository import change_event_repo, shop_repo
from shopwatch.services.change_detection.policy import ACTIVITY_EVENT_TYPES, EventType
from shopwatch.services.context_enricher import parse_context_data
from shopwatch.services.interfaces import DigestBatch, DigestItem, NotificationDispatcher
from shopwatch.utils.clock import hours_ago, now_utc

logger = logging.getLogger(__name__)

# activity-log rows are browsable through the changes API but too noisy for email
DIGEST_EVENT_TYPES = tuple(e.value for e in EventType if e.value not in ACTIVITY_EVENT_TYPES)


@dataclass(slots=True)
class DigestRunResult:
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    events: int = 0


def _to_item(event: ChangeEvent) -> DigestItem:
    context = parse_context_data(event.context_data)
    return DigestItem(
        event_id=event.id,
        event_type=event.event_type,
        resource_name=event.resource_name,
        before_value=event.before_value,
        after_value=event.after_value,
        importance=event.importance,
        detected_at=event.detected_at,
        summary=context.summary if context else None,
        money_saved=float(event.money_saved) if event.money_saved is not None else None,
    )


def collect_digest(
    db: Session,
    shop: str,
    email: str,
    *,
    now: Optional[datetime] = None,
    window_hours: Optional[int] = None,
    max_events: Optional[int] = None,
) -> Optional[DigestBatch]:
    now = now or now_utc()
    start = hours_ago(window_hours or settings.DIGEST_WINDOW_HOURS, now=now)
    events = change_event_repo.list_events(
        db, shop,
        since=start,
        until=None,
        event_types=DIGEST_EVENT_TYPES,
        undigested_only=True,
        limit=max_events or settings.DIGEST_MAX_EVENTS,
    )
    if not events:
        return None
    return DigestBatch(shop=shop, email=email, window_start=start, window_end=now,
                       items=[_to_item(e) for e in events])


def deliver_pending_digests(
    session_factory: Callable[[], Session],
    dispatcher: NotificationDispatcher,
    *,
    now: Optional[datetime] = None,
) -> DigestRunResult:
    now = now or now_utc()
    result = DigestRunResult()
    since = hours_ago(settings.DIGEST_WINDOW_HOURS, now=now)

    db = session_factory()
    try:
        shops = change_event_repo.shops_with_undigested(db, since)
        recipients = shop_repo.list_digest_recipients(db, shops)
    finally:
        db.close()

    for shop in shops:
        email = recipients.get(shop)
        if not email:
            result.skipped += 1
            continue

        db = session_factory()
        try:
            batch = collect_digest(db, shop, email, now=now)
            if batch is None:
                result.skipped += 1
                continue

            marked = set(change_event_repo.mark_digested(db, [i.event_id for i in batch.items], now=now))
            batch.items = [i for i in batch.items if i.event_id in marked]
            if not batch.items:
                # another run got there first
                db.rollback()
                result.skipped += 1
                continue

            if dispatcher.send_digest(batch):
                db.commit()
                result.sent += 1
                result.events += len(batch.items)
                logger.info("digest.sent shop=%s events=%s", shop, len(batch.items))
            else:
                db.rollback()
                result.failed += 1
                logger.warning("digest.rejected shop=%s events=%s (left pending)", shop, len(batch.items))
        except Exception as e:
            db.rollback()
            result.failed += 1
            logger.error("digest.failed shop=%s err=%s: %s", shop, type(e).__name__, e)
        finally:
            db.close()

    logger.info("digest.run sent=%s skipped=%s failed=%s events=%s",
                result.sent, result.skipped, result.failed, result.events)
    return result


def purge_digested_events(db: Session, *, older_than_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
    days = older_than_days or settings.EVENT_RETENTION_DAYS
    deleted = change_event_repo.purge_expired(db, days, activity_types=ACTIVITY_EVENT_TYPES, now=now)
    db.commit()
    if deleted:
        logger.info("events.purged count=%s older_than_days=%s", deleted, days)
    return deleted


