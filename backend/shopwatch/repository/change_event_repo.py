from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Session

from shopwatch.db.model.change_event import ChangeEvent
from shopwatch.db.upsert import dialect_insert
from shopwatch.utils.clock import now_utc

logger = logging.getLogger(__name__)

IMPORTANCE_RANK = {"low": 0, "medium": 1, "high": 2}


@dataclass(slots=True)
class NewChangeEvent:
    shop: str
    entity_type: str
    entity_id: str
    event_type: str
    resource_name: str
    before_value: Optional[str]
    after_value: Optional[str]
    importance: str
    idempotency_key: Optional[str] = None
    webhook_id: Optional[str] = None
    topic: Optional[str] = None
    source: str = "webhook"
    author: Optional[str] = None
    diff: Optional[str] = None
    context_data: Optional[str] = None
    money_saved: Optional[Decimal] = None
    instant_alert_sent_at: Optional[datetime] = None
    detected_at: Optional[datetime] = None



'''
Insert one event; ON CONFLICT (idempotency_key) DO NOTHING.
Returns the new id, or None when the key already exists (replayed job).
No commit: the caller's job transaction owns it.
'''
def insert_event(db: Session, event: NewChangeEvent) -> Optional[str]:
    event_id = uuid.uuid4().hex
    stmt = (
        dialect_insert(db, ChangeEvent)
        .values(
            id=event_id,
            shop=event.shop,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            event_type=event.event_type,
            resource_name=(event.resource_name or "")[:512],
            before_value=event.before_value,
            after_value=event.after_value,
            importance=event.importance,
            detected_at=event.detected_at or now_utc(),
            diff=event.diff,
            context_data=event.context_data,
            money_saved=event.money_saved,
            source=event.source,
            topic=event.topic,
            author=event.author,
            webhook_id=event.webhook_id,
            idempotency_key=event.idempotency_key,
            instant_alert_sent_at=event.instant_alert_sent_at,
        )
        .on_conflict_do_nothing(index_elements=["idempotency_key"])
    )
    result = db.execute(stmt)
    if result.rowcount == 0:
        logger.info("event.duplicate key=%s type=%s", event.idempotency_key, event.event_type)
        return None
    return event_id



# dedup check: an unconsumed event of this type for this entity inside the window
def has_recent_undigested(
    db: Session,
    shop: str,
    *,
    entity_id: str,
    event_type: str,
    window: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    since = (now or now_utc()) - window
    row = db.execute(
        sa.select(ChangeEvent.id)
        .where(
            ChangeEvent.shop == shop,
            ChangeEvent.entity_id == entity_id,
            ChangeEvent.event_type == event_type,
            ChangeEvent.detected_at >= since,
            ChangeEvent.digested_at.is_(None),
        )
        .limit(1)
    ).first()
    return row is not None


def count_instant_alerts_since(db: Session, shop: str, since: datetime) -> int:
    return int(db.execute(
        sa.select(sa.func.count())
        .select_from(ChangeEvent)
        .where(ChangeEvent.shop == shop, ChangeEvent.instant_alert_sent_at >= since)
    ).scalar_one())


# deletion payloads carry only ids: the last event we stored for the entity supplies the name
def last_resource_name(db: Session, shop: str, *, entity_type: str, entity_id: str) -> Optional[str]:
    return db.execute(
        sa.select(ChangeEvent.resource_name)
        .where(
            ChangeEvent.shop == shop,
            ChangeEvent.entity_type == entity_type,
            ChangeEvent.entity_id == entity_id,
            ChangeEvent.resource_name != "",
        )
        .order_by(ChangeEvent.detected_at.desc())
        .limit(1)
    ).scalar_one_or_none()



'''
Published read side: the change-event stream for one shop and time range.
'''
def list_events(
    db: Session,
    shop: str,
    *,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    min_importance: Optional[str] = None,
    event_types: Optional[Sequence[str]] = None,
    undigested_only: bool = False,
    limit: int = 100,
) -> List[ChangeEvent]:
    stmt = sa.select(ChangeEvent).where(ChangeEvent.shop == shop)
    if since is not None:
        stmt = stmt.where(ChangeEvent.detected_at >= since)
    if until is not None:
        stmt = stmt.where(ChangeEvent.detected_at < until)
    if min_importance:
        allowed = [k for k, rank in IMPORTANCE_RANK.items() if rank >= IMPORTANCE_RANK[min_importance]]
        stmt = stmt.where(ChangeEvent.importance.in_(allowed))
    if event_types:
        stmt = stmt.where(ChangeEvent.event_type.in_(list(event_types)))
    if undigested_only:
        stmt = stmt.where(ChangeEvent.digested_at.is_(None))
    stmt = stmt.order_by(ChangeEvent.detected_at.desc(), ChangeEvent.id.asc()).limit(limit)
    return list(db.execute(stmt).scalars())


def shops_with_undigested(db: Session, since: datetime) -> List[str]:
    rows = db.execute(
        sa.select(ChangeEvent.shop)
        .where(ChangeEvent.digested_at.is_(None), ChangeEvent.detected_at >= since)
        .distinct()
    ).scalars()
    return sorted(rows)



'''
Digest hand-off bookkeeping. The digested_at IS NULL guard means two concurrent
digest runs cannot both claim the same event; returns the ids this call marked.
'''
def mark_digested(db: Session, event_ids: Iterable[str], *, now: Optional[datetime] = None) -> List[str]:
    ids = list(event_ids)
    if not ids:
        return []
    result = db.execute(
        sa.update(ChangeEvent)
        .where(ChangeEvent.id.in_(ids), ChangeEvent.digested_at.is_(None))
        .values(digested_at=now or now_utc())
        .returning(ChangeEvent.id)
        .execution_options(synchronize_session=False)
    )
    return [row[0] for row in result]


'''
Event retention: rows older than the cutoff go once they are digested.
Activity types never reach a digest, so they expire on age alone.
'''
def purge_expired(
    db: Session,
    older_than_days: int,
    *,
    activity_types: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> int:
    cutoff = (now or now_utc()) - timedelta(days=older_than_days)
    expired = ChangeEvent.digested_at.is_not(None)
    activity = list(activity_types)
    if activity:
        expired = sa.or_(expired, ChangeEvent.event_type.in_(activity))
    result = db.execute(
        sa.delete(ChangeEvent)
        .where(ChangeEvent.detected_at < cutoff, expired)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
