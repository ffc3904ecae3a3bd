from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from shopwatch.db.model.change_event import ChangeEvent
from shopwatch.db.session import get_db
from shopwatch.repository.change_event_repo import list_events
from shopwatch.services.auth_service import require_ops_token
from shopwatch.utils.serialization import loads_or_none


router = APIRouter(
    prefix="/changes",
    tags=["changes"],
    dependencies=[Depends(require_ops_token)],
)


class ChangeEventOut(BaseModel):
    id: str
    shop: str
    entity_type: str
    entity_id: str
    event_type: str
    resource_name: str
    before_value: Optional[str] = None
    after_value: Optional[str] = None
    importance: str
    detected_at: datetime
    source: str
    topic: Optional[str] = None
    author: Optional[str] = None
    money_saved: Optional[Decimal] = None
    context: Optional[Any] = None
    diff: Optional[Any] = None
    instant_alert_sent_at: Optional[datetime] = None
    digested_at: Optional[datetime] = None


class ChangeEventsPage(BaseModel):
    items: List[ChangeEventOut]
    count: int


@router.get("", response_model=ChangeEventsPage)
def list_changes(
    shop: str = Query(..., description="myshopify domain"),
    since: Optional[datetime] = Query(None, description="detected_at >= since (UTC)"),
    until: Optional[datetime] = Query(None, description="detected_at < until (UTC)"),
    min_importance: Optional[Literal["low", "medium", "high"]] = Query(None),
    event_type: Optional[List[str]] = Query(None, description="repeatable"),
    undigested_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    rows = list_events(
        db, shop.strip().lower(),
        since=_naive_utc(since),
        until=_naive_utc(until),
        min_importance=min_importance,
        event_types=event_type,
        undigested_only=undigested_only,
        limit=limit,
    )
    items = [_build_event_out(row) for row in rows]
    return ChangeEventsPage(items=items, count=len(items))


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _build_event_out(row: ChangeEvent) -> ChangeEventOut:
    return ChangeEventOut(
        id=row.id,
        shop=row.shop,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        event_type=row.event_type,
        resource_name=row.resource_name,
        before_value=row.before_value,
        after_value=row.after_value,
        importance=row.importance,
        detected_at=row.detected_at,
        source=row.source,
        topic=row.topic,
        author=row.author,
        money_saved=row.money_saved,
        context=loads_or_none(row.context_data),
        diff=loads_or_none(row.diff),
        instant_alert_sent_at=row.instant_alert_sent_at,
        digested_at=row.digested_at,
    )
