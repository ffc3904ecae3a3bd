
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import DateTime, String, Text, Numeric, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from shopwatch.db.base import Base
from shopwatch.utils.clock import now_utc


EVENT_TYPES = (
    "price_change",
    "visibility_change",
    "inventory_zero",
    "inventory_low",
    "inventory_update",
    "theme_publish",
    "collection_created",
    "collection_updated",
    "collection_deleted",
    "discount_created",
    "discount_updated",
    "discount_deleted",
    "domain_changed",
    "domain_removed",
    "app_permissions_changed",
    "product_created",
    "product_updated",
    "product_deleted",
)

IMPORTANCE_LEVELS = ("low", "medium", "high")
EVENT_SOURCES = ("webhook", "sync_job", "manual")


"""
  Detected, classified change; the unit the alerting side consumes.
  Immutable after insert except digested_at (digest hand-off).
  idempotency_key is derived from the originating job key so replays insert nothing.
"""
class ChangeEvent(Base):

    __tablename__ = "change_events"

    id:          Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    shop:        Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)     # product / variant / inventory_item / collection / ...
    entity_id:   Mapped[str] = mapped_column(String(64), nullable=False)
    event_type:  Mapped[str] = mapped_column(String(48), nullable=False)

    resource_name: Mapped[str]           = mapped_column(String(512), nullable=False, default="")
    before_value:  Mapped[Optional[str]] = mapped_column(Text)
    after_value:   Mapped[Optional[str]] = mapped_column(Text)
    importance:    Mapped[str]           = mapped_column(String(8), nullable=False, default="low")
    detected_at:   Mapped[datetime]      = mapped_column(DateTime, nullable=False, default=now_utc)

    diff:         Mapped[Optional[str]]     = mapped_column(Text)             # JSON: field changes / snapshot data
    context_data: Mapped[Optional[str]]     = mapped_column(Text)             # JSON: enrichment
    money_saved:  Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    source:       Mapped[str]               = mapped_column(String(16), nullable=False, default="webhook")
    topic:        Mapped[Optional[str]]     = mapped_column(String(64))
    author:       Mapped[Optional[str]]     = mapped_column(String(255))

    webhook_id:      Mapped[Optional[str]] = mapped_column(String(255))                 # originating job key
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(320), unique=True)    # webhook_id + suffix

    instant_alert_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    digested_at:           Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("importance IN ('low','medium','high')", name="importance_valid"),
        Index("ix_change_events_shop_detected", "shop", "detected_at"),
        Index("ix_change_events_shop_entity_type", "shop", "entity_id", "event_type"),
        Index("ix_change_events_shop_digested", "shop", "digested_at"),
    )
