
from __future__ import annotations
from datetime import datetime
from typing import Optional, Any
import uuid

from sqlalchemy import DateTime, String, Integer, Text, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from shopwatch.db.base import Base
from shopwatch.utils.clock import now_utc


JOB_STATUSES = ("pending", "processing", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")


"""
  Durable webhook job: one row per accepted notification.
  pending -> processing only through the conditional claim (attempts + 1);
  processing -> completed | pending (retry with backoff) | failed (terminal).
"""
class WebhookJob(Base):

    __tablename__ = "webhook_jobs"

    id:          Mapped[str]           = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    shop:        Mapped[str]           = mapped_column(String(255), nullable=False)          # tenant key (myshopify domain)
    topic:       Mapped[str]           = mapped_column(String(64), nullable=False)           # canonical topic
    resource_id: Mapped[Optional[str]] = mapped_column(String(64))
    payload:     Mapped[str]           = mapped_column(Text, nullable=False)                 # raw JSON text, decoded by the processor
    webhook_id:  Mapped[Optional[str]] = mapped_column(String(255), unique=True)             # idempotency key (X-Shopify-Webhook-Id)

    status:       Mapped[str]                = mapped_column(String(16), nullable=False, default="pending")
    attempts:     Mapped[int]                = mapped_column(Integer, nullable=False, default=0)
    error:        Mapped[Optional[str]]      = mapped_column(Text)
    process_at:   Mapped[datetime]           = mapped_column(DateTime, nullable=False, default=now_utc)   # scheduled-at
    claimed_at:   Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at:   Mapped[datetime]           = mapped_column(DateTime, nullable=False, default=now_utc)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)   # set when the job turns terminal (completed or failed)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','completed','failed')",
            name="status_valid",
        ),
        Index("ix_webhook_jobs_status_process_at", "status", "process_at"),
        Index("ix_webhook_jobs_shop_created", "shop", "created_at"),
    )

    def payload_preview(self, limit: int = 200) -> str:
        text = self.payload or ""
        return text if len(text) <= limit else text[:limit] + "..."
