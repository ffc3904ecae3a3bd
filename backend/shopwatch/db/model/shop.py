
from __future__ import annotations
from datetime import datetime
from typing import Optional, List

from sqlalchemy import DateTime, String, Integer, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column
from shopwatch.db.base import Base, JsonType
from shopwatch.utils.clock import now_utc



"""
  Per-shop tracking preferences and plan. The OAuth/install layer owns creation
  and access_token; the pipeline only reads it (plus granted_scopes for the scopes diff).
"""
class Shop(Base):

    __tablename__ = "shops"

    id:           Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop:         Mapped[str]           = mapped_column(String(255), unique=True, nullable=False)
    plan:         Mapped[str]           = mapped_column(String(16), nullable=False, default="free")    # free / pro
    alert_email:  Mapped[Optional[str]] = mapped_column(String(255))
    access_token: Mapped[Optional[str]] = mapped_column(Text)

    # feature toggles
    track_prices:          Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_visibility:      Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_inventory:       Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_themes:          Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    track_collections:     Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_discounts:       Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_app_permissions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_domains:         Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    low_stock_threshold: Mapped[int]       = mapped_column(Integer, nullable=False, default=5)
    instant_alerts:      Mapped[bool]      = mapped_column(Boolean, nullable=False, default=False)
    granted_scopes:      Mapped[List[str]] = mapped_column(JsonType, nullable=False, default=list)

    installed_at:   Mapped[datetime]           = mapped_column(DateTime, nullable=False, default=now_utc)
    uninstalled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
