
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import DateTime, String, Integer, Text, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from shopwatch.db.base import Base, JsonType
from shopwatch.utils.clock import now_utc



"""
  Last observed state of a product (baseline for the next diff).
  One row per (shop, product_id); written only through upserts in snapshot_repo.
"""
class ProductSnapshot(Base):

    __tablename__ = "product_snapshots"

    id:         Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop:       Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title:        Mapped[str]                  = mapped_column(String(512), nullable=False, default="")
    description:  Mapped[Optional[str]]        = mapped_column(Text)
    vendor:       Mapped[Optional[str]]        = mapped_column(String(255))
    product_type: Mapped[Optional[str]]        = mapped_column(String(255))
    status:       Mapped[str]                  = mapped_column(String(32), nullable=False, default="active")
    tags:         Mapped[List[str]]            = mapped_column(JsonType, nullable=False, default=list)
    image_count:  Mapped[int]                  = mapped_column(Integer, nullable=False, default=0)
    options:      Mapped[List[Dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
    updated_at:   Mapped[datetime]             = mapped_column(DateTime, nullable=False, default=now_utc)

    __table_args__ = (
        UniqueConstraint("shop", "product_id", name="uq_product_snapshots_shop_product"),
    )



"""
  Last observed state of a variant. inventory_quantity is the aggregated total across
  locations; NULL means never observed (first-seen suppresses inventory alerts).
"""
class VariantSnapshot(Base):

    __tablename__ = "variant_snapshots"

    id:                Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop:              Mapped[str]           = mapped_column(String(255), nullable=False)
    product_id:        Mapped[str]           = mapped_column(String(64), nullable=False)
    variant_id:        Mapped[str]           = mapped_column(String(64), nullable=False)
    inventory_item_id: Mapped[Optional[str]] = mapped_column(String(64))

    title:              Mapped[Optional[str]]     = mapped_column(String(512))
    price:              Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    compare_at_price:   Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    sku:                Mapped[Optional[str]]     = mapped_column(String(255))
    inventory_quantity: Mapped[Optional[int]]     = mapped_column(Integer)
    weight:             Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3))
    position:           Mapped[int]               = mapped_column(Integer, nullable=False, default=0)
    updated_at:         Mapped[datetime]          = mapped_column(DateTime, nullable=False, default=now_utc)

    __table_args__ = (
        UniqueConstraint("shop", "product_id", "variant_id", name="uq_variant_snapshots_shop_product_variant"),
        Index("ix_variant_snapshots_shop_item", "shop", "inventory_item_id"),
    )
