
from __future__ import annotations
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, String, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from shopwatch.db.base import Base



"""
  Daily sales bucket per product (filled by the orders importer); feeds sales velocity.
"""
class ProductSalesPoint(Base):

    __tablename__ = "product_sales_points"

    id:           Mapped[int]     = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop:         Mapped[str]     = mapped_column(String(255), nullable=False)
    product_id:   Mapped[str]     = mapped_column(String(64), nullable=False)
    bucket_start: Mapped[date]    = mapped_column(Date, nullable=False)
    units_sold:   Mapped[int]     = mapped_column(Integer, nullable=False, default=0)
    order_count:  Mapped[int]     = mapped_column(Integer, nullable=False, default=0)
    revenue:      Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("shop", "product_id", "bucket_start", name="uq_product_sales_points_shop_product_day"),
    )
