from __future__ import annotations
import logging
from datetime import date, timedelta
from typing import Dict, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopwatch.core.config import settings
from shopwatch.db.model.sales import ProductSalesPoint
from shopwatch.services.interfaces import ProductVelocity
from shopwatch.services.sales_velocity import SalesRecord, calculate_product_velocity
from shopwatch.utils.clock import now_utc

logger = logging.getLogger(__name__)



'''
Sales velocity from the daily sales buckets of the last `period_days` days.
Lookups are best-effort: any database error is logged and reads as "no data".
'''
class DbSalesVelocityProvider:

    def __init__(self, db: Session, period_days: Optional[int] = None):
        self.db = db
        self.period_days = period_days or settings.VELOCITY_PERIOD_DAYS
        self._cache: Dict[tuple[str, str], Optional[ProductVelocity]] = {}

    def velocity(self, shop: str, product_id: str) -> Optional[ProductVelocity]:
        key = (shop, product_id)
        if key not in self._cache:
            self._cache[key] = self._load(shop, product_id)
        return self._cache[key]

    def _load(self, shop: str, product_id: str) -> Optional[ProductVelocity]:
        since: date = now_utc().date() - timedelta(days=self.period_days)
        try:
            rows = self.db.execute(
                sa.select(
                    ProductSalesPoint.units_sold,
                    ProductSalesPoint.revenue,
                    ProductSalesPoint.order_count,
                ).where(
                    ProductSalesPoint.shop == shop,
                    ProductSalesPoint.product_id == product_id,
                    ProductSalesPoint.bucket_start >= since,
                )
            ).all()
        except SQLAlchemyError as e:
            logger.warning("velocity.lookup_failed shop=%s product=%s err=%s", shop, product_id, type(e).__name__)
            return None

        records = [
            SalesRecord(product_id, int(units or 0), float(revenue or 0), int(orders or 0))
            for units, revenue, orders in rows
        ]
        return calculate_product_velocity(records, self.period_days).get(product_id)
