"""
Money saved by catching a change early (stored on the event, summed in digests).

  price drop:  |delta| * daily_rate * DISCOVERY_DAYS * CONSERVATIVE_FACTOR
  stockout:    daily_rate * avg_price * DISCOVERY_DAYS * CONSERVATIVE_FACTOR
  hidden:      same as stockout
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

from shopwatch.services.interfaces import ProductVelocity

DISCOVERY_DAYS = 3
CONSERVATIVE_FACTOR = 0.5


def parse_money(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value.strip().lstrip("$").replace(",", ""))
    except (InvalidOperation, AttributeError):
        return None


def _stockout(velocity: ProductVelocity) -> Optional[float]:
    avg = velocity.average_price
    if avg is None:
        return None
    return velocity.daily_sales_rate * avg * DISCOVERY_DAYS * CONSERVATIVE_FACTOR


def estimate_money_saved(
    event_type: str,
    velocity: Optional[ProductVelocity],
    before_value: Optional[str],
    after_value: Optional[str],
) -> Optional[float]:
    if velocity is None or velocity.daily_sales_rate == 0:
        return None

    estimate: Optional[float] = None
    if event_type == "price_change":
        old, new = parse_money(before_value), parse_money(after_value)
        if old is None or new is None or new >= old:
            return None
        estimate = float(old - new) * velocity.daily_sales_rate * DISCOVERY_DAYS * CONSERVATIVE_FACTOR
    elif event_type in ("inventory_zero", "inventory_low"):
        estimate = _stockout(velocity)
    elif event_type == "visibility_change":
        if after_value == "active":
            return None
        estimate = _stockout(velocity)

    if estimate is None or estimate <= 0:
        return None
    return round(estimate, 2)
