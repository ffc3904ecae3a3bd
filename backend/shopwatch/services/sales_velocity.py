"""Sales velocity math. Pure functions; no database or API access."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from shopwatch.services.interfaces import ProductVelocity

DEFAULT_HOURS_UNTIL_DISCOVERY = 2
CONSERVATIVE_FACTOR = 0.5
WEEKLY_RATE_FLOOR = 0.14           # roughly one unit a week

IMPACT_KINDS = ("price_error", "stockout", "visibility")


@dataclass(slots=True)
class SalesRecord:
    """One slice of a product's sales (a daily bucket, a single order line)."""
    product_id: str
    units: int
    revenue: float
    order_count: int = 1


def calculate_product_velocity(records: Iterable[SalesRecord], period_days: int) -> Dict[str, ProductVelocity]:
    """Per-product totals over the period; products without units sold are left out."""
    units: Dict[str, int] = {}
    revenue: Dict[str, float] = {}
    orders: Dict[str, int] = {}

    for record in records:
        pid = record.product_id
        units[pid] = units.get(pid, 0) + record.units
        revenue[pid] = revenue.get(pid, 0.0) + record.revenue
        orders[pid] = orders.get(pid, 0) + record.order_count

    days = max(period_days, 1)
    return {
        pid: ProductVelocity(
            product_id=pid,
            total_units_sold=units[pid],
            total_revenue=revenue[pid],
            order_count=orders[pid],
            daily_sales_rate=units[pid] / days,
            daily_revenue=revenue[pid] / days,
            period_days=days,
        )
        for pid in units
        if units[pid] > 0
    }


def format_velocity_context(velocity: Optional[ProductVelocity]) -> Optional[str]:
    """
    "selling 8/day" / "selling ~2/week" / "sold 3 in the last 30 days"; None without sales.
    """
    if velocity is None or velocity.total_units_sold == 0:
        return None
    if velocity.daily_sales_rate >= 1:
        return f"selling {round(velocity.daily_sales_rate)}/day"
    if velocity.daily_sales_rate >= WEEKLY_RATE_FLOOR:
        return f"selling ~{round(velocity.daily_sales_rate * 7)}/week"
    return f"sold {velocity.total_units_sold} in the last {velocity.period_days} days"


def estimate_revenue_impact(
    velocity: Optional[ProductVelocity],
    kind: str,
    *,
    price_difference: Optional[float] = None,
    hours_until_discovery: float = DEFAULT_HOURS_UNTIL_DISCOVERY,
    item_price: Optional[float] = None,
) -> Optional[float]:
    """
    daily_rate / 24 * hours * impact * 0.5, rounded to cents.
    impact is the price difference for price errors, the item price for stockouts/visibility.
    """
    if velocity is None or velocity.daily_sales_rate == 0:
        return None
    if kind not in IMPACT_KINDS:
        return None

    hourly = velocity.daily_sales_rate / 24
    if kind == "price_error":
        impact = price_difference or 0.0
    else:
        impact = item_price if item_price is not None else velocity.daily_revenue / velocity.daily_sales_rate

    if impact <= 0:
        return None
    return round(hourly * hours_until_discovery * impact * CONSERVATIVE_FACTOR, 2)
