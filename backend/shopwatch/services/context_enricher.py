"""
Business context for change events: a one-line summary plus velocity and
revenue figures, stored as JSON in ChangeEvent.context_data.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from shopwatch.services.interfaces import ProductVelocity
from shopwatch.services.money_saved import parse_money
from shopwatch.services.sales_velocity import estimate_revenue_impact, format_velocity_context
from shopwatch.utils.clock import now_utc

TYPO_DROP_PCT = 90
HIDDEN_STATUSES = ("draft", "archived")


@dataclass(slots=True)
class EnrichedContext:
    summary: str
    velocity_context: Optional[str] = None
    revenue_impact: Optional[float] = None
    location_context: Optional[str] = None
    percent_change: Optional[int] = None
    direction: Optional[str] = None          # "up" / "down"


def enrich_price_change(
    resource_name: str,
    before_price: str,
    after_price: str,
    velocity: Optional[ProductVelocity],
) -> EnrichedContext:
    old, new = parse_money(before_price), parse_money(after_price)

    percent_change: Optional[int] = None
    direction: Optional[str] = None
    if old is not None and new is not None and old > 0:
        percent_change = round(float((new - old) / old) * 100)
        direction = "up" if new > old else "down"

    # only a drop loses money; increases get no estimate
    price_drop = float(old - new) if old is not None and new is not None and new < old else 0.0
    velocity_ctx = format_velocity_context(velocity)
    impact = estimate_revenue_impact(velocity, "price_error", price_difference=price_drop)

    summary = f"{resource_name} changed from {before_price} to {after_price}"
    if percent_change is not None:
        pct = abs(percent_change)
        summary += f" ({pct}% {'increase' if direction == 'up' else 'decrease'})"
        if direction == "down" and pct >= TYPO_DROP_PCT:
            summary += " - probably a typo"
    if velocity_ctx:
        summary += f" - {velocity_ctx}"

    return EnrichedContext(
        summary=summary,
        velocity_context=velocity_ctx,
        revenue_impact=impact,
        percent_change=percent_change,
        direction=direction,
    )


def enrich_inventory_zero(
    resource_name: str,
    previous_quantity: int,
    velocity: Optional[ProductVelocity],
    location: Optional[str],
) -> EnrichedContext:
    velocity_ctx = format_velocity_context(velocity)
    summary = f"{resource_name} hit zero stock (was {previous_quantity} units)"
    if velocity_ctx:
        summary += f" - you've been {velocity_ctx}"
    if location:
        summary += f" at {location}"
    return EnrichedContext(
        summary=summary,
        velocity_context=velocity_ctx,
        revenue_impact=estimate_revenue_impact(velocity, "stockout"),
        location_context=location,
    )


def enrich_low_stock(
    resource_name: str,
    previous_quantity: int,
    current_quantity: int,
    velocity: Optional[ProductVelocity],
    location: Optional[str],
) -> EnrichedContext:
    velocity_ctx = format_velocity_context(velocity)
    summary = f"{resource_name} dropped to {current_quantity} units (was {previous_quantity})"
    if velocity_ctx:
        summary += f" - {velocity_ctx}"
    if location:
        summary += f" at {location}"
    return EnrichedContext(
        summary=summary,
        velocity_context=velocity_ctx,
        revenue_impact=estimate_revenue_impact(velocity, "stockout"),
        location_context=location,
    )


def enrich_visibility_change(
    resource_name: str,
    before_status: str,
    after_status: str,
    velocity: Optional[ProductVelocity],
) -> EnrichedContext:
    velocity_ctx = format_velocity_context(velocity)
    hidden = after_status in HIDDEN_STATUSES
    label = "no longer visible to customers" if hidden else "now visible to customers"
    summary = f"{resource_name} went {before_status} → {after_status} - {label}"
    if velocity_ctx:
        summary += f" ({velocity_ctx})"
    return EnrichedContext(
        summary=summary,
        velocity_context=velocity_ctx,
        revenue_impact=estimate_revenue_impact(velocity, "visibility") if hidden else None,
    )


def enrich_theme_publish(theme_name: str, *, at: Optional[datetime] = None) -> EnrichedContext:
    when = (at or now_utc()).strftime("%H:%M UTC")
    return EnrichedContext(summary=f'Theme "{theme_name}" went live at {when}')


_KEYS = {
    "summary": "summary",
    "velocity_context": "velocityContext",
    "revenue_impact": "revenueImpact",
    "location_context": "locationContext",
    "percent_change": "percentChange",
    "direction": "direction",
}


def serialize_context(context: Optional[EnrichedContext]) -> Optional[str]:
    """JSON for context_data; empty members are left out, no summary -> None."""
    if context is None or not context.summary:
        return None
    data: Dict[str, Any] = {}
    for attr, key in _KEYS.items():
        value = getattr(context, attr)
        if value is not None:
            data[key] = value
    return json.dumps(data, ensure_ascii=False)


def parse_context_data(raw: Optional[str]) -> Optional[EnrichedContext]:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get("summary"), str):
        return None
    return EnrichedContext(**{attr: data.get(key) for attr, key in _KEYS.items()})
