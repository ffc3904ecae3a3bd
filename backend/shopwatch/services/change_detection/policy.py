"""
Classification policy for detected changes.

Everything here is pure: thresholds, importance rules and the display helpers the
engine uses for before/after values. The engine decides *whether* something changed;
this module decides *how much it matters*.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, List, Optional


class Importance(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EventType(str, enum.Enum):
    PRICE_CHANGE = "price_change"
    VISIBILITY_CHANGE = "visibility_change"
    INVENTORY_ZERO = "inventory_zero"
    INVENTORY_LOW = "inventory_low"
    INVENTORY_UPDATE = "inventory_update"
    THEME_PUBLISH = "theme_publish"
    COLLECTION_CREATED = "collection_created"
    COLLECTION_UPDATED = "collection_updated"
    COLLECTION_DELETED = "collection_deleted"
    DISCOUNT_CREATED = "discount_created"
    DISCOUNT_UPDATED = "discount_updated"
    DISCOUNT_DELETED = "discount_deleted"
    DOMAIN_CHANGED = "domain_changed"
    DOMAIN_REMOVED = "domain_removed"
    APP_PERMISSIONS_CHANGED = "app_permissions_changed"
    PRODUCT_CREATED = "product_created"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"


# activity-log rows: browsable, never digested
ACTIVITY_EVENT_TYPES = frozenset({
    EventType.PRODUCT_CREATED.value,
    EventType.PRODUCT_UPDATED.value,
    EventType.PRODUCT_DELETED.value,
    EventType.INVENTORY_UPDATE.value,
})


# ========= price =========
PRICE_HIGH_PCT = Decimal("50")
PRICE_MEDIUM_PCT = Decimal("15")

# ========= inventory =========
INVENTORY_ZERO_DEDUP_WINDOW = timedelta(hours=24)
# only these types consult recent events before writing; everything else is unconditional
DEDUPED_EVENT_TYPES = frozenset({EventType.INVENTORY_ZERO.value})

# ========= discounts =========
DISCOUNT_HIGH_PCT = Decimal("50")

# ========= visibility =========
VISIBLE_STATUS = "active"
HIDDEN_STATUSES = frozenset({"draft", "archived"})

# importance by lifecycle verb
COLLECTION_IMPORTANCE = {
    "create": Importance.LOW,
    "update": Importance.MEDIUM,
    "delete": Importance.HIGH,
}
DISCOUNT_IMPORTANCE = {
    "create": Importance.MEDIUM,
    "update": Importance.MEDIUM,
    "delete": Importance.HIGH,
}

THEME_MAIN_ROLE = "main"


def price_importance(old: Decimal, new: Decimal) -> Importance:
    """Either side exactly zero is always high; otherwise by relative magnitude."""
    if old == 0 or new == 0:
        return Importance.HIGH
    pct = abs(new - old) / old * 100
    if pct >= PRICE_HIGH_PCT:
        return Importance.HIGH
    if pct >= PRICE_MEDIUM_PCT:
        return Importance.MEDIUM
    return Importance.LOW


def visibility_importance(old_status: str, new_status: str) -> Optional[Importance]:
    """active -> hidden is high, hidden -> active is medium, hidden <-> hidden is not an event."""
    old_status, new_status = (old_status or "").lower(), (new_status or "").lower()
    if old_status == new_status:
        return None
    if old_status == VISIBLE_STATUS and new_status in HIDDEN_STATUSES:
        return Importance.HIGH
    if old_status in HIDDEN_STATUSES and new_status == VISIBLE_STATUS:
        return Importance.MEDIUM
    return None


def should_alert_inventory_zero(new_quantity: int, previous_quantity: Optional[int]) -> bool:
    # unknown previous (first observation) never alerts
    if previous_quantity is None:
        return False
    return previous_quantity > 0 and new_quantity == 0


def should_alert_low_stock(new_quantity: int, previous_quantity: Optional[int], threshold: Optional[int]) -> bool:
    """Crossing from above the threshold to at/below it, but not to zero (that is a stockout)."""
    if threshold is None or previous_quantity is None:
        return False
    return previous_quantity > threshold and 0 < new_quantity <= threshold


def discount_importance(verb: str, percentage: Optional[Decimal]) -> Importance:
    if verb == "create" and percentage is not None and percentage >= DISCOUNT_HIGH_PCT:
        return Importance.HIGH
    return DISCOUNT_IMPORTANCE.get(verb, Importance.MEDIUM)


@dataclass(slots=True)
class ScopeDiff:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def diff_scopes(previous: Iterable[str], current: Iterable[str]) -> ScopeDiff:
    prev = {s.strip() for s in previous if s and s.strip()}
    cur = {s.strip() for s in current if s and s.strip()}
    return ScopeDiff(added=sorted(cur - prev), removed=sorted(prev - cur))


def scopes_importance(diff: ScopeDiff) -> Optional[Importance]:
    # any newly granted scope is high; pure removals are medium
    if diff.is_empty:
        return None
    return Importance.HIGH if diff.added else Importance.MEDIUM


def scopes_summary(diff: ScopeDiff) -> str:
    parts = []
    if diff.added:
        parts.append(f"{len(diff.added)} scope{'s' if len(diff.added) != 1 else ''} added")
    if diff.removed:
        parts.append(f"{len(diff.removed)} scope{'s' if len(diff.removed) != 1 else ''} removed")
    return ", ".join(parts)


def is_critical_for_instant_alert(event_type: str, importance: str, after_value: Optional[str]) -> bool:
    """
    Critical = worth interrupting the merchant for: a high price swing, a stockout,
    a product going hidden, a removed domain, newly granted app permissions.
    """
    if importance != Importance.HIGH.value:
        return False
    if event_type == EventType.VISIBILITY_CHANGE.value:
        return (after_value or "") in HIDDEN_STATUSES
    return event_type in (
        EventType.PRICE_CHANGE.value,
        EventType.INVENTORY_ZERO.value,
        EventType.DOMAIN_REMOVED.value,
        EventType.APP_PERMISSIONS_CHANGED.value,
    )


def format_price(value: Optional[Decimal]) -> str:
    if value is None:
        return "$0.00"
    return f"${Decimal(value).quantize(Decimal('0.01'))}"


def format_variant_label(product_title: str, variant_title: Optional[str]) -> str:
    if variant_title and variant_title != "Default Title":
        return f"{product_title} - {variant_title}"
    return product_title
