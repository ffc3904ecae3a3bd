"""
Collaborators the pipeline consumes but does not own.

Default implementations live next to their storage/transport:
  - DbShopSettingsProvider / DbScopeStore   -> repository/shop_repo.py
  - DbSalesVelocityProvider                 -> repository/sales_repo.py
  - ShopifyClient                           -> integrations/shopify/shopify_client.py
  - LoggingDispatcher                       -> services/notifications.py
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol


TRACKABLE_FEATURES = (
    "prices",
    "visibility",
    "inventory",
    "themes",
    "collections",
    "discounts",
    "app_permissions",
    "domains",
)


@dataclass(slots=True)
class ProductVelocity:
    product_id: str
    total_units_sold: int
    total_revenue: float
    order_count: int
    daily_sales_rate: float       # units / day
    daily_revenue: float          # revenue / day
    period_days: int

    @property
    def average_price(self) -> Optional[float]:
        if self.total_units_sold <= 0:
            return None
        return self.total_revenue / self.total_units_sold


@dataclass(slots=True)
class InventoryLevelNode:
    location_id: Optional[str]            # numeric id (gid suffix already stripped)
    location_name: Optional[str]
    available: Optional[int]


@dataclass(slots=True)
class InventoryLevelPage:
    nodes: List[InventoryLevelNode] = field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None


@dataclass(slots=True)
class VariantLookup:
    variant_id: str
    product_id: Optional[str]
    variant_title: Optional[str] = None
    product_title: Optional[str] = None
    is_gift_card: bool = False

    @property
    def display_name(self) -> str:
        if self.product_title and self.variant_title and self.variant_title != "Default Title":
            return f"{self.product_title} - {self.variant_title}"
        return self.product_title or self.variant_title or f"Variant #{self.variant_id}"


@dataclass(slots=True)
class InstantAlert:
    shop: str
    email: str
    event_id: str
    event_type: str
    resource_name: str
    before_value: Optional[str]
    after_value: Optional[str]
    importance: str
    detected_at: datetime
    context_data: Optional[str] = None


@dataclass(slots=True)
class DigestItem:
    event_id: str
    event_type: str
    resource_name: str
    before_value: Optional[str]
    after_value: Optional[str]
    importance: str
    detected_at: datetime
    summary: Optional[str] = None
    money_saved: Optional[float] = None


@dataclass(slots=True)
class DigestBatch:
    shop: str
    email: str
    window_start: datetime
    window_end: datetime
    items: List[DigestItem] = field(default_factory=list)

    @property
    def total_money_saved(self) -> float:
        return round(sum(i.money_saved or 0.0 for i in self.items), 2)


class CatalogClient(Protocol):
    def fetch_events(self, resource_type: str, resource_id: str, verb: str) -> Optional[str]: ...

    def fetch_inventory_levels(
        self, inventory_item_id: str, cursor: Optional[str] = None, first: int = 50
    ) -> InventoryLevelPage: ...

    def fetch_variant_by_inventory_item(self, inventory_item_id: str) -> Optional[VariantLookup]: ...


class TenantSettingsProvider(Protocol):
    def can_track(self, shop: str, feature: str) -> bool: ...

    def low_stock_threshold(self, shop: str) -> Optional[int]: ...

    def has_instant_alerts(self, shop: str) -> bool: ...

    def alert_email(self, shop: str) -> Optional[str]: ...


class ScopeStore(Protocol):
    def granted_scopes(self, shop: str) -> Optional[List[str]]: ...

    def save_granted_scopes(self, shop: str, scopes: List[str]) -> None: ...


class SalesVelocityProvider(Protocol):
    def velocity(self, shop: str, product_id: str) -> Optional[ProductVelocity]: ...


class NotificationDispatcher(Protocol):
    def send_instant_alert(self, alert: InstantAlert) -> None: ...

    def send_digest(self, batch: DigestBatch) -> bool: ...
