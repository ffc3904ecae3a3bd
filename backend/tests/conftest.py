import os

# hermetic defaults; must be set before shopwatch.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JOBS_INLINE", "true")

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import shopwatch.db.model  # noqa: F401  registers every table on Base.metadata
from shopwatch.db.base import Base
from shopwatch.services.change_detection.engine import ChangeDetectionEngine, JobContext
from shopwatch.services.interfaces import (
    InventoryLevelNode,
    InventoryLevelPage,
    ProductVelocity,
    VariantLookup,
)


SHOP = "demo-store.myshopify.com"
T0 = datetime(2025, 3, 1, 12, 0, 0)


@pytest.fixture
def session_factory():
    """In-memory SQLite shared by every session the test opens."""
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    Base.metadata.create_all(engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class Clock:
    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return Clock()


# ---------------- collaborator fakes ----------------

class FakeTenantSettings:
    def __init__(self, *, disabled=(), threshold: Optional[int] = 5, instant: bool = False, email: Optional[str] = None):
        self.disabled = set(disabled)
        self.threshold = threshold
        self.instant = instant
        self.email = email

    def can_track(self, shop, feature):
        return feature not in self.disabled

    def low_stock_threshold(self, shop):
        return self.threshold

    def has_instant_alerts(self, shop):
        return self.instant

    def alert_email(self, shop):
        return self.email


class FakeScopeStore:
    def __init__(self, initial: Optional[List[str]] = None):
        self.scopes = {SHOP: list(initial)} if initial is not None else {}

    def granted_scopes(self, shop):
        return self.scopes.get(shop)

    def save_granted_scopes(self, shop, scopes):
        self.scopes[shop] = sorted(set(scopes))


class FakeVelocity:
    def __init__(self, velocity: Optional[ProductVelocity] = None):
        self.value = velocity
        self.calls = 0

    def velocity(self, shop, product_id):
        self.calls += 1
        return self.value


class FakeCatalogClient:
    """Inventory levels per item (one location each), a variant lookup and an events author."""

    def __init__(self, *, lookup: Optional[VariantLookup] = None, author: Optional[str] = None):
        self.lookup = lookup
        self.author = author
        self.levels: Dict[str, int] = {}
        self.fail_levels = False
        self.event_calls: list = []

    def fetch_events(self, resource_type, resource_id, verb):
        self.event_calls.append((resource_type, resource_id, verb))
        return self.author

    def fetch_inventory_levels(self, inventory_item_id, cursor=None, first=50):
        if self.fail_levels:
            raise RuntimeError("inventory API down")
        qty = self.levels.get(inventory_item_id)
        if qty is None:
            return InventoryLevelPage()
        return InventoryLevelPage(nodes=[InventoryLevelNode("1001", "Warehouse", qty)])

    def fetch_variant_by_inventory_item(self, inventory_item_id):
        return self.lookup


class RecordingDispatcher:
    def __init__(self, accept: bool = True):
        self.accept = accept
        self.alerts: list = []
        self.digests: list = []

    def send_instant_alert(self, alert):
        self.alerts.append(alert)

    def send_digest(self, batch):
        self.digests.append(batch)
        return self.accept


class RecordingScheduler:
    def __init__(self):
        self.requests: List[float] = []

    def request_run(self, delay_seconds=0):
        self.requests.append(delay_seconds)
        return True


@pytest.fixture
def tenant():
    return FakeTenantSettings()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def make_engine(clock):
    def _make(**kwargs) -> ChangeDetectionEngine:
        kwargs.setdefault("settings_provider", FakeTenantSettings())
        kwargs.setdefault("now", clock)
        return ChangeDetectionEngine(**kwargs)
    return _make


def job_ctx(topic: str, job_key: str = "wh-1", shop: str = SHOP) -> JobContext:
    return JobContext(shop=shop, topic=topic, verb=topic.rsplit("/", 1)[-1], job_key=job_key)


def velocity(daily_rate: float = 8.0, avg_price: float = 20.0, period_days: int = 30) -> ProductVelocity:
    units = int(daily_rate * period_days)
    return ProductVelocity(
        product_id="p1",
        total_units_sold=units,
        total_revenue=units * avg_price,
        order_count=units,
        daily_sales_rate=daily_rate,
        daily_revenue=daily_rate * avg_price,
        period_days=period_days,
    )


# ---------------- payload builders ----------------

def product_body(
    product_id: int = 1001,
    *,
    title: str = "Classic Tee",
    status: str = "active",
    price: str = "20.00",
    variant_title: str = "Small",
    inventory_quantity: Optional[int] = 10,
    tags: str = "summer, cotton",
) -> dict:
    return {
        "id": product_id,
        "title": title,
        "body_html": "<p>Soft cotton tee</p>",
        "vendor": "Acme",
        "product_type": "Shirts",
        "status": status,
        "tags": tags,
        "images": [{"id": 1}],
        "options": [{"name": "Size", "values": ["Small"]}],
        "variants": [
            {
                "id": 5001,
                "title": variant_title,
                "price": price,
                "compare_at_price": None,
                "sku": "TEE-S",
                "inventory_quantity": inventory_quantity,
                "inventory_item_id": 9001,
                "position": 1,
            }
        ],
    }
