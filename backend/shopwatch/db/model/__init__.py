# Aggregate every model so Alembic can discover them

from .webhook_job import WebhookJob
from .snapshot import ProductSnapshot, VariantSnapshot
from .change_event import ChangeEvent
from .shop import Shop
from .sales import ProductSalesPoint

__all__ = [
    # queue
    "WebhookJob",
    # snapshots
    "ProductSnapshot", "VariantSnapshot",
    # events
    "ChangeEvent",
    # tenants / sales
    "Shop", "ProductSalesPoint",
]
