from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from shopwatch.core.config import settings
from shopwatch.services.interfaces import CatalogClient, InventoryLevelNode

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InventoryAggregate:
    total_quantity: int
    location_name: Optional[str]
    pages_fetched: int = 0
    truncated: bool = False          # page cap hit; total is a partial sum
    failed: bool = False             # upstream error; total is 0


def _numeric_id(value: Optional[str]) -> Optional[str]:
    # "gid://shopify/Location/123" and "123" compare equal
    if value is None:
        return None
    text = str(value).strip()
    return text.rsplit("/", 1)[-1] if text else None


def aggregate_inventory_levels(
    nodes: Iterable[InventoryLevelNode],
    trigger_location_id: Optional[str],
) -> Tuple[int, Optional[str]]:
    """
    Sum "available" across locations (missing quantity counts as 0, negatives are kept)
    and pick the name of the location that fired the webhook.
    """
    trigger = _numeric_id(trigger_location_id)
    total = 0
    location_name: Optional[str] = None
    for node in nodes:
        total += node.available or 0
        if trigger is not None and location_name is None and _numeric_id(node.location_id) == trigger:
            location_name = node.location_name
    return total, location_name



'''
Total stock of one inventory item across every location.
   - pages of `page_size` levels, at most `max_pages` pages
   - stops on: no next page / empty page / page cap (partial sum + warning)
   - any upstream error degrades to (0, None); the caller still records the update
'''
class InventoryAggregator:

    def __init__(
        self,
        client: CatalogClient,
        *,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ):
        self.client = client
        self.page_size = page_size or settings.INVENTORY_PAGE_SIZE
        self.max_pages = max_pages or settings.INVENTORY_MAX_PAGES

    def aggregate(self, inventory_item_id: str, trigger_location_id: Optional[str]) -> InventoryAggregate:
        nodes: list[InventoryLevelNode] = []
        cursor: Optional[str] = None
        pages = 0
        truncated = False

        try:
            while True:
                if pages >= self.max_pages:
                    truncated = True
                    logger.warning(
                        "inventory.page_cap item=%s pages=%s levels=%s (partial total)",
                        inventory_item_id, pages, len(nodes))
                    break

                page = self.client.fetch_inventory_levels(inventory_item_id, cursor, self.page_size)
                pages += 1
                if not page.nodes:
                    break
                nodes.extend(page.nodes)

                if not page.has_next_page or not page.end_cursor:
                    break
                cursor = page.end_cursor
        except Exception as e:
            logger.error("inventory.aggregate_failed item=%s err=%s: %s", inventory_item_id, type(e).__name__, e)
            return InventoryAggregate(total_quantity=0, location_name=None, pages_fetched=pages, failed=True)

        total, location_name = aggregate_inventory_levels(nodes, trigger_location_id)
        logger.debug("inventory.aggregated item=%s total=%s locations=%s pages=%s",
                     inventory_item_id, total, len(nodes), pages)
        return InventoryAggregate(
            total_quantity=total,
            location_name=location_name,
            pages_fetched=pages,
            truncated=truncated,
        )
