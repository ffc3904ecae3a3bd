"""Per-shop Admin API client: only the reads change detection needs."""
from __future__ import annotations

import time, logging, requests
from typing import Any, Dict, Optional
from requests import HTTPError, Timeout, RequestException

from shopwatch.core.config import settings
from shopwatch.integrations.shopify.errors import (
    ShopifyAuthError,
    ShopifyClientError,
    ShopifyPayloadError,
    ShopifyRateLimitError,
    ShopifyServerError,
)
from shopwatch.integrations.shopify.graphql_queries import (
    INVENTORY_LEVELS_BY_ITEM,
    VARIANT_BY_INVENTORY_ITEM,
    inventory_item_gid,
)
from shopwatch.integrations.shopify.payload_utils import gid_to_id
from shopwatch.services.interfaces import InventoryLevelNode, InventoryLevelPage, VariantLookup


logger = logging.getLogger(__name__)

EVENTS_PAGE_LIMIT = 20


class ShopifyClient:

    def __init__(
        self,
        shop: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.http = session or requests.Session()

    # ---------------- endpoints & auth ----------------

    def _base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
            "User-Agent": "ShopWatch/ShopifyClient (+python)",
        }

    '''
    Shared request loop for GraphQL and REST calls
        - 429: honour Retry-After (else exponential backoff), then retry
        - 5xx / timeout / connection errors: exponential backoff, retry
        - 401/403 -> ShopifyAuthError, other 4xx -> ShopifyClientError, never retried
        - non-JSON body: retried, then ShopifyPayloadError
    Returns the decoded JSON body.
    '''
    def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: Optional[int] = None,
        op_name: str = "",
    ) -> Dict[str, Any]:
        timeout = timeout or settings.SHOPIFY_HTTP_TIMEOUT
        max_retries = max(0, int(settings.SHOPIFY_HTTP_RETRIES))
        backoff_ms = max(50, int(settings.SHOPIFY_HTTP_BACKOFF_MS))

        for attempt in range(max_retries + 1):
            delay = (backoff_ms / 1000.0) * (2 ** attempt)
            start = time.perf_counter()
            try:
                resp = self.http.request(
                    method, url,
                    headers=self._headers(),
                    json=json_body,
                    params=params,
                    timeout=timeout,
                )
                latency_ms = int((time.perf_counter() - start) * 1000)

                try:
                    resp.raise_for_status()
                except HTTPError as e:
                    status = resp.status_code

                    if status == 429:
                        if attempt >= max_retries:
                            raise ShopifyRateLimitError(f"{op_name}: throttled after {attempt + 1} attempts") from e
                        retry_after = resp.headers.get("Retry-After")
                        try:
                            sleep_s = max(0.1, float(retry_after))
                        except (TypeError, ValueError):
                            sleep_s = delay
                        logger.warning(
                            "shopify.429_throttled shop=%s op=%s latency_ms=%s attempt=%s/%s retry_after=%s",
                            self.shop, op_name, latency_ms, attempt, max_retries, retry_after)
                        time.sleep(sleep_s)
                        continue

                    logger.warning(
                        "shopify.http_error shop=%s op=%s status=%s latency_ms=%s attempt=%s/%s",
                        self.shop, op_name, status, latency_ms, attempt, max_retries)

                    if status in (401, 403):
                        raise ShopifyAuthError(f"{op_name}: HTTP {status}") from e
                    if 400 <= status < 500:
                        raise ShopifyClientError(f"{op_name}: HTTP {status}") from e
                    if attempt >= max_retries:
                        raise ShopifyServerError(f"{op_name}: HTTP {status} after {attempt + 1} attempts") from e
                    time.sleep(delay)
                    continue

                try:
                    data = resp.json()
                except ValueError:
                    if attempt < max_retries:
                        logger.warning("shopify.non_json shop=%s op=%s attempt=%s/%s",
                                       self.shop, op_name, attempt, max_retries)
                        time.sleep(delay)
                        continue
                    raise ShopifyPayloadError(f"{op_name}: response is not JSON (status={resp.status_code})")

                logger.debug("shopify.ok shop=%s op=%s latency_ms=%s attempt=%s",
                             self.shop, op_name, latency_ms, attempt)
                return data

            except Timeout as e:
                latency_ms = int((time.perf_counter() - start) * 1000)
                logger.warning("shopify.timeout shop=%s op=%s latency_ms=%s attempt=%s/%s",
                               self.shop, op_name, latency_ms, attempt, max_retries)
                if attempt >= max_retries:
                    raise ShopifyClientError(f"{op_name}: timed out after {attempt + 1} attempts") from e
                time.sleep(delay)

            except RequestException as e:
                latency_ms = int((time.perf_counter() - start) * 1000)
                logger.warning("shopify.request_exception shop=%s op=%s latency_ms=%s attempt=%s/%s err=%s",
                               self.shop, op_name, latency_ms, attempt, max_retries, type(e).__name__)
                if attempt >= max_retries:
                    raise ShopifyClientError(f"{op_name}: {type(e).__name__}: {e}") from e
                time.sleep(delay)

        raise ShopifyClientError(f"{op_name}: retries exhausted")

    def _post_graphql(self, query: str, variables: Optional[dict] = None, *, op_name: str = "") -> dict:
        data = self._request(
            "POST", f"{self._base_url()}/graphql.json",
            json_body={"query": query, "variables": variables or {}},
            op_name=op_name,
        )
        # top-level errors are syntax/permission problems: not retried
        if data.get("errors"):
            logger.error("shopify.graphql.gql_errors shop=%s op=%s errors=%s", self.shop, op_name, data["errors"])
            raise ShopifyPayloadError(f"{op_name}: GraphQL errors: {data['errors']}")
        return data.get("data") or {}


    # ---------------- inventory ----------------

    def fetch_inventory_levels(
        self, inventory_item_id: str, cursor: Optional[str] = None, first: int = 50
    ) -> InventoryLevelPage:
        data = self._post_graphql(
            INVENTORY_LEVELS_BY_ITEM,
            {"id": inventory_item_gid(inventory_item_id), "first": first, "after": cursor},
            op_name="inventoryItem.inventoryLevels",
        )
        item = data.get("inventoryItem")
        if not item:
            return InventoryLevelPage()

        levels = item.get("inventoryLevels") or {}
        nodes = []
        for edge in levels.get("edges") or []:
            node = (edge or {}).get("node") or {}
            location = node.get("location") or {}
            available = None
            for q in node.get("quantities") or []:
                if q.get("name") == "available":
                    available = q.get("quantity")
                    break
            nodes.append(InventoryLevelNode(
                location_id=gid_to_id(location.get("id")),
                location_name=location.get("name"),
                available=int(available) if available is not None else None,
            ))

        page_info = levels.get("pageInfo") or {}
        return InventoryLevelPage(
            nodes=nodes,
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    def fetch_variant_by_inventory_item(self, inventory_item_id: str) -> Optional[VariantLookup]:
        data = self._post_graphql(
            VARIANT_BY_INVENTORY_ITEM,
            {"id": inventory_item_gid(inventory_item_id)},
            op_name="inventoryItem.variant",
        )
        variant = (data.get("inventoryItem") or {}).get("variant")
        if not variant:
            return None
        product = variant.get("product") or {}
        return VariantLookup(
            variant_id=gid_to_id(variant.get("id")),
            product_id=gid_to_id(product.get("id")),
            variant_title=variant.get("title"),
            product_title=product.get("title"),
            is_gift_card=bool(product.get("isGiftCard")),
        )


    # ---------------- attribution ----------------

    # REST Events API: who performed `verb` on the resource. Only an exact subject match counts.
    def fetch_events(self, resource_type: str, resource_id: str, verb: str) -> Optional[str]:
        data = self._request(
            "GET", f"{self._base_url()}/events.json",
            params={"filter": resource_type, "verb": verb, "limit": EVENTS_PAGE_LIMIT},
            op_name=f"events.{resource_type}",
        )
        for event in data.get("events") or []:
            if str(event.get("subject_id")) == str(resource_id) and event.get("verb") == verb:
                return event.get("author") or None
        return None
