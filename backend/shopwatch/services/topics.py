"""
Webhook topic normalization and routing.

Topics arrive in several spellings (``PRODUCTS_UPDATE``, ``inventory_levels/update``,
``app/scopes_update``). Everything downstream keys off the canonical form:
lowercase, ``_`` replaced by ``/``. Normalizing twice is a no-op.
"""
from __future__ import annotations

import enum
from typing import Optional


class TopicCategory(str, enum.Enum):
    PRODUCT = "product"
    COLLECTION = "collection"
    INVENTORY = "inventory"
    THEME = "theme"
    DISCOUNT = "discount"
    DOMAIN = "domain"
    APP_SCOPES = "app_scopes"
    UNKNOWN = "unknown"


PRODUCTS_CREATE = "products/create"
PRODUCTS_UPDATE = "products/update"
PRODUCTS_DELETE = "products/delete"
COLLECTIONS_CREATE = "collections/create"
COLLECTIONS_UPDATE = "collections/update"
COLLECTIONS_DELETE = "collections/delete"
INVENTORY_LEVELS_UPDATE = "inventory/levels/update"
THEMES_PUBLISH = "themes/publish"
DISCOUNTS_CREATE = "discounts/create"
DISCOUNTS_UPDATE = "discounts/update"
DISCOUNTS_DELETE = "discounts/delete"
DOMAINS_CREATE = "domains/create"
DOMAINS_UPDATE = "domains/update"
DOMAINS_DESTROY = "domains/destroy"
APP_SCOPES_UPDATE = "app/scopes/update"

HANDLED_TOPICS: tuple[str, ...] = (
    PRODUCTS_CREATE,
    PRODUCTS_UPDATE,
    PRODUCTS_DELETE,
    COLLECTIONS_CREATE,
    COLLECTIONS_UPDATE,
    COLLECTIONS_DELETE,
    INVENTORY_LEVELS_UPDATE,
    THEMES_PUBLISH,
    DISCOUNTS_CREATE,
    DISCOUNTS_UPDATE,
    DISCOUNTS_DELETE,
    DOMAINS_CREATE,
    DOMAINS_UPDATE,
    DOMAINS_DESTROY,
    APP_SCOPES_UPDATE,
)

# prefix -> category; app/scopes/update is matched exactly, never by prefix
_PREFIX_CATEGORIES: tuple[tuple[str, TopicCategory], ...] = (
    ("products/", TopicCategory.PRODUCT),
    ("collections/", TopicCategory.COLLECTION),
    ("inventory/", TopicCategory.INVENTORY),
    ("themes/", TopicCategory.THEME),
    ("discounts/", TopicCategory.DISCOUNT),
    ("domains/", TopicCategory.DOMAIN),
)


def normalize_topic(raw: Optional[str]) -> str:
    return (raw or "").strip().lower().replace("_", "/")


def is_handled_topic(topic: str) -> bool:
    return normalize_topic(topic) in HANDLED_TOPICS


def topic_category(topic: str) -> TopicCategory:
    canonical = normalize_topic(topic)
    if canonical == APP_SCOPES_UPDATE:
        return TopicCategory.APP_SCOPES
    for prefix, category in _PREFIX_CATEGORIES:
        if canonical.startswith(prefix):
            return category
    return TopicCategory.UNKNOWN


def topic_verb(topic: str) -> str:
    """Last path segment: products/update -> update, domains/destroy -> destroy."""
    canonical = normalize_topic(topic)
    return canonical.rsplit("/", 1)[-1] if canonical else ""
