"""
Typed webhook payloads, one model per topic family.

The job table stores the raw body; the processor resolves topic -> model once
(`parse_payload`) so handlers never look at untyped dicts.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shopwatch.core.errors import PayloadError
from shopwatch.services import topics as t


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class VariantPayload(_Payload):
    id: str
    title: Optional[str] = None
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    sku: Optional[str] = None
    inventory_quantity: Optional[int] = None
    inventory_item_id: Optional[str] = None
    weight: Optional[Decimal] = None
    position: Optional[int] = None

    @field_validator("price", "compare_at_price", mode="before")
    @classmethod
    def _blank_price(cls, value: Any) -> Any:
        return None if value in ("", None) else value


class ProductOptionPayload(_Payload):
    name: str
    values: List[str] = Field(default_factory=list)


class ProductPayload(_Payload):
    id: str
    title: str = ""
    body_html: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    status: str = "active"
    tags: Union[str, List[str], None] = None
    variants: List[VariantPayload] = Field(default_factory=list)
    options: List[ProductOptionPayload] = Field(default_factory=list)
    images: List[dict] = Field(default_factory=list)


class DeletedResourcePayload(_Payload):
    id: str


class CollectionPayload(_Payload):
    id: str
    title: str = ""
    handle: Optional[str] = None


class InventoryLevelPayload(_Payload):
    inventory_item_id: str
    location_id: Optional[str] = None
    available: Optional[int] = None
    updated_at: Optional[str] = None


class ThemePayload(_Payload):
    id: str
    name: str = ""
    role: str = ""


class DiscountPayload(_Payload):
    id: str
    title: Optional[str] = None
    code: Optional[str] = None
    value: Optional[Decimal] = None
    value_type: Optional[str] = None      # "percentage" | "fixed_amount"

    @field_validator("value", mode="before")
    @classmethod
    def _blank_value(cls, value: Any) -> Any:
        return None if value in ("", None) else value

    @property
    def display_title(self) -> str:
        return self.title or self.code or f"Discount #{self.id}"

    @property
    def percentage(self) -> Optional[Decimal]:
        # price rules send percentage values negative ("-50.0")
        if self.value_type == "percentage" and self.value is not None:
            return abs(self.value)
        return None


class DomainPayload(_Payload):
    id: str
    host: Optional[str] = None


class ScopesPayload(_Payload):
    previous: List[str] = Field(default_factory=list)
    current: List[str] = Field(default_factory=list)

    @field_validator("previous", "current", mode="before")
    @classmethod
    def _split_scopes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value or []


TopicPayload = Union[
    ProductPayload,
    DeletedResourcePayload,
    CollectionPayload,
    InventoryLevelPayload,
    ThemePayload,
    DiscountPayload,
    DomainPayload,
    ScopesPayload,
]


PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    t.PRODUCTS_CREATE: ProductPayload,
    t.PRODUCTS_UPDATE: ProductPayload,
    t.PRODUCTS_DELETE: DeletedResourcePayload,
    t.COLLECTIONS_CREATE: CollectionPayload,
    t.COLLECTIONS_UPDATE: CollectionPayload,
    t.COLLECTIONS_DELETE: DeletedResourcePayload,
    t.INVENTORY_LEVELS_UPDATE: InventoryLevelPayload,
    t.THEMES_PUBLISH: ThemePayload,
    t.DISCOUNTS_CREATE: DiscountPayload,
    t.DISCOUNTS_UPDATE: DiscountPayload,
    t.DISCOUNTS_DELETE: DeletedResourcePayload,
    t.DOMAINS_CREATE: DomainPayload,
    t.DOMAINS_UPDATE: DomainPayload,
    t.DOMAINS_DESTROY: DeletedResourcePayload,
    t.APP_SCOPES_UPDATE: ScopesPayload,
}


def parse_payload(topic: str, raw: Any) -> TopicPayload:
    """Resolve a raw decoded body into the topic's payload model; PayloadError if it does not fit."""
    canonical = t.normalize_topic(topic)
    model = PAYLOAD_MODELS.get(canonical)
    if model is None:
        raise PayloadError(f"no payload model for topic {canonical!r}")
    if not isinstance(raw, dict):
        raise PayloadError(f"{canonical} payload must be an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise PayloadError(f"{canonical} payload invalid: {e.error_count()} error(s): {e.errors()[0].get('msg')}") from e


def resource_id_for(topic: str, raw: Any) -> Optional[str]:
    """Best-effort entity id for the job row (inventory topics key on the inventory item)."""
    if not isinstance(raw, dict):
        return None
    if t.topic_category(topic) is t.TopicCategory.INVENTORY:
        value = raw.get("inventory_item_id")
    else:
        value = raw.get("id")
    return str(value) if value is not None else None
