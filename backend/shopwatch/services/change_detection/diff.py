from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from shopwatch.integrations.shopify.payload_utils import normalize_shopify_price, normalize_tags, strip_html
from shopwatch.repository.snapshot_repo import ProductSnapshotData, VariantSnapshotData
from shopwatch.services.payloads import ProductPayload

NONE_LABEL = "(none)"
DESCRIPTION_PREVIEW = 50


@dataclass(slots=True)
class FieldChange:
    field: str
    label: str
    old: Any
    new: Any

    def as_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "label": self.label, "old": self.old, "new": self.new}


# ---------------- payload -> snapshot ----------------

def build_product_snapshot(payload: ProductPayload) -> ProductSnapshotData:
    variants = [
        VariantSnapshotData(
            variant_id=v.id,
            title=v.title,
            price=normalize_shopify_price(v.price),
            compare_at_price=normalize_shopify_price(v.compare_at_price),
            sku=v.sku or None,
            inventory_quantity=v.inventory_quantity,
            inventory_item_id=v.inventory_item_id,
            weight=v.weight,
            position=v.position if v.position is not None else idx + 1,
        )
        for idx, v in enumerate(payload.variants)
    ]
    variants.sort(key=lambda v: v.position)

    return ProductSnapshotData(
        product_id=payload.id,
        title=payload.title or "",
        description=payload.body_html,
        vendor=payload.vendor or None,
        product_type=payload.product_type or None,
        status=(payload.status or "active").lower(),
        tags=normalize_tags(payload.tags),
        image_count=len(payload.images),
        options=[{"name": o.name, "values": list(o.values)} for o in payload.options],
        variants=variants,
    )


# ---------------- field diff ----------------

def _or_none(value: Optional[str]) -> str:
    return value if value else NONE_LABEL


def _preview(html: Optional[str]) -> str:
    text = strip_html(html)
    if not text:
        return NONE_LABEL
    return text if len(text) <= DESCRIPTION_PREVIEW else text[:DESCRIPTION_PREVIEW] + "..."


def _options_text(options: List[Dict[str, Any]]) -> str:
    return "; ".join(f"{o.get('name')}: {'/'.join(str(v) for v in o.get('values') or [])}" for o in options)


def _money(value) -> str:
    return f"${value}" if value is not None else "$0"


def detect_changes(old: ProductSnapshotData, new: ProductSnapshotData) -> List[FieldChange]:
    """Field-by-field diff of two product states. Variant fields compare the first variant."""
    changes: List[FieldChange] = []

    if old.title != new.title:
        changes.append(FieldChange("title", "Title", old.title, new.title))

    if (old.description or "") != (new.description or ""):
        changes.append(FieldChange("description", "Description", _preview(old.description), _preview(new.description)))

    if (old.vendor or None) != (new.vendor or None):
        changes.append(FieldChange("vendor", "Vendor", _or_none(old.vendor), _or_none(new.vendor)))

    if (old.product_type or None) != (new.product_type or None):
        changes.append(FieldChange("product_type", "Product type", _or_none(old.product_type), _or_none(new.product_type)))

    if old.status != new.status:
        changes.append(FieldChange("status", "Status", old.status, new.status))

    old_tags = ", ".join(sorted(old.tags)) or NONE_LABEL
    new_tags = ", ".join(sorted(new.tags)) or NONE_LABEL
    if old_tags != new_tags:
        changes.append(FieldChange("tags", "Tags", old_tags, new_tags))

    if old.image_count != new.image_count:
        changes.append(FieldChange("images", "Images", old.image_count, new.image_count))

    ov: Optional[VariantSnapshotData] = old.first_variant
    nv: Optional[VariantSnapshotData] = new.first_variant
    o_price, n_price = (ov.price if ov else None), (nv.price if nv else None)
    if o_price != n_price:
        changes.append(FieldChange("price", "Price", _money(o_price), _money(n_price)))

    o_cmp, n_cmp = (ov.compare_at_price if ov else None), (nv.compare_at_price if nv else None)
    if o_cmp != n_cmp:
        changes.append(FieldChange(
            "compare_at_price", "Compare-at price",
            f"${o_cmp}" if o_cmp is not None else NONE_LABEL,
            f"${n_cmp}" if n_cmp is not None else NONE_LABEL,
        ))

    o_inv = (ov.inventory_quantity if ov else None) or 0
    n_inv = (nv.inventory_quantity if nv else None) or 0
    if o_inv != n_inv:
        changes.append(FieldChange("inventory", "Stock", o_inv, n_inv))

    o_sku, n_sku = (ov.sku if ov else None), (nv.sku if nv else None)
    if (o_sku or None) != (n_sku or None):
        changes.append(FieldChange("sku", "SKU", _or_none(o_sku), _or_none(n_sku)))

    o_opts, n_opts = _options_text(old.options), _options_text(new.options)
    if o_opts != n_opts:
        changes.append(FieldChange("options", "Options", o_opts or NONE_LABEL, n_opts or NONE_LABEL))

    return changes


def format_change_summary(changes: List[FieldChange]) -> str:
    """
    one change     -> "Price: $10.00 → $12.00"
    two or three   -> "Title, Price changed"
    more           -> "5 fields changed"
    """
    if not changes:
        return ""
    if len(changes) == 1:
        c = changes[0]
        return f"{c.label}: {c.old} → {c.new}"
    if len(changes) <= 3:
        return ", ".join(c.label for c in changes) + " changed"
    return f"{len(changes)} fields changed"
