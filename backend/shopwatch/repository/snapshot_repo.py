from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session

from shopwatch.db.model.snapshot import ProductSnapshot, VariantSnapshot
from shopwatch.db.upsert import dialect_insert
from shopwatch.utils.clock import now_utc

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VariantSnapshotData:
    variant_id: str
    title: Optional[str] = None
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    sku: Optional[str] = None
    inventory_quantity: Optional[int] = None
    inventory_item_id: Optional[str] = None
    weight: Optional[Decimal] = None
    position: int = 0


@dataclass(slots=True)
class ProductSnapshotData:
    product_id: str
    title: str = ""
    description: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    status: str = "active"
    tags: List[str] = field(default_factory=list)
    image_count: int = 0
    options: List[Dict[str, Any]] = field(default_factory=list)
    variants: List[VariantSnapshotData] = field(default_factory=list)

    @property
    def first_variant(self) -> Optional[VariantSnapshotData]:
        return self.variants[0] if self.variants else None

    def variant(self, variant_id: str) -> Optional[VariantSnapshotData]:
        for v in self.variants:
            if v.variant_id == variant_id:
                return v
        return None


def _variant_from_row(row: VariantSnapshot) -> VariantSnapshotData:
    return VariantSnapshotData(
        variant_id=row.variant_id,
        title=row.title,
        price=row.price,
        compare_at_price=row.compare_at_price,
        sku=row.sku,
        inventory_quantity=row.inventory_quantity,
        inventory_item_id=row.inventory_item_id,
        weight=row.weight,
        position=row.position or 0,
    )



# for_update: hold the product row until commit so two jobs for one product diff in turn
def get_product_snapshot(
    db: Session, shop: str, product_id: str, *, for_update: bool = False
) -> Optional[ProductSnapshotData]:
    q = sa.select(ProductSnapshot).where(
        ProductSnapshot.shop == shop, ProductSnapshot.product_id == product_id
    )
    if for_update:
        q = q.with_for_update()
    row = db.execute(q).scalar_one_or_none()
    if row is None:
        return None

    variants = db.execute(
        sa.select(VariantSnapshot)
        .where(VariantSnapshot.shop == shop, VariantSnapshot.product_id == product_id)
        .order_by(VariantSnapshot.position.asc(), VariantSnapshot.id.asc())
    ).scalars()

    return ProductSnapshotData(
        product_id=row.product_id,
        title=row.title,
        description=row.description,
        vendor=row.vendor,
        product_type=row.product_type,
        status=row.status,
        tags=list(row.tags or []),
        image_count=row.image_count or 0,
        options=list(row.options or []),
        variants=[_variant_from_row(v) for v in variants],
    )



'''
Single-statement create-or-update for the product row and each variant row.
   - variants missing from the new state are removed
   - a known quantity is owned by the inventory path (aggregated total); the product
     payload only fills it in while it is still unknown
No commit: the caller's transaction also carries the change events.
'''
def upsert_product_snapshot(
    db: Session,
    shop: str,
    data: ProductSnapshotData,
    *,
    now: Optional[datetime] = None,
) -> None:
    now = now or now_utc()

    product_values = dict(
        shop=shop,
        product_id=data.product_id,
        title=data.title or "",
        description=data.description,
        vendor=data.vendor,
        product_type=data.product_type,
        status=data.status,
        tags=list(data.tags),
        image_count=data.image_count,
        options=list(data.options),
        updated_at=now,
    )
    stmt = dialect_insert(db, ProductSnapshot).values(**product_values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop", "product_id"],
        set_={k: getattr(stmt.excluded, k) for k in product_values if k not in ("shop", "product_id")},
    )
    db.execute(stmt)

    for v in data.variants:
        variant_values = dict(
            shop=shop,
            product_id=data.product_id,
            variant_id=v.variant_id,
            inventory_item_id=v.inventory_item_id,
            title=v.title,
            price=v.price,
            compare_at_price=v.compare_at_price,
            sku=v.sku,
            inventory_quantity=v.inventory_quantity,
            weight=v.weight,
            position=v.position,
            updated_at=now,
        )
        vstmt = dialect_insert(db, VariantSnapshot).values(**variant_values)
        set_ = {k: getattr(vstmt.excluded, k) for k in variant_values if k not in ("shop", "product_id", "variant_id")}
        set_["inventory_quantity"] = sa.func.coalesce(
            VariantSnapshot.inventory_quantity, vstmt.excluded.inventory_quantity
        )
        set_["inventory_item_id"] = sa.func.coalesce(
            vstmt.excluded.inventory_item_id, VariantSnapshot.inventory_item_id
        )
        vstmt = vstmt.on_conflict_do_update(
            index_elements=["shop", "product_id", "variant_id"],
            set_=set_,
        )
        db.execute(vstmt)

    keep_ids = [v.variant_id for v in data.variants]
    prune = sa.delete(VariantSnapshot).where(
        VariantSnapshot.shop == shop, VariantSnapshot.product_id == data.product_id
    )
    if keep_ids:
        prune = prune.where(VariantSnapshot.variant_id.not_in(keep_ids))
    db.execute(prune.execution_options(synchronize_session=False))



'''
Inventory webhook path: only the variant's aggregated quantity moves.
Creates the variant row when the product was never snapshotted.
'''
def upsert_variant_inventory(
    db: Session,
    shop: str,
    *,
    product_id: str,
    variant_id: str,
    quantity: int,
    inventory_item_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    now = now or now_utc()
    stmt = dialect_insert(db, VariantSnapshot).values(
        shop=shop,
        product_id=product_id,
        variant_id=variant_id,
        inventory_item_id=inventory_item_id,
        inventory_quantity=quantity,
        position=0,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop", "product_id", "variant_id"],
        set_={
            "inventory_quantity": stmt.excluded.inventory_quantity,
            "inventory_item_id": sa.func.coalesce(stmt.excluded.inventory_item_id, VariantSnapshot.inventory_item_id),
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)


def get_variant_snapshot(
    db: Session,
    shop: str,
    *,
    product_id: str,
    variant_id: str,
) -> Optional[VariantSnapshotData]:
    row = db.execute(
        sa.select(VariantSnapshot).where(
            VariantSnapshot.shop == shop,
            VariantSnapshot.product_id == product_id,
            VariantSnapshot.variant_id == variant_id,
        )
    ).scalar_one_or_none()
    return _variant_from_row(row) if row is not None else None


# (product_id, variant) for an inventory item we have seen before
def find_variant_by_inventory_item(db: Session, shop: str, inventory_item_id: str) -> Optional[tuple[str, VariantSnapshotData]]:
    row = db.execute(
        sa.select(VariantSnapshot)
        .where(VariantSnapshot.shop == shop, VariantSnapshot.inventory_item_id == inventory_item_id)
        .order_by(VariantSnapshot.updated_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if row is None:
        return None
    return row.product_id, _variant_from_row(row)


def get_product_title(db: Session, shop: str, product_id: str) -> Optional[str]:
    return db.execute(
        sa.select(ProductSnapshot.title).where(
            ProductSnapshot.shop == shop, ProductSnapshot.product_id == product_id
        )
    ).scalar_one_or_none()



# product deletion: drop the product row and all its variants, return the last known title
def delete_product_snapshot(db: Session, shop: str, product_id: str) -> Optional[str]:
    title = get_product_title(db, shop, product_id)
    db.execute(
        sa.delete(VariantSnapshot)
        .where(VariantSnapshot.shop == shop, VariantSnapshot.product_id == product_id)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(
        sa.delete(ProductSnapshot)
        .where(ProductSnapshot.shop == shop, ProductSnapshot.product_id == product_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info("snapshot.delete_missing shop=%s product=%s", shop, product_id)
    return title
