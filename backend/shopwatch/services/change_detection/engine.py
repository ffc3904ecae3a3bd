from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from shopwatch.core.config import settings
from shopwatch.repository import change_event_repo, snapshot_repo
from shopwatch.repository.change_event_repo import NewChangeEvent
from shopwatch.services.change_detection import policy
from shopwatch.services.change_detection.diff import build_product_snapshot, detect_changes, format_change_summary
from shopwatch.services.change_detection.policy import EventType, Importance
from shopwatch.services.context_enricher import (
    EnrichedContext,
    enrich_inventory_zero,
    enrich_low_stock,
    enrich_price_change,
    enrich_theme_publish,
    enrich_visibility_change,
    serialize_context,
)
from shopwatch.services.interfaces import (
    CatalogClient,
    InstantAlert,
    ProductVelocity,
    SalesVelocityProvider,
    ScopeStore,
    TenantSettingsProvider,
)
from shopwatch.services.inventory_aggregator import InventoryAggregate, InventoryAggregator
from shopwatch.services.money_saved import estimate_money_saved
from shopwatch.services.payloads import (
    CollectionPayload,
    DeletedResourcePayload,
    DiscountPayload,
    DomainPayload,
    InventoryLevelPayload,
    ProductPayload,
    ScopesPayload,
    ThemePayload,
)
from shopwatch.utils.clock import now_utc
from shopwatch.utils.serialization import dumps

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class JobContext:
    shop: str
    topic: str
    verb: str
    job_key: str                     # webhook id, or "job-<id>" when the delivery had none


@dataclass(slots=True)
class DetectionResult:
    event_ids: List[str] = field(default_factory=list)
    alerts: List[InstantAlert] = field(default_factory=list)
    suppressed: int = 0              # policy gates, dedup windows, replays
    note: Optional[str] = None



'''
Snapshot-diffing change detection.

One engine instance serves one job. Handlers take the job's open session and never
commit: snapshot writes, event inserts and the job's completion share one transaction.
Collaborators that are only nice-to-have (author lookup, velocity) degrade to None.
'''
class ChangeDetectionEngine:

    def __init__(
        self,
        *,
        settings_provider: TenantSettingsProvider,
        velocity_provider: Optional[SalesVelocityProvider] = None,
        client: Optional[CatalogClient] = None,
        scope_store: Optional[ScopeStore] = None,
        aggregator: Optional[InventoryAggregator] = None,
        now: Callable[[], datetime] = now_utc,
        inventory_zero_dedup: Optional[timedelta] = None,
        instant_alerts_per_hour: Optional[int] = None,
    ):
        self.settings_provider = settings_provider
        self.velocity_provider = velocity_provider
        self.client = client
        self.scope_store = scope_store
        self.aggregator = aggregator or (InventoryAggregator(client) if client is not None else None)
        self.now = now
        self.inventory_zero_dedup = inventory_zero_dedup or timedelta(hours=settings.INVENTORY_ZERO_DEDUP_HOURS)
        self.instant_alerts_per_hour = instant_alerts_per_hour or settings.INSTANT_ALERTS_PER_HOUR
        self._velocity_cache: Dict[tuple[str, str], Optional[ProductVelocity]] = {}


    # ========= collaborators (best effort) =========

    def _velocity(self, shop: str, product_id: Optional[str]) -> Optional[ProductVelocity]:
        if self.velocity_provider is None or not product_id:
            return None
        key = (shop, product_id)
        if key not in self._velocity_cache:
            try:
                self._velocity_cache[key] = self.velocity_provider.velocity(shop, product_id)
            except Exception as e:
                logger.warning("velocity.unavailable shop=%s product=%s err=%s", shop, product_id, type(e).__name__)
                self._velocity_cache[key] = None
        return self._velocity_cache[key]

    def _author(self, resource_type: str, resource_id: str, verb: str) -> Optional[str]:
        if self.client is None:
            return None
        try:
            return self.client.fetch_events(resource_type, resource_id, verb)
        except Exception as e:
            logger.info("author.lookup_failed type=%s id=%s err=%s", resource_type, resource_id, type(e).__name__)
            return None


    # ========= single writer =========

    def record_event(
        self,
        db: Session,
        ctx: JobContext,
        result: DetectionResult,
        *,
        key_suffix: str,
        entity_type: str,
        entity_id: str,
        event_type: EventType,
        resource_name: str,
        before_value: Optional[str],
        after_value: Optional[str],
        importance: Importance,
        context: Optional[EnrichedContext] = None,
        diff: Optional[Any] = None,
        money_saved: Optional[float] = None,
        author: Optional[str] = None,
    ) -> Optional[str]:
        now = self.now()

        if event_type.value in policy.DEDUPED_EVENT_TYPES and change_event_repo.has_recent_undigested(
            db, ctx.shop, entity_id=entity_id, event_type=event_type.value,
            window=self.inventory_zero_dedup, now=now,
        ):
            logger.info("event.deduped shop=%s type=%s entity=%s", ctx.shop, event_type.value, entity_id)
            result.suppressed += 1
            return None

        send_instant = self._instant_alert_allowed(db, ctx.shop, event_type, importance, after_value, now)
        context_json = serialize_context(context)

        event_id = change_event_repo.insert_event(db, NewChangeEvent(
            shop=ctx.shop,
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type.value,
            resource_name=resource_name,
            before_value=before_value,
            after_value=after_value,
            importance=importance.value,
            idempotency_key=f"{ctx.job_key}-{key_suffix}",
            webhook_id=ctx.job_key,
            topic=ctx.topic,
            author=author,
            diff=dumps(diff) if diff is not None else None,
            context_data=context_json,
            money_saved=Decimal(str(money_saved)) if money_saved is not None else None,
            instant_alert_sent_at=now if send_instant else None,
            detected_at=now,
        ))
        if event_id is None:
            result.suppressed += 1
            return None

        result.event_ids.append(event_id)
        logger.info("event.created shop=%s type=%s importance=%s entity=%s name=%r",
                    ctx.shop, event_type.value, importance.value, entity_id, resource_name)

        if send_instant:
            email = self.settings_provider.alert_email(ctx.shop)
            if email:
                result.alerts.append(InstantAlert(
                    shop=ctx.shop,
                    email=email,
                    event_id=event_id,
                    event_type=event_type.value,
                    resource_name=resource_name,
                    before_value=before_value,
                    after_value=after_value,
                    importance=importance.value,
                    detected_at=now,
                    context_data=context_json,
                ))
        return event_id

    def _instant_alert_allowed(
        self,
        db: Session,
        shop: str,
        event_type: EventType,
        importance: Importance,
        after_value: Optional[str],
        now: datetime,
    ) -> bool:
        if not policy.is_critical_for_instant_alert(event_type.value, importance.value, after_value):
            return False
        if not self.settings_provider.has_instant_alerts(shop):
            return False
        # earlier inserts of this job are visible inside its own transaction
        sent = change_event_repo.count_instant_alerts_since(db, shop, now - timedelta(hours=1))
        if sent >= self.instant_alerts_per_hour:
            logger.info("alert.rate_limited shop=%s sent_last_hour=%s", shop, sent)
            return False
        return True


    # ========= products =========

    '''
    products/update
      1) build the new snapshot from the payload
      2) load the prior snapshot
      3) no prior: store the baseline, emit nothing
      4) diff: per-variant price events, one visibility event, one activity event
      5) store the new snapshot (same transaction as the events)
    '''
    def handle_product_update(self, db: Session, payload: ProductPayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        shop, now = ctx.shop, self.now()

        new = build_product_snapshot(payload)
        old = snapshot_repo.get_product_snapshot(db, shop, new.product_id, for_update=True)
        snapshot_repo.upsert_product_snapshot(db, shop, new, now=now)

        if old is None:
            logger.info("product.first_seen shop=%s product=%s (baseline stored)", shop, new.product_id)
            result.note = "first_seen"
            return result

        changes = detect_changes(old, new)
        if not changes:
            result.note = "unchanged"
            return result

        if self.settings_provider.can_track(shop, "prices"):
            for nv in new.variants:
                ov = old.variant(nv.variant_id)
                if ov is None or ov.price is None or nv.price is None or ov.price == nv.price:
                    continue
                name = policy.format_variant_label(new.title, nv.title)
                before, after = policy.format_price(ov.price), policy.format_price(nv.price)
                velocity = self._velocity(shop, new.product_id)
                self.record_event(
                    db, ctx, result,
                    key_suffix=f"price-{nv.variant_id}",
                    entity_type="variant",
                    entity_id=nv.variant_id,
                    event_type=EventType.PRICE_CHANGE,
                    resource_name=name,
                    before_value=before,
                    after_value=after,
                    importance=policy.price_importance(ov.price, nv.price),
                    context=enrich_price_change(name, before, after, velocity),
                    money_saved=estimate_money_saved(EventType.PRICE_CHANGE.value, velocity, before, after),
                )
        else:
            result.suppressed += 1

        if old.status != new.status:
            importance = policy.visibility_importance(old.status, new.status)
            if importance is not None and self.settings_provider.can_track(shop, "visibility"):
                velocity = self._velocity(shop, new.product_id)
                self.record_event(
                    db, ctx, result,
                    key_suffix="status",
                    entity_type="product",
                    entity_id=new.product_id,
                    event_type=EventType.VISIBILITY_CHANGE,
                    resource_name=new.title,
                    before_value=old.status,
                    after_value=new.status,
                    importance=importance,
                    context=enrich_visibility_change(new.title, old.status, new.status, velocity),
                    money_saved=estimate_money_saved(EventType.VISIBILITY_CHANGE.value, velocity, old.status, new.status),
                )

        self.record_event(
            db, ctx, result,
            key_suffix="product-updated",
            entity_type="product",
            entity_id=new.product_id,
            event_type=EventType.PRODUCT_UPDATED,
            resource_name=new.title,
            before_value=None,
            after_value=format_change_summary(changes),
            importance=Importance.LOW,
            diff={"changes": [c.as_dict() for c in changes]},
            author=self._author("Product", new.product_id, "update"),
        )
        return result

    def handle_product_create(self, db: Session, payload: ProductPayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        new = build_product_snapshot(payload)
        existing = snapshot_repo.get_product_snapshot(db, ctx.shop, new.product_id, for_update=True)
        snapshot_repo.upsert_product_snapshot(db, ctx.shop, new, now=self.now())

        # an update webhook may have beaten the create webhook here
        if existing is not None:
            result.note = "already_tracked"
            return result

        self.record_event(
            db, ctx, result,
            key_suffix="product-created",
            entity_type="product",
            entity_id=new.product_id,
            event_type=EventType.PRODUCT_CREATED,
            resource_name=new.title,
            before_value=None,
            after_value=new.status,
            importance=Importance.LOW,
            diff={"variants": len(new.variants), "status": new.status},
            author=self._author("Product", new.product_id, "create"),
        )
        return result

    def handle_product_delete(self, db: Session, payload: DeletedResourcePayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        product_id = payload.id
        title = snapshot_repo.delete_product_snapshot(db, ctx.shop, product_id)
        name = (
            title
            or change_event_repo.last_resource_name(db, ctx.shop, entity_type="product", entity_id=product_id)
            or f"Product #{product_id}"
        )
        self.record_event(
            db, ctx, result,
            key_suffix="product-deleted",
            entity_type="product",
            entity_id=product_id,
            event_type=EventType.PRODUCT_DELETED,
            resource_name=name,
            before_value=name,
            after_value=None,
            importance=Importance.LOW,
        )
        return result


    # ========= inventory =========

    '''
    inventory_levels/update
      1) resolve variant/product for the inventory item (platform lookup, then our snapshots)
      2) gift cards are not stock: skip
      3) aggregate the total across every location
      4) previous total = variant snapshot; low-stock / stockout rules on the totals
      5) activity event + snapshot quantity update
    '''
    def handle_inventory_update(self, db: Session, payload: InventoryLevelPayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        shop, item_id = ctx.shop, payload.inventory_item_id

        lookup = None
        if self.client is not None:
            try:
                lookup = self.client.fetch_variant_by_inventory_item(item_id)
            except Exception as e:
                logger.warning("inventory.variant_lookup_failed shop=%s item=%s err=%s", shop, item_id, type(e).__name__)

        if lookup is not None and lookup.is_gift_card:
            logger.info("inventory.gift_card_skipped shop=%s item=%s", shop, item_id)
            result.note = "gift_card"
            return result

        product_id: Optional[str] = lookup.product_id if lookup else None
        variant_id: Optional[str] = lookup.variant_id if lookup else None
        name: Optional[str] = lookup.display_name if lookup else None

        if not product_id or not variant_id:
            known = snapshot_repo.find_variant_by_inventory_item(db, shop, item_id)
            if known is not None:
                product_id, variant = known
                variant_id = variant.variant_id
                title = snapshot_repo.get_product_title(db, shop, product_id) or f"Product #{product_id}"
                name = policy.format_variant_label(title, variant.title)

        name = name or f"Inventory item #{item_id}"
        aggregate = self._aggregate(item_id, payload)
        total = aggregate.total_quantity
        known_total: Optional[int] = None if aggregate.failed else total

        tracking = self.settings_provider.can_track(shop, "inventory")
        previous: Optional[int] = None

        if product_id and variant_id:
            prev_snap = snapshot_repo.get_variant_snapshot(db, shop, product_id=product_id, variant_id=variant_id)
            previous = prev_snap.inventory_quantity if prev_snap else None

            # a failed aggregation reads as 0 and would look like a stockout
            if not aggregate.failed:
                if tracking:
                    self._detect_inventory_thresholds(db, ctx, result, item_id, product_id, name, previous, total, aggregate)
                snapshot_repo.upsert_variant_inventory(
                    db, shop,
                    product_id=product_id,
                    variant_id=variant_id,
                    inventory_item_id=item_id,
                    quantity=total,
                    now=self.now(),
                )
        else:
            logger.info("inventory.unknown_product shop=%s item=%s (threshold checks skipped)", shop, item_id)

        if not tracking:
            result.suppressed += 1
            return result

        self.record_event(
            db, ctx, result,
            key_suffix="inventory-update",
            entity_type="inventory_item",
            entity_id=item_id,
            event_type=EventType.INVENTORY_UPDATE,
            resource_name=name,
            before_value=str(previous) if previous is not None else None,
            after_value=str(known_total) if known_total is not None else None,
            importance=Importance.LOW,
            diff={
                "available": payload.available,
                "totalQuantity": known_total,
                "inventoryChange": (known_total - previous) if known_total is not None and previous is not None else None,
                "locationId": payload.location_id,
                "locationName": aggregate.location_name,
                "partial": aggregate.truncated or aggregate.failed,
            },
        )
        return result

    def _aggregate(self, item_id: str, payload: InventoryLevelPayload) -> InventoryAggregate:
        if self.aggregator is None:
            # no platform access: one location is not the total, so nothing to compare
            logger.info("inventory.no_platform_access item=%s (threshold checks skipped)", item_id)
            return InventoryAggregate(total_quantity=0, location_name=None, failed=True)
        return self.aggregator.aggregate(item_id, payload.location_id)

    def _detect_inventory_thresholds(
        self,
        db: Session,
        ctx: JobContext,
        result: DetectionResult,
        item_id: str,
        product_id: str,
        name: str,
        previous: Optional[int],
        total: int,
        aggregate: InventoryAggregate,
    ) -> None:
        shop = ctx.shop
        threshold = self.settings_provider.low_stock_threshold(shop)

        if policy.should_alert_low_stock(total, previous, threshold):
            velocity = self._velocity(shop, product_id)
            self.record_event(
                db, ctx, result,
                key_suffix=f"inventory-low-{item_id}",
                entity_type="inventory_item",
                entity_id=item_id,
                event_type=EventType.INVENTORY_LOW,
                resource_name=name,
                before_value=str(previous),
                after_value=str(total),
                importance=Importance.MEDIUM,
                context=enrich_low_stock(name, previous, total, velocity, aggregate.location_name),
                money_saved=estimate_money_saved(EventType.INVENTORY_LOW.value, velocity, str(previous), str(total)),
                diff={"threshold": threshold, "locationName": aggregate.location_name},
            )

        if policy.should_alert_inventory_zero(total, previous):
            velocity = self._velocity(shop, product_id)
            self.record_event(
                db, ctx, result,
                key_suffix=f"inventory-zero-{item_id}",
                entity_type="inventory_item",
                entity_id=item_id,
                event_type=EventType.INVENTORY_ZERO,
                resource_name=name,
                before_value=str(previous),
                after_value="0",
                importance=Importance.HIGH,
                context=enrich_inventory_zero(name, previous, velocity, aggregate.location_name),
                money_saved=estimate_money_saved(EventType.INVENTORY_ZERO.value, velocity, str(previous), "0"),
                diff={"locationName": aggregate.location_name},
            )


    # ========= themes / collections / discounts / domains =========

    def handle_theme_publish(self, db: Session, payload: ThemePayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        if (payload.role or "").lower() != policy.THEME_MAIN_ROLE:
            result.note = f"role={payload.role}"
            return result
        if not self.settings_provider.can_track(ctx.shop, "themes"):
            result.suppressed += 1
            return result

        name = payload.name or f"Theme #{payload.id}"
        self.record_event(
            db, ctx, result,
            key_suffix="theme",
            entity_type="theme",
            entity_id=payload.id,
            event_type=EventType.THEME_PUBLISH,
            resource_name=name,
            before_value=None,
            after_value=name,
            importance=Importance.HIGH,
            context=enrich_theme_publish(name, at=self.now()),
        )
        return result

    def handle_collection(self, db: Session, payload: CollectionPayload | DeletedResourcePayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        if not self.settings_provider.can_track(ctx.shop, "collections"):
            result.suppressed += 1
            return result

        importance = policy.COLLECTION_IMPORTANCE.get(ctx.verb, Importance.MEDIUM)
        if ctx.verb == "delete":
            name = (
                change_event_repo.last_resource_name(db, ctx.shop, entity_type="collection", entity_id=payload.id)
                or f"Collection #{payload.id}"
            )
            self.record_event(
                db, ctx, result,
                key_suffix="collection-deleted",
                entity_type="collection",
                entity_id=payload.id,
                event_type=EventType.COLLECTION_DELETED,
                resource_name=name,
                before_value=name,
                after_value=None,
                importance=importance,
            )
            return result

        title = getattr(payload, "title", "") or f"Collection #{payload.id}"
        created = ctx.verb == "create"
        self.record_event(
            db, ctx, result,
            key_suffix="collection-created" if created else "collection-updated",
            entity_type="collection",
            entity_id=payload.id,
            event_type=EventType.COLLECTION_CREATED if created else EventType.COLLECTION_UPDATED,
            resource_name=title,
            before_value=None,
            after_value=title,
            importance=importance,
            author=self._author("Collection", payload.id, ctx.verb),
        )
        return result

    def handle_discount(self, db: Session, payload: DiscountPayload | DeletedResourcePayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        if not self.settings_provider.can_track(ctx.shop, "discounts"):
            result.suppressed += 1
            return result

        if ctx.verb == "delete":
            name = (
                change_event_repo.last_resource_name(db, ctx.shop, entity_type="discount", entity_id=payload.id)
                or f"Discount #{payload.id}"
            )
            self.record_event(
                db, ctx, result,
                key_suffix="discount-deleted",
                entity_type="discount",
                entity_id=payload.id,
                event_type=EventType.DISCOUNT_DELETED,
                resource_name=name,
                before_value=name,
                after_value=None,
                importance=Importance.HIGH,
            )
            return result

        pct = payload.percentage
        if pct is not None:
            after = f"{pct.normalize():f}% off"
        elif payload.value is not None:
            after = f"{policy.format_price(abs(payload.value))} off"
        else:
            after = None

        created = ctx.verb == "create"
        self.record_event(
            db, ctx, result,
            key_suffix="discount-created" if created else "discount-updated",
            entity_type="discount",
            entity_id=payload.id,
            event_type=EventType.DISCOUNT_CREATED if created else EventType.DISCOUNT_UPDATED,
            resource_name=payload.display_title,
            before_value=None,
            after_value=after,
            importance=policy.discount_importance(ctx.verb, pct),
        )
        return result

    def handle_domain(self, db: Session, payload: DomainPayload | DeletedResourcePayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        if not self.settings_provider.can_track(ctx.shop, "domains"):
            result.suppressed += 1
            return result

        if ctx.verb == "destroy":
            name = (
                change_event_repo.last_resource_name(db, ctx.shop, entity_type="domain", entity_id=payload.id)
                or f"Domain #{payload.id}"
            )
            self.record_event(
                db, ctx, result,
                key_suffix="domain-removed",
                entity_type="domain",
                entity_id=payload.id,
                event_type=EventType.DOMAIN_REMOVED,
                resource_name=name,
                before_value=name,
                after_value=None,
                importance=Importance.HIGH,
            )
            return result

        host = getattr(payload, "host", None) or f"Domain #{payload.id}"
        self.record_event(
            db, ctx, result,
            key_suffix="domain-changed",
            entity_type="domain",
            entity_id=payload.id,
            event_type=EventType.DOMAIN_CHANGED,
            resource_name=host,
            before_value=None,
            after_value=host,
            importance=Importance.HIGH,
        )
        return result


    # ========= app permissions =========

    def handle_scopes_update(self, db: Session, payload: ScopesPayload, ctx: JobContext) -> DetectionResult:
        result = DetectionResult()
        stored = self.scope_store.granted_scopes(ctx.shop) if self.scope_store is not None else None
        previous: List[str] = stored if stored is not None else list(payload.previous)
        current: List[str] = list(payload.current)

        diff = policy.diff_scopes(previous, current)
        if self.scope_store is not None:
            self.scope_store.save_granted_scopes(ctx.shop, current)

        importance = policy.scopes_importance(diff)
        if importance is None:
            result.note = "scopes_unchanged"
            return result
        if not self.settings_provider.can_track(ctx.shop, "app_permissions"):
            result.suppressed += 1
            return result

        self.record_event(
            db, ctx, result,
            key_suffix="scopes",
            entity_type="app",
            entity_id=ctx.shop,
            event_type=EventType.APP_PERMISSIONS_CHANGED,
            resource_name=policy.scopes_summary(diff),
            before_value=",".join(sorted(set(previous))) or None,
            after_value=",".join(sorted(set(current))) or None,
            importance=importance,
            diff={"added": diff.added, "removed": diff.removed},
        )
        return result
