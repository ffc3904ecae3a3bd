import json
from decimal import Decimal

import sqlalchemy as sa

from conftest import (
    SHOP,
    FakeCatalogClient,
    FakeScopeStore,
    FakeTenantSettings,
    FakeVelocity,
    job_ctx,
    product_body,
    velocity,
)
from shopwatch.db.model.change_event import ChangeEvent
from shopwatch.repository import snapshot_repo
from shopwatch.services.change_detection.engine import DetectionResult
from shopwatch.services.change_detection.policy import EventType, Importance
from shopwatch.services.interfaces import VariantLookup
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


def _events(db, event_type=None):
    stmt = sa.select(ChangeEvent).order_by(ChangeEvent.detected_at, ChangeEvent.event_type)
    if event_type:
        stmt = stmt.where(ChangeEvent.event_type == event_type)
    return list(db.execute(stmt).scalars())


def _product(**kwargs):
    return ProductPayload.model_validate(product_body(**kwargs))


def _baseline(db, engine, **kwargs):
    engine.handle_product_update(db, _product(**kwargs), job_ctx("products/update", "wh-base"))
    db.commit()


# ========= products =========

def test_first_seen_product_stores_baseline_only(db, make_engine):
    engine = make_engine()
    result = engine.handle_product_update(db, _product(), job_ctx("products/update"))
    db.commit()

    assert result.note == "first_seen"
    assert result.event_ids == []
    assert _events(db) == []
    snap = snapshot_repo.get_product_snapshot(db, SHOP, "1001")
    assert snap.title == "Classic Tee"
    assert snap.first_variant.price == Decimal("20.00")


def test_unchanged_product_emits_nothing(db, make_engine):
    engine = make_engine()
    _baseline(db, engine)
    result = engine.handle_product_update(db, _product(), job_ctx("products/update", "wh-2"))

    assert result.note == "unchanged"
    assert result.event_ids == []


def test_product_jobs_lock_the_stored_snapshot(db, make_engine, monkeypatch):
    engine = make_engine()
    _baseline(db, engine)

    calls = []
    read = snapshot_repo.get_product_snapshot

    def locking_read(*args, **kwargs):
        calls.append(kwargs.get("for_update", False))
        return read(*args, **kwargs)

    monkeypatch.setattr(snapshot_repo, "get_product_snapshot", locking_read)
    engine.handle_product_update(db, _product(), job_ctx("products/update", "wh-2"))
    engine.handle_product_create(db, _product(), job_ctx("products/create", "wh-3"))

    assert calls == [True, True]


def test_price_change_creates_variant_event_and_activity_row(db, make_engine):
    client = FakeCatalogClient(author="Jane Merchant")
    engine = make_engine(velocity_provider=FakeVelocity(velocity(daily_rate=8)), client=client)
    _baseline(db, engine, price="20.00")

    result = engine.handle_product_update(db, _product(price="15.00"), job_ctx("products/update", "wh-2"))
    db.commit()

    assert len(result.event_ids) == 2
    price = _events(db, "price_change")[0]
    assert price.entity_type == "variant"
    assert price.entity_id == "5001"
    assert price.resource_name == "Classic Tee - Small"
    assert (price.before_value, price.after_value) == ("$20.00", "$15.00")
    assert price.importance == "medium"
    assert price.money_saved == Decimal("60.00")
    assert price.idempotency_key == "wh-2-price-5001"
    assert "25% decrease" in json.loads(price.context_data)["summary"]

    activity = _events(db, "product_updated")[0]
    assert activity.importance == "low"
    assert activity.after_value == "Price: $20.00 → $15.00"
    assert activity.author == "Jane Merchant"
    assert json.loads(activity.diff)["changes"][0]["field"] == "price"
    assert ("Product", "1001", "update") in client.event_calls

    assert snapshot_repo.get_product_snapshot(db, SHOP, "1001").first_variant.price == Decimal("15.00")


def test_untracked_prices_still_record_activity(db, make_engine):
    engine = make_engine(settings_provider=FakeTenantSettings(disabled={"prices"}))
    _baseline(db, engine, price="20.00")
    result = engine.handle_product_update(db, _product(price="1.00"), job_ctx("products/update", "wh-2"))
    db.commit()

    assert _events(db, "price_change") == []
    assert len(_events(db, "product_updated")) == 1
    assert result.suppressed == 1


def test_hiding_a_product_is_high_and_alerts_instantly(db, make_engine):
    tenant = FakeTenantSettings(instant=True, email="owner@example.com")
    engine = make_engine(settings_provider=tenant)
    _baseline(db, engine, status="active")

    result = engine.handle_product_update(db, _product(status="draft"), job_ctx("products/update", "wh-2"))
    db.commit()

    visibility = _events(db, "visibility_change")[0]
    assert (visibility.before_value, visibility.after_value) == ("active", "draft")
    assert visibility.importance == "high"
    assert visibility.instant_alert_sent_at is not None
    assert len(result.alerts) == 1
    assert result.alerts[0].email == "owner@example.com"
    assert result.alerts[0].event_id == visibility.id


def test_draft_to_archived_is_not_a_visibility_event(db, make_engine):
    engine = make_engine()
    _baseline(db, engine, status="draft")
    engine.handle_product_update(db, _product(status="archived"), job_ctx("products/update", "wh-2"))
    db.commit()

    assert _events(db, "visibility_change") == []
    assert len(_events(db, "product_updated")) == 1


def test_product_create_and_late_create(db, make_engine):
    engine = make_engine()
    result = engine.handle_product_create(db, _product(), job_ctx("products/create", "wh-1"))
    db.commit()
    created = _events(db, "product_created")
    assert len(created) == 1 and created[0].after_value == "active"
    assert result.event_ids == [created[0].id]

    # an update already stored the product
    again = engine.handle_product_create(db, _product(), job_ctx("products/create", "wh-2"))
    assert again.note == "already_tracked"
    assert again.event_ids == []


def test_product_delete_uses_last_known_title(db, make_engine):
    engine = make_engine()
    _baseline(db, engine)
    engine.handle_product_delete(db, DeletedResourcePayload(id="1001"), job_ctx("products/delete", "wh-2"))
    db.commit()

    deleted = _events(db, "product_deleted")[0]
    assert deleted.resource_name == "Classic Tee"
    assert snapshot_repo.get_product_snapshot(db, SHOP, "1001") is None

    engine.handle_product_delete(db, DeletedResourcePayload(id="777"), job_ctx("products/delete", "wh-3"))
    db.commit()
    unknown = [e for e in _events(db, "product_deleted") if e.entity_id == "777"]
    assert unknown[0].resource_name == "Product #777"


def test_replayed_event_key_inserts_nothing(db, make_engine):
    engine = make_engine()
    ctx = job_ctx("themes/publish", "wh-9")
    first, second = DetectionResult(), DetectionResult()
    kwargs = dict(
        key_suffix="theme",
        entity_type="theme",
        entity_id="1",
        event_type=EventType.THEME_PUBLISH,
        resource_name="Dawn",
        before_value=None,
        after_value="Dawn",
        importance=Importance.HIGH,
    )
    assert engine.record_event(db, ctx, first, **kwargs) is not None
    assert engine.record_event(db, ctx, second, **kwargs) is None
    assert second.suppressed == 1
    assert len(_events(db)) == 1


def test_instant_alerts_are_rate_limited_per_hour(db, make_engine):
    tenant = FakeTenantSettings(instant=True, email="owner@example.com")
    engine = make_engine(settings_provider=tenant, instant_alerts_per_hour=1)
    result = DetectionResult()
    for n in range(2):
        engine.record_event(
            db, job_ctx("products/update", f"wh-{n}"), result,
            key_suffix="price-1",
            entity_type="variant",
            entity_id="1",
            event_type=EventType.PRICE_CHANGE,
            resource_name="Tee",
            before_value="$10.00",
            after_value="$0.00",
            importance=Importance.HIGH,
        )
    db.commit()

    assert len(result.event_ids) == 2
    assert len(result.alerts) == 1
    assert sum(1 for e in _events(db) if e.instant_alert_sent_at is not None) == 1


# ========= inventory =========

def _inventory_engine(make_engine, **kwargs):
    client = FakeCatalogClient(lookup=VariantLookup(
        variant_id="5001", product_id="1001", variant_title="Small", product_title="Classic Tee",
    ))
    return make_engine(client=client, **kwargs), client


def _level(available=None, item="9001"):
    return InventoryLevelPayload(inventory_item_id=item, location_id="1001", available=available)


def test_inventory_zero_is_deduplicated_inside_window(db, make_engine, clock):
    engine, client = _inventory_engine(make_engine)

    for n, qty in enumerate([10, 0, 10, 0]):
        client.levels["9001"] = qty
        engine.handle_inventory_update(db, _level(qty), job_ctx("inventory/levels/update", f"inv-{n}"))
        db.commit()
        clock.advance(minutes=5)

    zero = _events(db, "inventory_zero")
    assert len(zero) == 1
    assert zero[0].entity_type == "inventory_item"
    assert zero[0].entity_id == "9001"
    assert (zero[0].before_value, zero[0].after_value) == ("10", "0")
    assert zero[0].importance == "high"
    assert zero[0].resource_name == "Classic Tee - Small"
    assert len(_events(db, "inventory_update")) == 4

    # outside the dedup window a new stockout is reported again
    clock.advance(hours=25)
    for n, qty in enumerate([10, 0], start=10):
        client.levels["9001"] = qty
        engine.handle_inventory_update(db, _level(qty), job_ctx("inventory/levels/update", f"inv-{n}"))
        db.commit()
    assert len(_events(db, "inventory_zero")) == 2


def test_first_inventory_observation_never_alerts(db, make_engine):
    engine, client = _inventory_engine(make_engine)
    client.levels["9001"] = 0
    engine.handle_inventory_update(db, _level(0), job_ctx("inventory/levels/update"))
    db.commit()

    assert _events(db, "inventory_zero") == []
    update = _events(db, "inventory_update")[0]
    assert update.before_value is None and update.after_value == "0"
    assert snapshot_repo.get_variant_snapshot(db, SHOP, product_id="1001", variant_id="5001").inventory_quantity == 0


def test_low_stock_crossing(db, make_engine):
    engine, client = _inventory_engine(make_engine, settings_provider=FakeTenantSettings(threshold=5))
    for n, qty in enumerate([10, 3]):
        client.levels["9001"] = qty
        engine.handle_inventory_update(db, _level(qty), job_ctx("inventory/levels/update", f"inv-{n}"))
        db.commit()

    low = _events(db, "inventory_low")
    assert len(low) == 1
    assert (low[0].before_value, low[0].after_value) == ("10", "3")
    assert low[0].importance == "medium"
    assert json.loads(low[0].diff)["threshold"] == 5


def test_failed_aggregation_leaves_snapshot_alone(db, make_engine, clock):
    engine, client = _inventory_engine(make_engine)
    client.levels["9001"] = 10
    engine.handle_inventory_update(db, _level(10), job_ctx("inventory/levels/update", "inv-1"))
    db.commit()

    clock.advance(minutes=1)
    client.fail_levels = True
    engine.handle_inventory_update(db, _level(0), job_ctx("inventory/levels/update", "inv-2"))
    db.commit()

    assert _events(db, "inventory_zero") == []
    assert snapshot_repo.get_variant_snapshot(db, SHOP, product_id="1001", variant_id="5001").inventory_quantity == 10
    assert json.loads(_events(db, "inventory_update")[-1].diff)["partial"] is True


def test_gift_cards_are_skipped(db, make_engine):
    client = FakeCatalogClient(lookup=VariantLookup(
        variant_id="5001", product_id="1001", product_title="Gift Card", is_gift_card=True,
    ))
    engine = make_engine(client=client)
    result = engine.handle_inventory_update(db, _level(0), job_ctx("inventory/levels/update"))

    assert result.note == "gift_card"
    assert _events(db) == []


def test_inventory_without_platform_access_skips_thresholds(db, make_engine):
    engine = make_engine()
    _baseline(db, engine, inventory_quantity=60)

    # one location drained while others may still hold stock
    engine.handle_inventory_update(db, _level(0), job_ctx("inventory/levels/update", "inv-1"))
    db.commit()

    assert _events(db, "inventory_zero") == []
    assert _events(db, "inventory_low") == []
    assert snapshot_repo.get_variant_snapshot(db, SHOP, product_id="1001", variant_id="5001").inventory_quantity == 60

    update = _events(db, "inventory_update")[0]
    assert update.resource_name == "Classic Tee - Small"
    assert (update.before_value, update.after_value) == ("60", None)
    diff = json.loads(update.diff)
    assert diff["partial"] is True
    assert diff["totalQuantity"] is None and diff["available"] == 0


def test_product_update_does_not_move_the_inventory_baseline(db, make_engine, clock):
    engine, client = _inventory_engine(make_engine)
    _baseline(db, engine, inventory_quantity=10)

    # products/update for the sale lands before the inventory job
    clock.advance(minutes=1)
    engine.handle_product_update(db, _product(inventory_quantity=0), job_ctx("products/update", "wh-sale"))
    db.commit()
    assert snapshot_repo.get_variant_snapshot(db, SHOP, product_id="1001", variant_id="5001").inventory_quantity == 10

    clock.advance(minutes=1)
    client.levels["9001"] = 0
    engine.handle_inventory_update(db, _level(0), job_ctx("inventory/levels/update", "inv-sale"))
    db.commit()

    zero = _events(db, "inventory_zero")
    assert len(zero) == 1
    assert (zero[0].before_value, zero[0].after_value) == ("10", "0")
    assert snapshot_repo.get_variant_snapshot(db, SHOP, product_id="1001", variant_id="5001").inventory_quantity == 0


def test_untracked_inventory_still_moves_the_snapshot(db, make_engine):
    engine, client = _inventory_engine(make_engine, settings_provider=FakeTenantSettings(disabled={"inventory"}))
    client.levels["9001"] = 4
    result = engine.handle_inventory_update(db, _level(4), job_ctx("inventory/levels/update"))
    db.commit()

    assert _events(db) == []
    assert result.suppressed == 1
    assert snapshot_repo.get_variant_snapshot(db, SHOP, product_id="1001", variant_id="5001").inventory_quantity == 4


# ========= themes / collections / discounts / domains / scopes =========

def test_only_main_theme_publishes_count(db, make_engine):
    engine = make_engine()
    skipped = engine.handle_theme_publish(db, ThemePayload(id="1", name="Draft", role="unpublished"), job_ctx("themes/publish", "t-1"))
    assert skipped.event_ids == []

    engine.handle_theme_publish(db, ThemePayload(id="2", name="Dawn", role="main"), job_ctx("themes/publish", "t-2"))
    db.commit()
    theme = _events(db, "theme_publish")[0]
    assert theme.resource_name == "Dawn"
    assert theme.importance == "high"
    assert theme.instant_alert_sent_at is None


def test_untracked_feature_is_suppressed(db, make_engine):
    engine = make_engine(settings_provider=FakeTenantSettings(disabled={"themes"}))
    result = engine.handle_theme_publish(db, ThemePayload(id="2", name="Dawn", role="main"), job_ctx("themes/publish"))
    assert result.suppressed == 1
    assert _events(db) == []


def test_collection_lifecycle(db, make_engine, clock):
    engine = make_engine()
    engine.handle_collection(db, CollectionPayload(id="300", title="Summer"), job_ctx("collections/create", "c-1"))
    clock.advance(minutes=1)
    engine.handle_collection(db, CollectionPayload(id="300", title="Summer Sale"), job_ctx("collections/update", "c-2"))
    db.commit()
    engine.handle_collection(db, DeletedResourcePayload(id="300"), job_ctx("collections/delete", "c-3"))
    db.commit()

    created, updated, deleted = (_events(db, t)[0] for t in ("collection_created", "collection_updated", "collection_deleted"))
    assert created.importance == "low"
    assert updated.importance == "medium"
    assert deleted.importance == "high"
    assert deleted.resource_name == "Summer Sale"


def test_discounts(db, make_engine):
    engine = make_engine()
    engine.handle_discount(db, DiscountPayload.model_validate(
        {"id": 40, "title": "Half off", "value": "-50.0", "value_type": "percentage"}), job_ctx("discounts/create", "d-1"))
    engine.handle_discount(db, DiscountPayload.model_validate(
        {"id": 41, "code": "TENOFF", "value": "-10.00", "value_type": "fixed_amount"}), job_ctx("discounts/create", "d-2"))
    db.commit()

    half, ten = sorted(_events(db, "discount_created"), key=lambda e: e.entity_id)
    assert (half.after_value, half.importance) == ("50% off", "high")
    assert (ten.resource_name, ten.after_value, ten.importance) == ("TENOFF", "$10.00 off", "medium")

    engine.handle_discount(db, DeletedResourcePayload(id="40"), job_ctx("discounts/delete", "d-3"))
    db.commit()
    deleted = _events(db, "discount_deleted")[0]
    assert deleted.resource_name == "Half off"
    assert deleted.importance == "high"


def test_domains(db, make_engine):
    engine = make_engine()
    engine.handle_domain(db, DomainPayload(id="5", host="shop.example.com"), job_ctx("domains/create", "dm-1"))
    db.commit()
    engine.handle_domain(db, DeletedResourcePayload(id="5"), job_ctx("domains/destroy", "dm-2"))
    db.commit()

    assert _events(db, "domain_changed")[0].after_value == "shop.example.com"
    removed = _events(db, "domain_removed")[0]
    assert removed.resource_name == "shop.example.com"
    assert removed.importance == "high"


def test_scopes_diff_against_stored_grant(db, make_engine):
    store = FakeScopeStore(["read_products"])
    engine = make_engine(scope_store=store)
    payload = ScopesPayload(previous=["read_products"], current=["read_products", "write_orders"])
    engine.handle_scopes_update(db, payload, job_ctx("app/scopes/update", "s-1"))
    db.commit()

    event = _events(db, "app_permissions_changed")[0]
    assert event.importance == "high"
    assert event.resource_name == "1 scope added"
    assert json.loads(event.diff) == {"added": ["write_orders"], "removed": []}
    assert store.granted_scopes(SHOP) == ["read_products", "write_orders"]

    unchanged = engine.handle_scopes_update(db, payload, job_ctx("app/scopes/update", "s-2"))
    assert unchanged.note == "scopes_unchanged"
