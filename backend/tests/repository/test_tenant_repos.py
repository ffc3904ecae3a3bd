from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import SHOP, T0
from shopwatch.db.model.sales import ProductSalesPoint
from shopwatch.db.model.shop import Shop
from shopwatch.repository import shop_repo
from shopwatch.repository.sales_repo import DbSalesVelocityProvider
from shopwatch.repository.shop_repo import DbScopeStore, DbShopSettingsProvider
from shopwatch.utils.clock import now_utc


def _shop(db, **kwargs):
    row = Shop(shop=kwargs.pop("shop", SHOP), **kwargs)
    db.add(row)
    db.commit()
    return row


@pytest.mark.parametrize("plan, feature, expected", [
    ("free", "prices", True),
    ("free", "themes", False),
    ("free", "discounts", False),
    ("pro", "themes", True),
    ("pro", "domains", True),
    ("pro", "no_such_feature", False),
])
def test_plan_gates_features(db, plan, feature, expected):
    _shop(db, plan=plan, track_themes=True, track_discounts=True, track_domains=True)
    assert DbShopSettingsProvider(db).can_track(SHOP, feature) is expected


def test_toggle_off_blocks_even_on_pro(db):
    _shop(db, plan="pro", track_prices=False)
    assert not DbShopSettingsProvider(db).can_track(SHOP, "prices")


def test_unknown_and_uninstalled_shops_track_nothing(db):
    _shop(db, shop="gone.myshopify.com", uninstalled_at=T0)
    provider = DbShopSettingsProvider(db)
    assert not provider.can_track("gone.myshopify.com", "prices")
    assert not provider.can_track("never-installed.myshopify.com", "prices")
    assert provider.low_stock_threshold("never-installed.myshopify.com") is None


def test_low_stock_threshold_follows_inventory_tracking(db):
    _shop(db, low_stock_threshold=7)
    assert DbShopSettingsProvider(db).low_stock_threshold(SHOP) == 7

    _shop(db, shop="other.myshopify.com", track_inventory=False)
    assert DbShopSettingsProvider(db).low_stock_threshold("other.myshopify.com") is None


def test_instant_alerts_need_pro_toggle_and_email(db):
    _shop(db, plan="pro", instant_alerts=True, alert_email="owner@example.com")
    _shop(db, shop="free.myshopify.com", plan="free", instant_alerts=True, alert_email="a@example.com")
    _shop(db, shop="noemail.myshopify.com", plan="pro", instant_alerts=True)
    provider = DbShopSettingsProvider(db)

    assert provider.has_instant_alerts(SHOP)
    assert provider.alert_email(SHOP) == "owner@example.com"
    assert not provider.has_instant_alerts("free.myshopify.com")
    assert not provider.has_instant_alerts("noemail.myshopify.com")


def test_scope_store_round_trip(db):
    _shop(db)
    store = DbScopeStore(db)
    assert store.granted_scopes(SHOP) is None

    store.save_granted_scopes(SHOP, ["write_orders", "read_products", "read_products"])
    db.commit()
    assert store.granted_scopes(SHOP) == ["read_products", "write_orders"]

    # unknown shop: logged, nothing written
    store.save_granted_scopes("unknown.myshopify.com", ["read_products"])
    assert store.granted_scopes("unknown.myshopify.com") is None


def test_digest_recipients(db):
    _shop(db, alert_email="owner@example.com")
    _shop(db, shop="quiet.myshopify.com")
    _shop(db, shop="gone.myshopify.com", alert_email="x@example.com", uninstalled_at=T0)

    recipients = shop_repo.list_digest_recipients(
        db, [SHOP, "quiet.myshopify.com", "gone.myshopify.com"])
    assert recipients == {SHOP: "owner@example.com"}
    assert shop_repo.list_digest_recipients(db, []) == {}


def test_access_token_lookup(db):
    _shop(db, access_token="shpat_123")
    assert shop_repo.get_access_token(db, SHOP) == "shpat_123"
    assert shop_repo.get_access_token(db, "unknown.myshopify.com") is None


def test_sales_velocity_from_daily_buckets(db):
    today = now_utc().date()
    for days_ago, units, revenue in [(1, 10, "200.00"), (5, 20, "400.00"), (90, 500, "9999.00")]:
        db.add(ProductSalesPoint(
            shop=SHOP, product_id="1001", bucket_start=today - timedelta(days=days_ago),
            units_sold=units, order_count=units, revenue=Decimal(revenue),
        ))
    db.commit()

    v = DbSalesVelocityProvider(db, period_days=30).velocity(SHOP, "1001")
    assert v.total_units_sold == 30
    assert v.order_count == 30
    assert v.total_revenue == pytest.approx(600.0)
    assert v.daily_sales_rate == pytest.approx(1.0)
    assert v.average_price == pytest.approx(20.0)


def test_no_sales_means_no_velocity(db):
    assert DbSalesVelocityProvider(db).velocity(SHOP, "1001") is None
