import json
from datetime import datetime

import pytest

from conftest import velocity
from shopwatch.services.context_enricher import (
    enrich_inventory_zero,
    enrich_low_stock,
    enrich_price_change,
    enrich_theme_publish,
    enrich_visibility_change,
    parse_context_data,
    serialize_context,
)
from shopwatch.services.money_saved import estimate_money_saved, parse_money
from shopwatch.services.sales_velocity import (
    SalesRecord,
    calculate_product_velocity,
    estimate_revenue_impact,
    format_velocity_context,
)


# ---------------- money saved ----------------

def test_price_drop_money_saved():
    # 80.10 difference * 8/day * 3 days * 0.5
    saved = estimate_money_saved("price_change", velocity(daily_rate=8), "$100.10", "$20.00")
    assert saved == pytest.approx(961.2)


def test_price_increase_saves_nothing():
    assert estimate_money_saved("price_change", velocity(), "$10.00", "$12.00") is None


def test_no_velocity_saves_nothing():
    assert estimate_money_saved("price_change", None, "$10.00", "$1.00") is None
    assert estimate_money_saved("inventory_zero", velocity(daily_rate=0), "5", "0") is None


def test_stockout_money_saved():
    # 8/day * $20 average * 3 days * 0.5
    assert estimate_money_saved("inventory_zero", velocity(daily_rate=8, avg_price=20), "5", "0") == pytest.approx(240.0)
    assert estimate_money_saved("visibility_change", velocity(daily_rate=8, avg_price=20), "active", "draft") == pytest.approx(240.0)
    assert estimate_money_saved("visibility_change", velocity(), "draft", "active") is None


def test_parse_money():
    assert str(parse_money("$1,234.50")) == "1234.50"
    assert parse_money("") is None
    assert parse_money("n/a") is None


# ---------------- velocity ----------------

def test_calculate_product_velocity():
    records = [
        SalesRecord("p1", 2, 20.0),
        SalesRecord("p2", 1, 5.0),
        SalesRecord("p1", 4, 40.0),
        SalesRecord("p3", 0, 0.0, order_count=0),
    ]
    result = calculate_product_velocity(records, period_days=2)
    assert "p3" not in result
    assert result["p1"].total_units_sold == 6
    assert result["p1"].order_count == 2
    assert result["p1"].daily_sales_rate == 3
    assert result["p1"].average_price == pytest.approx(10.0)
    assert result["p2"].daily_revenue == pytest.approx(2.5)


def test_format_velocity_context():
    assert format_velocity_context(velocity(daily_rate=8)) == "selling 8/day"
    assert format_velocity_context(velocity(daily_rate=0.5)) == "selling ~4/week"
    assert format_velocity_context(velocity(daily_rate=0.1)) == "sold 3 in the last 30 days"
    assert format_velocity_context(None) is None


def test_revenue_impact():
    # 8/24 per hour * 2 hours * $20 * 0.5
    assert estimate_revenue_impact(velocity(daily_rate=8, avg_price=20), "stockout") == pytest.approx(6.67)
    assert estimate_revenue_impact(velocity(daily_rate=8), "price_error", price_difference=12.0) == pytest.approx(4.0)
    assert estimate_revenue_impact(velocity(), "unknown_kind") is None
    assert estimate_revenue_impact(None, "stockout") is None


# ---------------- enrichment ----------------

def test_price_drop_flags_probable_typo():
    ctx = enrich_price_change("Classic Tee", "$100.00", "$5.00", velocity(daily_rate=8))
    assert ctx.percent_change == -95
    assert ctx.direction == "down"
    assert "(95% decrease)" in ctx.summary
    assert "probably a typo" in ctx.summary
    assert ctx.summary.endswith("selling 8/day")


def test_price_increase_summary():
    ctx = enrich_price_change("Classic Tee", "$10.00", "$12.00", None)
    assert ctx.summary == "Classic Tee changed from $10.00 to $12.00 (20% increase)"
    assert ctx.revenue_impact is None


def test_revenue_impact_only_for_price_drops():
    rise = enrich_price_change("Classic Tee", "$100.00", "$110.00", velocity(daily_rate=8))
    assert rise.revenue_impact is None

    # 12.00 drop * 8/24 per hour * 2h * 0.5
    drop = enrich_price_change("Classic Tee", "$100.00", "$88.00", velocity(daily_rate=8))
    assert drop.revenue_impact == pytest.approx(4.0)


def test_revenue_impact_only_when_product_goes_hidden():
    shown = enrich_visibility_change("Classic Tee", "draft", "active", velocity(daily_rate=8, avg_price=20))
    assert shown.revenue_impact is None

    hidden = enrich_visibility_change("Classic Tee", "active", "draft", velocity(daily_rate=8, avg_price=20))
    assert hidden.revenue_impact == pytest.approx(6.67)


def test_inventory_summaries():
    zero = enrich_inventory_zero("Classic Tee - Small", 12, velocity(daily_rate=8), "Warehouse")
    assert zero.summary == "Classic Tee - Small hit zero stock (was 12 units) - you've been selling 8/day at Warehouse"
    assert zero.location_context == "Warehouse"

    low = enrich_low_stock("Classic Tee - Small", 10, 3, None, None)
    assert low.summary == "Classic Tee - Small dropped to 3 units (was 10)"


def test_visibility_and_theme_summaries():
    hidden = enrich_visibility_change("Classic Tee", "active", "draft", None)
    assert "no longer visible to customers" in hidden.summary

    theme = enrich_theme_publish("Dawn", at=datetime(2025, 3, 1, 14, 5))
    assert theme.summary == 'Theme "Dawn" went live at 14:05 UTC'


def test_serialized_context_drops_empty_members():
    ctx = enrich_price_change("Classic Tee", "$10.00", "$12.00", None)
    data = json.loads(serialize_context(ctx))
    assert data["summary"] == ctx.summary
    assert data["percentChange"] == 20
    assert "velocityContext" not in data
    assert parse_context_data(serialize_context(ctx)).summary == ctx.summary


def test_unparseable_context_reads_as_none():
    assert parse_context_data(None) is None
    assert parse_context_data("{not json") is None
    assert parse_context_data('{"percentChange": 3}') is None
    assert serialize_context(None) is None
