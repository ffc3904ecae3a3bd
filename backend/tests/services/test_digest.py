from datetime import timedelta
from decimal import Decimal

import sqlalchemy as sa

from conftest import SHOP, T0, RecordingDispatcher
from shopwatch.db.model.change_event import ChangeEvent
from shopwatch.db.model.shop import Shop
from shopwatch.repository import change_event_repo
from shopwatch.repository.change_event_repo import NewChangeEvent
from shopwatch.services.digest import collect_digest, deliver_pending_digests, purge_digested_events


def _event(db, key, event_type="price_change", *, shop=SHOP, at=T0 - timedelta(hours=1), importance="high", money=None):
    return change_event_repo.insert_event(db, NewChangeEvent(
        shop=shop,
        entity_type="variant",
        entity_id="5001",
        event_type=event_type,
        resource_name="Classic Tee - Small",
        before_value="$20.00",
        after_value="$2.00",
        importance=importance,
        idempotency_key=key,
        money_saved=money,
        context_data='{"summary": "Classic Tee - Small changed from $20.00 to $2.00"}',
        detected_at=at,
    ))


def _setup(session_factory, *, email="owner@example.com"):
    db = session_factory()
    db.add(Shop(shop=SHOP, plan="pro", alert_email=email))
    ids = [
        _event(db, "k1", money=Decimal("30.00")),
        _event(db, "k2", "inventory_zero", money=Decimal("12.50")),
        _event(db, "k3", "product_updated", importance="low"),
        _event(db, "k4", at=T0 - timedelta(days=3)),
    ]
    db.commit()
    db.close()
    return ids


def _digested(session_factory):
    db = session_factory()
    try:
        return {e.idempotency_key: e.digested_at for e in db.execute(sa.select(ChangeEvent)).scalars()}
    finally:
        db.close()


def test_collect_digest_filters_window_and_activity_rows(session_factory):
    _setup(session_factory)
    db = session_factory()
    batch = collect_digest(db, SHOP, "owner@example.com", now=T0, window_hours=24)

    assert {i.event_type for i in batch.items} == {"price_change", "inventory_zero"}
    assert batch.total_money_saved == 42.5
    assert batch.items[0].summary.startswith("Classic Tee - Small changed")
    assert batch.window_end == T0
    db.close()


def test_digest_marks_events_once(session_factory):
    _setup(session_factory)
    dispatcher = RecordingDispatcher()

    first = deliver_pending_digests(session_factory, dispatcher, now=T0)
    assert (first.sent, first.events) == (1, 2)
    assert len(dispatcher.digests) == 1

    marks = _digested(session_factory)
    assert marks["k1"] == T0 and marks["k2"] == T0
    assert marks["k3"] is None          # activity rows stay browsable, never mailed
    assert marks["k4"] is None          # outside the window

    second = deliver_pending_digests(session_factory, dispatcher, now=T0)
    assert second.sent == 0
    assert len(dispatcher.digests) == 1


def test_rejected_digest_leaves_events_pending(session_factory):
    _setup(session_factory)
    result = deliver_pending_digests(session_factory, RecordingDispatcher(accept=False), now=T0)

    assert result.failed == 1
    assert all(v is None for v in _digested(session_factory).values())


def test_shop_without_email_is_skipped(session_factory):
    _setup(session_factory, email=None)
    dispatcher = RecordingDispatcher()
    result = deliver_pending_digests(session_factory, dispatcher, now=T0)

    assert result.skipped == 1
    assert dispatcher.digests == []


def test_mark_digested_is_conditional(db):
    event_id = _event(db, "k1")
    db.commit()

    assert change_event_repo.mark_digested(db, [event_id], now=T0) == [event_id]
    assert change_event_repo.mark_digested(db, [event_id], now=T0) == []
    assert change_event_repo.mark_digested(db, []) == []


def test_purge_only_removes_old_digested_events(db):
    old_digested = _event(db, "k1", at=T0 - timedelta(days=100))
    _event(db, "k2", at=T0 - timedelta(days=100))
    _event(db, "k3", at=T0 - timedelta(days=1))
    change_event_repo.mark_digested(db, [old_digested], now=T0)
    db.commit()

    assert purge_digested_events(db, older_than_days=90, now=T0) == 1
    remaining = {e.idempotency_key for e in db.execute(sa.select(ChangeEvent)).scalars()}
    assert remaining == {"k2", "k3"}


def test_purge_expires_activity_rows_by_age(db):
    _event(db, "old-activity", "inventory_update", at=T0 - timedelta(days=365), importance="low")
    _event(db, "new-activity", "product_updated", at=T0 - timedelta(days=1), importance="low")
    _event(db, "old-alert", "inventory_zero", at=T0 - timedelta(days=365))
    db.commit()

    assert purge_digested_events(db, older_than_days=30, now=T0) == 1
    remaining = {e.idempotency_key for e in db.execute(sa.select(ChangeEvent)).scalars()}
    assert remaining == {"new-activity", "old-alert"}
