from datetime import timedelta

import pytest
import sqlalchemy as sa

from conftest import (
    SHOP,
    T0,
    FakeTenantSettings,
    RecordingDispatcher,
    RecordingScheduler,
    product_body,
)
from shopwatch.core.config import settings
from shopwatch.db.model.change_event import ChangeEvent
from shopwatch.orchestration.job_processor import JobProcessor, enqueue_webhook, route
from shopwatch.repository import job_repo
from shopwatch.services import topics as t
from shopwatch.services.change_detection.engine import ChangeDetectionEngine


@pytest.fixture
def engine_factory(clock):
    tenant = FakeTenantSettings(instant=True, email="owner@example.com")

    def _factory(db, shop):
        return ChangeDetectionEngine(settings_provider=tenant, now=clock)
    return _factory


@pytest.fixture
def processor(session_factory, engine_factory, clock, dispatcher, scheduler):
    return JobProcessor(
        session_factory,
        engine_factory=engine_factory,
        dispatcher=dispatcher,
        scheduler=scheduler,
        max_retries=3,
        now=clock,
    )


def _enqueue(session_factory, topic, payload, webhook_id, *, at=T0):
    db = session_factory()
    try:
        return job_repo.enqueue(db, shop=SHOP, topic=topic, payload=payload, webhook_id=webhook_id, now=at)
    finally:
        db.close()


def _job(session_factory, job_id):
    db = session_factory()
    try:
        return job_repo.get_job(db, job_id)
    finally:
        db.close()


def _events(session_factory):
    db = session_factory()
    try:
        return list(db.execute(sa.select(ChangeEvent)).scalars())
    finally:
        db.close()


def test_jobs_are_processed_in_order(session_factory, processor, clock):
    first = _enqueue(session_factory, "products/update", product_body(price="20.00"), "wh-1", at=T0)
    second = _enqueue(session_factory, "products/update", product_body(price="15.00"), "wh-2", at=T0 + timedelta(seconds=1))
    clock.advance(seconds=10)

    result = processor.process_pending()

    assert (result.processed, result.failed, result.events) == (2, 0, 2)
    assert _job(session_factory, first).status == "completed"
    assert _job(session_factory, second).status == "completed"
    assert sorted(e.event_type for e in _events(session_factory)) == ["price_change", "product_updated"]


def test_jobs_not_yet_due_wait(session_factory, processor):
    db = session_factory()
    job_repo.enqueue(db, shop=SHOP, topic="products/update", payload=product_body(), webhook_id="wh-1",
                     delay_seconds=30, now=T0)
    db.close()

    assert processor.process_pending().processed == 0


def test_unhandled_topic_completes_without_events(session_factory, processor, clock):
    job_id = _enqueue(session_factory, "orders/create", {"id": 1}, "wh-1")
    clock.advance(seconds=1)

    result = processor.process_pending()

    assert result.processed == 1
    assert _job(session_factory, job_id).status == "completed"
    assert _events(session_factory) == []


def test_bad_payload_retries_then_fails(session_factory, processor, clock):
    job_id = _enqueue(session_factory, "products/update", {"title": "missing id"}, "wh-1")

    for expected_delay in (2, 4, 8):
        clock.advance(seconds=1)
        assert processor.process_pending().failed == 1
        job = _job(session_factory, job_id)
        assert job.status == "pending"
        assert job.error.startswith("PayloadError")
        assert job.process_at == clock() + timedelta(seconds=expected_delay)
        clock.advance(seconds=expected_delay)

    clock.advance(seconds=1)
    assert processor.process_pending().failed == 1
    job = _job(session_factory, job_id)
    assert job.status == "failed"
    assert job.attempts == 4


def test_handler_error_rolls_back_its_writes(session_factory, clock, dispatcher):
    class ExplodingEngine(ChangeDetectionEngine):
        def handle_product_update(self, db, payload, ctx):
            super().handle_product_update(db, payload, ctx)
            raise RuntimeError("late failure")

    processor = JobProcessor(
        session_factory,
        engine_factory=lambda db, shop: ExplodingEngine(settings_provider=FakeTenantSettings(), now=clock),
        dispatcher=dispatcher,
        now=clock,
    )
    job_id = _enqueue(session_factory, "products/update", product_body(), "wh-1")
    clock.advance(seconds=1)

    assert processor.process_pending().failed == 1
    assert _job(session_factory, job_id).error == "RuntimeError: late failure"

    db = session_factory()
    assert db.execute(sa.text("SELECT COUNT(*) FROM product_snapshots")).scalar_one() == 0
    db.close()


def test_instant_alerts_go_out_after_commit(session_factory, processor, clock, dispatcher):
    _enqueue(session_factory, "products/update", product_body(status="active"), "wh-1", at=T0)
    _enqueue(session_factory, "products/update", product_body(status="draft"), "wh-2", at=T0 + timedelta(seconds=1))
    clock.advance(seconds=10)

    processor.process_pending()

    assert len(dispatcher.alerts) == 1
    assert dispatcher.alerts[0].event_type == "visibility_change"
    assert dispatcher.alerts[0].after_value == "draft"


def test_alert_dispatch_failure_does_not_fail_the_job(session_factory, engine_factory, clock):
    class BrokenDispatcher(RecordingDispatcher):
        def send_instant_alert(self, alert):
            raise ConnectionError("smtp down")

    processor = JobProcessor(session_factory, engine_factory=engine_factory, dispatcher=BrokenDispatcher(), now=clock)
    _enqueue(session_factory, "products/update", product_body(status="active"), "wh-1", at=T0)
    second = _enqueue(session_factory, "products/update", product_body(status="draft"), "wh-2", at=T0 + timedelta(seconds=1))
    clock.advance(seconds=10)

    assert processor.process_pending().processed == 2
    assert _job(session_factory, second).status == "completed"


def test_full_batch_asks_for_another_pass(session_factory, processor, clock, scheduler):
    for n in range(3):
        _enqueue(session_factory, "orders/create", {"id": n}, f"wh-{n}", at=T0 + timedelta(seconds=n))
    clock.advance(seconds=10)

    assert processor.process_pending(limit=2).processed == 2
    assert scheduler.requests == [settings.JOB_KICK_DELAY_SEC]

    assert processor.process_pending(limit=2).processed == 1
    assert len(scheduler.requests) == 1


def test_lost_claim_is_skipped(session_factory, processor, clock):
    job_id = _enqueue(session_factory, "orders/create", {"id": 1}, "wh-1")
    db = session_factory()
    job_repo.claim(db, job_id, now=T0)
    db.close()

    # another worker holds it; list_ready no longer returns it, _run_one must not either
    assert processor._run_one(job_id) == ("skipped", 0)


def test_route_covers_every_handled_topic(engine_factory):
    engine = engine_factory(None, SHOP)
    for topic in t.HANDLED_TOPICS:
        handler = route(engine, t.topic_category(topic), t.topic_verb(topic))
        assert callable(handler)


# ---------------- ingestion ----------------

def test_enqueue_webhook_delays_author_lookup_topics(session_factory, scheduler):
    db = session_factory()
    job_id = enqueue_webhook(db, shop=SHOP, topic="PRODUCTS_UPDATE", payload=product_body(), webhook_id="wh-1",
                             scheduler=scheduler)
    job = job_repo.get_job(db, job_id)
    db.close()

    assert job.topic == "products/update"
    assert job.resource_id == "1001"
    assert job.process_at - job.created_at == timedelta(seconds=settings.EVENTS_API_DELAY_SEC)
    assert scheduler.requests == [settings.EVENTS_API_DELAY_SEC + settings.JOB_KICK_DELAY_SEC]


def test_enqueue_webhook_duplicate_does_not_kick(session_factory, scheduler):
    db = session_factory()
    payload = {"inventory_item_id": 9001, "available": 3}
    first = enqueue_webhook(db, shop=SHOP, topic="inventory_levels/update", payload=payload, webhook_id="wh-1",
                            scheduler=scheduler)
    second = enqueue_webhook(db, shop=SHOP, topic="inventory_levels/update", payload=payload, webhook_id="wh-1",
                             scheduler=scheduler)
    job = job_repo.get_job(db, first)
    db.close()

    assert second is None
    assert job.resource_id == "9001"
    assert job.process_at == job.created_at
    assert scheduler.requests == [settings.JOB_KICK_DELAY_SEC]


def test_enqueue_survives_scheduler_errors(session_factory):
    class DownScheduler(RecordingScheduler):
        def request_run(self, delay_seconds=0):
            raise ConnectionError("broker down")

    db = session_factory()
    job_id = enqueue_webhook(db, shop=SHOP, topic="themes/publish", payload={"id": 1, "role": "main"},
                             webhook_id="wh-1", scheduler=DownScheduler())
    db.close()
    assert job_id is not None
