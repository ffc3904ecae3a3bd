from __future__ import annotations
import json, logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from shopwatch.api.v1.deps import get_scheduler
from shopwatch.core.config import settings
from shopwatch.core.security import verify_webhook_hmac
from shopwatch.db.session import get_db
from shopwatch.orchestration.job_processor import enqueue_webhook
from shopwatch.orchestration.scheduler import ProcessorScheduler
from shopwatch.services.topics import is_handled_topic, normalize_topic


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["webhooks.shopify"])



'''
Webhook receiver: verify, persist, return. Nothing else runs inside the request
(Shopify wants a 2xx within 5 seconds and retries otherwise).
   1) HMAC over the raw body first, so no header can bypass it
   2) decode JSON (400 when it is not)
   3) enqueue keyed by X-Shopify-Webhook-Id; a redelivery is a 200 no-op
Unhandled topics are still acknowledged and stored; the processor completes them without events.
'''
@router.post("")
async def receive_webhook(
    request: Request,
    x_shopify_hmac_sha256: str = Header(default=""),
    x_shopify_topic: str = Header(default=""),
    x_shopify_shop_domain: str = Header(default=""),
    x_shopify_webhook_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    scheduler: Optional[ProcessorScheduler] = Depends(get_scheduler),
):
    secret = settings.SHOPIFY_WEBHOOK_SECRET
    if not secret:
        logger.error("webhook.secret_missing (SHOPIFY_WEBHOOK_SECRET not set)")
        raise HTTPException(status_code=503, detail="Webhook secret not configured")

    raw = await request.body()
    if not x_shopify_hmac_sha256:
        raise HTTPException(status_code=401, detail="Missing HMAC")
    if not verify_webhook_hmac(secret, x_shopify_hmac_sha256, raw):
        logger.warning("webhook.bad_hmac shop=%s topic=%s", x_shopify_shop_domain, x_shopify_topic)
        raise HTTPException(status_code=401, detail="Invalid HMAC")

    shop = (x_shopify_shop_domain or "").strip().lower()
    topic = normalize_topic(x_shopify_topic)
    if not shop or not topic:
        raise HTTPException(status_code=400, detail="Missing shop or topic header")

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    job_id = enqueue_webhook(
        db,
        shop=shop,
        topic=topic,
        payload=payload,
        webhook_id=(x_shopify_webhook_id or "").strip() or None,
        scheduler=scheduler,
    )

    if not is_handled_topic(topic):
        logger.info("webhook.unhandled_topic shop=%s topic=%s job=%s", shop, topic, job_id)

    return {"ok": True, "job_id": job_id, "duplicate": job_id is None}
