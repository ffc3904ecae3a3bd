from __future__ import annotations

import logging
from typing import Iterable

from shopwatch.services.context_enricher import parse_context_data
from shopwatch.services.interfaces import DigestBatch, InstantAlert, NotificationDispatcher

logger = logging.getLogger(__name__)


class LoggingDispatcher:
    """
    Default dispatcher: writes alerts and digests to the log.
    Email transport plugs in behind the same two methods.
    """

    def send_instant_alert(self, alert: InstantAlert) -> None:
        context = parse_context_data(alert.context_data)
        logger.warning(
            "alert.instant shop=%s to=%s type=%s name=%r %s -> %s%s",
            alert.shop, alert.email, alert.event_type, alert.resource_name,
            alert.before_value, alert.after_value,
            f" ({context.summary})" if context else "",
        )

    def send_digest(self, batch: DigestBatch) -> bool:
        logger.info(
            "alert.digest shop=%s to=%s events=%s money_saved=%.2f window=%s..%s",
            batch.shop, batch.email, len(batch.items), batch.total_money_saved,
            batch.window_start.isoformat(), batch.window_end.isoformat(),
        )
        for item in batch.items:
            logger.info("alert.digest.item shop=%s importance=%s type=%s name=%r",
                        batch.shop, item.importance, item.event_type, item.resource_name)
        return True


# after commit; a failed send is logged, the event row stays (instant_alert_sent_at marks the attempt)
def dispatch_alerts(dispatcher: NotificationDispatcher, alerts: Iterable[InstantAlert]) -> int:
    sent = 0
    for alert in alerts:
        try:
            dispatcher.send_instant_alert(alert)
            sent += 1
        except Exception as e:
            logger.error("alert.dispatch_failed shop=%s event=%s err=%s: %s",
                         alert.shop, alert.event_id, type(e).__name__, e)
    return sent
