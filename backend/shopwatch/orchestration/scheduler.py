"""
Single-flight scheduling of processing passes.

Every enqueue asks for a pass; bursts of webhooks must collapse into one pending
pass instead of one per webhook. Two implementations behind one method:
  - InProcessScheduler: lock + threading.Timer, at most one timer outstanding
  - CeleryScheduler:    Redis SET NX PX flag + apply_async(countdown=delay)
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Protocol

import redis

from shopwatch.core.config import settings

logger = logging.getLogger(__name__)

FLAG_KEY = "shopwatch:jobs:pass-scheduled"


class ProcessorScheduler(Protocol):
    def request_run(self, delay_seconds: float = 0) -> bool: ...


class InProcessScheduler:

    def __init__(self, run: Callable[[], Any]):
        self._run = run
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def request_run(self, delay_seconds: float = 0) -> bool:
        """True when this call scheduled the pass, False when one was already pending."""
        with self._lock:
            if self._timer is not None:
                return False
            timer = threading.Timer(max(0.0, float(delay_seconds)), self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.debug("scheduler.pass_scheduled delay=%ss", delay_seconds)
        return True

    def _fire(self) -> None:
        # cleared before running: requests that arrive mid-pass get a follow-up pass
        with self._lock:
            self._timer = None
        try:
            self._run()
        except Exception as e:
            logger.error("scheduler.pass_failed err=%s: %s", type(e).__name__, e)

    def cancel(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()



'''
Cross-process single flight. The flag lives exactly as long as the countdown, so
the first request in a window dispatches the task and later ones are absorbed.
Redis down: dispatch anyway (an extra pass is harmless, a lost one is not).
'''
class CeleryScheduler:

    def __init__(self, task, client: Optional[redis.Redis] = None, *, key: str = FLAG_KEY):
        self.task = task
        self.client = client
        self.key = key

    def request_run(self, delay_seconds: float = 0) -> bool:
        delay = max(0.0, float(delay_seconds))
        if self.client is not None:
            try:
                ttl_ms = max(1, int(delay * 1000))
                if not self.client.set(self.key, "1", nx=True, px=ttl_ms):
                    logger.debug("scheduler.pass_already_pending key=%s", self.key)
                    return False
            except redis.RedisError as e:
                logger.warning("scheduler.flag_unavailable err=%s (dispatching anyway)", type(e).__name__)

        self.task.apply_async(countdown=delay)
        logger.debug("scheduler.pass_dispatched delay=%ss", delay)
        return True


def redis_client() -> Optional[redis.Redis]:
    url = settings.redis_for_flags
    if not url:
        return None
    return redis.Redis.from_url(url, decode_responses=True)
