from __future__ import annotations
from datetime import datetime, timedelta, timezone

def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)  # naive UTC, matches the DB columns


def hours_ago(hours: float, *, now: datetime | None = None) -> datetime:
    return (now or now_utc()) - timedelta(hours=hours)
