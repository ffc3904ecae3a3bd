from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from shopwatch.db.session import SessionLocal
from shopwatch.orchestration.scheduler import ProcessorScheduler


# set on app.state at startup (main.py); None = no kick, beat picks jobs up
def get_scheduler(request: Request) -> Optional[ProcessorScheduler]:
    return getattr(request.app.state, "scheduler", None)


# the processor opens one session per job, so it takes a factory rather than a session
def get_session_factory() -> Callable[[], Session]:
    return SessionLocal
