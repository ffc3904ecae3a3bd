# Health check (with a DB ping)

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from shopwatch.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning("health.db_unreachable err=%s", type(e).__name__)
        database = "unreachable"
    return {"status": "ok" if database == "ok" else "degraded", "database": database}
