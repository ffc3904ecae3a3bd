# Export entry for scripts / throwaway table creation

from .session import engine, SessionLocal, get_db, dispose_engine
from shopwatch.db.model import *  # loads every model into Base.metadata
from .base import Base


"""
    Quick table creation on an empty dev database:
        python -c "from shopwatch.db import create_all; create_all()"
    Never in production; use `alembic upgrade head`.
"""
def create_all() -> None:
    Base.metadata.create_all(bind=engine)
