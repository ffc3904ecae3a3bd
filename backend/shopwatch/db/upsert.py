# Dialect-aware INSERT for ON CONFLICT upserts (postgres in prod, sqlite in tests)

from __future__ import annotations
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(db: Session, model):
    """
    Both dialects expose on_conflict_do_update / on_conflict_do_nothing with the same
    signature (index_elements=..., set_=...).
    """
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"upsert not supported on dialect {name!r}")
