# Shared ORM base + constraint naming convention

from __future__ import annotations
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import MetaData

# stable constraint/index names so Alembic autogenerate stays predictable
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on postgres, plain JSON elsewhere (sqlite in tests / local dev)
JsonType = JSON().with_variant(JSONB(), "postgresql")


# Every table model (WebhookJob, ProductSnapshot, ChangeEvent ...) inherits this Base
# so the ORM maps it and Alembic sees it.
class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
