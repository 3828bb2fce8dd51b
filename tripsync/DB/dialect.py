# tripsync/DB/dialect.py
"""
Dialect-specific INSERT constructs.

PostgreSQL and SQLite both implement ``INSERT ... ON CONFLICT``; SQLAlchemy
exposes it through their own ``insert()``. Repositories pick the right one
from the session's bind.
"""

from sqlalchemy.orm import Session

from tripsync.Core.exceptions import ConfigurationError


def dialect_insert(DB: Session):
    dialect = DB.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ConfigurationError(f"Unsupported database dialect for upserts: {dialect}")
    return insert
