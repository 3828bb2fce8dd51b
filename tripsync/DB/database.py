# tripsync/DB/database.py

"""
Database Utilities Module

Startup helpers around the configured engine:
- test_db_connection(): fail-fast connectivity check used at startup
- create_all_tables(): schema bootstrap for development and tests
- drop_all_tables(): teardown for tests

Production schemas are managed by Alembic (alembic/versions); create_all
exists for SQLite dev databases and the test-suite.

Usage Examples:
    from tripsync.DB.database import create_all_tables
    from tripsync.DB.session import engine

    create_all_tables(engine)
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tripsync.DB.session import engine as default_engine

logger = logging.getLogger(__name__)


# ============================================================
# Connectivity
# ============================================================

def test_db_connection(bind=None) -> bool:
    """
    Run ``SELECT 1`` against the database.

    Returns:
        bool: True if the database answered, False otherwise.
    """
    bind = bind or default_engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error("[DB] Connection test failed: %s", e)
        return False


# ============================================================
# Schema helpers
# ============================================================

def create_all_tables(bind=None) -> None:
    """Create every registered table that does not exist yet."""
    from tripsync.DB.base import Base

    bind = bind or default_engine
    logger.info("[DB] Creating all tables...")
    Base.metadata.create_all(bind=bind)


def drop_all_tables(bind=None) -> None:
    """Drop every registered table. Irreversible."""
    from tripsync.DB.base import Base

    bind = bind or default_engine
    logger.warning("[DB] Dropping all tables...")
    Base.metadata.drop_all(bind=bind)
