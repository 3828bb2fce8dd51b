"""
tripsync/DB/session.py
======================================
Database Session Configuration Module
======================================

Engine and session factory built from ``settings.DATABASE_URL``.

Usage Example:
-------------
    from tripsync.DB.session import SessionLocal

    with SessionLocal() as db:
        devices = db.query(Device).all()

Session Configuration:
---------------------
- autocommit=False: every write is committed explicitly by the caller
- autoflush=False: no implicit flush before queries
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from tripsync.Core.config import settings


def build_engine(url: str):
    """
    Create an engine for ``url``.

    SQLite connections are shared with the scheduler thread, so the
    same-thread check is disabled for that dialect.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


# ============================================================
# DATABASE ENGINE CONFIGURATION
# ============================================================
engine = build_engine(settings.DATABASE_URL)


# ============================================================
# SESSION FACTORY CONFIGURATION
# ============================================================
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)
