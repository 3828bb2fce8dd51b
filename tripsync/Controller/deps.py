#tripsync/Controller/deps.py

from typing import Generator
from tripsync.DB.session import SessionLocal
from tripsync.Services.reconciliation import ReconciliationEngine
from tripsync.Services.sync_orchestrator import SyncOrchestrator

_orchestrator = SyncOrchestrator()
_reconciliation_engine = ReconciliationEngine()


def get_DB() -> Generator:
    DB = SessionLocal()
    try:
        yield DB
    finally:
        DB.close()


def get_sync_orchestrator() -> SyncOrchestrator:
    return _orchestrator


def get_reconciliation_engine() -> ReconciliationEngine:
    return _reconciliation_engine
