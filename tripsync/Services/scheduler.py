# tripsync/Services/scheduler.py
"""
Periodic Sync Scheduler

Daemon thread that runs an "all due devices" sync every SYNC_INTERVAL_S.
Started from the FastAPI lifespan when SCHEDULER_ENABLED is true.

Each tick is independent: a failing tick is logged and the next one runs
on schedule. Per-device mutual exclusion lives in the sync status table,
so a tick overlapping an on-demand POST /sync is safe.

Usage:
    scheduler = PeriodicSyncScheduler(SyncOrchestrator(), interval_s=300)
    scheduler.start()
    ...
    scheduler.stop()
"""

import logging
import threading
from typing import Optional

from tripsync.Core.exceptions import ConfigurationError
from tripsync.Schemas.sync import SyncRequest, SyncResult
from tripsync.Services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class PeriodicSyncScheduler:

    def __init__(self, orchestrator: SyncOrchestrator, interval_s: float):
        self.orchestrator = orchestrator
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="trip-sync-scheduler", daemon=True)
        self._thread.start()
        logger.info("[SCHEDULER] Started (every %ss)", self.interval_s)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("[SCHEDULER] Stopped")

    def tick(self) -> Optional[SyncResult]:
        """Run one sync batch. Never raises."""
        try:
            return self.orchestrator.run(SyncRequest())
        except ConfigurationError as e:
            logger.error("[SCHEDULER] Sync not configured: %s", e)
        except Exception:
            logger.exception("[SCHEDULER] Sync tick failed")
        return None

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.interval_s)
