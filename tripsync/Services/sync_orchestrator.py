# tripsync/Services/sync_orchestrator.py
"""
Sync Orchestrator - Incremental per-device telemetry sync.

Responsibilities:
- Resolve which devices to sync (explicit list or "all due")
- Own each device's sync state machine through Repositories/sync_status
- Drive fetch → normalize → store → segment → persist → commit → cursor
  for each time window since the device's cursor
- Pace vendor calls and stop the batch on a vendor rate limit

Per-device flow:
1. try_acquire (atomic idle/error/expired-backoff → running); skip if lost
2. Refresh the latest-position cache (lastposition)
3. Skip segmentation past a stored closed trip cut by the range start
4. For each window of SYNC_WINDOW_HOURS between the cursor and now:
   a. querytracks for the window
   b. map + normalize, drop malformed records (logged)
   c. upsert history + cache
   d. segment stored positions after the segmentation cursor
   e. persist trips (closed + open), advance cursor, commit
5. mark_idle

The cursor is the gps_time of the last stored point of the window, pulled
back to just before an open trip's start so the next tick re-segments it.

Failure handling (per device, batch continues):
- RateLimitError → backoff until now + SYNC_BACKOFF_S, batch aborted
- Any other error → status 'error' with last_error
Only ConfigurationError (vendor not configured) reaches the caller.

Usage:
    orchestrator = SyncOrchestrator()
    result = orchestrator.run(SyncRequest(device_ids=["DEV1"]))
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, List, NamedTuple, Optional, Tuple

from tripsync.Core.config import Settings, settings as default_settings
from tripsync.Core.exceptions import RateLimitError
from tripsync.Core.time_utils import ensure_utc, utcnow
from tripsync.DB.session import SessionLocal
from tripsync.Repositories import device as device_repo
from tripsync.Repositories import position as position_repo
from tripsync.Repositories import sync_status as status_repo
from tripsync.Repositories import trip as trip_repo
from tripsync.Schemas.sync import DeviceSyncResult, SyncRequest, SyncResult
from tripsync.Services.event_handlers import (
    handle_trip_persistence,
    normalize_batch,
    persist_positions
)
from tripsync.Services.trip_detector import TripDetector
from tripsync.Services.vendor_client import Gps51Client

logger = logging.getLogger(__name__)

CURSOR_EPSILON = timedelta(microseconds=1)


class _DeviceRef(NamedTuple):
    device_id: str
    vendor: str
    vendor_id: str


def split_windows(start: datetime, end: datetime, hours: int) -> List[Tuple[datetime, datetime]]:
    """Consecutive [start, end) windows of at most ``hours`` each."""
    windows = []
    step = timedelta(hours=max(1, hours))
    cursor = start
    while cursor < end:
        upper = min(cursor + step, end)
        windows.append((cursor, upper))
        cursor = upper
    return windows


class SyncOrchestrator:
    """
    Runs sync batches. One instance may be reused across ticks.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
        client: Vendor client; built lazily from settings when omitted
        detector: Segmentation engine
        config: Settings override (tests)
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        client: Optional[Gps51Client] = None,
        detector: Optional[TripDetector] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.config = config or default_settings
        self.detector = detector or TripDetector(self.config)
        self.clock = clock
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> Gps51Client:
        # ConfigurationError surfaces here, at invocation time
        with self._client_lock:
            if self._client is None:
                self._client = Gps51Client.from_settings()
            return self._client

    # ==========================================================
    # BATCH
    # ==========================================================

    def run(self, request: SyncRequest) -> SyncResult:
        started = time.monotonic()
        result = SyncResult(sync_type="full" if request.force_full_sync else "incremental")

        devices = self._resolve_devices(request, result)
        if not devices:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            return result

        client = self.client
        logger.info("[SYNC] Starting %s sync for %d devices", result.sync_type, len(devices))

        for index, device in enumerate(devices):
            device_result = self.sync_device(device, request.force_full_sync, client)
            result.device_results.append(device_result)

            if device_result.status != "skipped":
                result.devices_processed += 1
            result.trips_created += device_result.trips_created
            result.trips_skipped += device_result.trips_skipped
            if device_result.error:
                result.errors.append(f"{device.device_id}: {device_result.error}")

            if device_result.status == "backoff":
                remaining = len(devices) - index - 1
                if remaining:
                    result.errors.append(
                        f"Batch aborted after vendor rate limit; {remaining} devices not started"
                    )
                logger.warning("[SYNC] Rate limited, aborting batch (%d devices left)", remaining)
                break

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "[SYNC] Done: %d devices, %d trips created, %d skipped, %d errors in %d ms",
            result.devices_processed, result.trips_created, result.trips_skipped,
            len(result.errors), result.duration_ms
        )
        return result

    def _resolve_devices(self, request: SyncRequest, result: SyncResult) -> List[_DeviceRef]:
        with self.session_factory() as db:
            if request.device_ids:
                found = device_repo.get_devices_by_ids(db, request.device_ids)
                known = {d.device_id for d in found}
                for missing in (i for i in request.device_ids if i not in known):
                    result.errors.append(f"{missing}: unknown device")
            else:
                due = status_repo.get_due_device_ids(db, self.clock())
                found = device_repo.get_devices_by_ids(db, due)
            return [_DeviceRef(d.device_id, d.vendor, d.vendor_id) for d in found]

    # ==========================================================
    # DEVICE
    # ==========================================================

    def sync_device(self, device: _DeviceRef, force_full: bool, client: Gps51Client) -> DeviceSyncResult:
        outcome = DeviceSyncResult(device_id=device.device_id, status="idle")
        stale_after = timedelta(seconds=self.config.SYNC_STALE_RUNNING_S)

        with self.session_factory() as db:
            if not status_repo.try_acquire(db, device.device_id, self.clock(), stale_after):
                outcome.status = "skipped"
                outcome.error = "already running or in backoff"
                return outcome

            try:
                self._sync_windows(db, device, force_full, client, outcome)
                status_repo.mark_idle(db, device.device_id, self.clock())
            except RateLimitError as e:
                db.rollback()
                until = self.clock() + timedelta(seconds=self.config.SYNC_BACKOFF_S)
                status_repo.mark_backoff(db, device.device_id, until, str(e))
                outcome.status = "backoff"
                outcome.error = f"rate limited until {until.isoformat()}"
                logger.warning("[SYNC] %s: %s", device.device_id, e)
            except Exception as e:
                db.rollback()
                status_repo.mark_error(db, device.device_id, f"{type(e).__name__}: {e}")
                outcome.status = "error"
                outcome.error = f"{type(e).__name__}: {e}"
                logger.exception("[SYNC] %s: sync failed", device.device_id)

        return outcome

    def _sync_windows(
        self,
        db,
        device: _DeviceRef,
        force_full: bool,
        client: Gps51Client,
        outcome: DeviceSyncResult
    ) -> None:
        now = self.clock()
        status = status_repo.get_status(db, device.device_id)
        cursor = ensure_utc(status.cursor) if status is not None else None

        if cursor is None or force_full:
            since = now - timedelta(days=self.config.SYNC_FIRST_LOOKBACK_DAYS)
        else:
            since = cursor

        self._refresh_latest(db, device, client, now, outcome)

        windows = split_windows(since, now, self.config.SYNC_WINDOW_HOURS)
        seg_cursor = since

        # A stored trip cut by the range start is not re-segmented from its middle
        spanning = trip_repo.get_closed_trip_spanning(db, device.device_id, since)
        if spanning is not None:
            seg_cursor = ensure_utc(spanning.end_time)
            logger.info("[SYNC] %s: segmentation starts after stored trip ending %s",
                        device.device_id, seg_cursor.isoformat())
        trips_total = 0
        trips_done = 0

        for index, (w_start, w_end) in enumerate(windows):
            status_repo.update_progress(
                db, device.device_id,
                f"Fetching {w_start:%Y-%m-%d %H:%M} → {w_end:%Y-%m-%d %H:%M}",
                percent=index / len(windows) * 100
            )

            raw = client.query_track(device.vendor_id, w_start, w_end)
            points, rejected = normalize_batch(device.vendor, device.device_id, raw, now)
            upsert = persist_positions(db, points)
            outcome.positions_inserted += upsert.inserted

            stored = position_repo.get_positions_in_range(db, device.device_id, after=seg_cursor, until=w_end)
            new_cursor = seg_cursor
            if stored:
                previous = trip_repo.get_last_closed_trip_before(db, device.device_id, stored[0].gps_time)
                previous_end = None
                if previous is not None and previous.end_latitude is not None:
                    previous_end = (previous.end_latitude, previous.end_longitude)

                segmentation = self.detector.segment(device.device_id, stored, previous_end)
                created, skipped = handle_trip_persistence(
                    db, device.device_id, segmentation.trips, segmentation.open_trip,
                    covered=(seg_cursor, w_end)
                )
                outcome.trips_created += created
                outcome.trips_skipped += skipped
                trips_total += len(segmentation.trips)
                trips_done += created + skipped

                new_cursor = stored[-1].gps_time
                if segmentation.open_trip is not None:
                    new_cursor = segmentation.open_trip.start_time - CURSOR_EPSILON

                status_repo.advance_cursor(db, device.device_id, new_cursor)

            status_repo.update_progress(
                db, device.device_id,
                f"Processed window {index + 1}/{len(windows)}",
                trips_total=trips_total,
                trips_processed=trips_done,
                percent=(index + 1) / len(windows) * 100
            )
            db.commit()
            seg_cursor = new_cursor

            logger.info(
                "[SYNC] %s: window %d/%d raw=%d stored=%d rejected=%d cursor=%s",
                device.device_id, index + 1, len(windows), len(raw), upsert.inserted,
                rejected, new_cursor.isoformat()
            )

    def _refresh_latest(
        self,
        db,
        device: _DeviceRef,
        client: Gps51Client,
        now: datetime,
        outcome: DeviceSyncResult
    ) -> None:
        raw = client.last_positions([device.vendor_id])
        mine = [
            r for r in raw
            if not isinstance(r, dict) or str(r.get("deviceid", device.vendor_id)) == device.vendor_id
        ]
        points, _ = normalize_batch(device.vendor, device.device_id, mine, now)
        upsert = persist_positions(db, points)
        outcome.positions_inserted += upsert.inserted
        db.commit()
