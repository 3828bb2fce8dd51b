# tripsync/Repositories/sync_status.py
"""
Sync Status Repository - Per-device sync state machine.

States: idle, running, error, backoff

Allowed transitions:
    idle    → running   (acquire)
    error   → running   (acquire)
    backoff → running   (acquire, only once backoff_until has passed)
    running → idle      (mark_idle)
    running → error     (mark_error)
    running → backoff   (mark_backoff)
    any     → idle      (reset_sync_status, operator action)

A 'running' row whose sync_started_at is older than the stale threshold
may be re-acquired (the worker that owned it died).

Mutual exclusion comes from ``try_acquire``: a single conditional UPDATE,
so two workers racing on the same device cannot both win.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from tripsync.Core.time_utils import utcnow
from tripsync.DB.dialect import dialect_insert
from tripsync.Models.device import Device
from tripsync.Models.sync_status import SyncStatus

logger = logging.getLogger(__name__)


# ==========================================================
# READ OPERATIONS
# ==========================================================

def get_status(DB: Session, device_id: str) -> Optional[SyncStatus]:
    return DB.query(SyncStatus).filter(SyncStatus.device_id == device_id).first()


def list_statuses(DB: Session) -> List[SyncStatus]:
    return DB.query(SyncStatus).order_by(SyncStatus.device_id).all()


def get_due_device_ids(DB: Session, now: Optional[datetime] = None) -> List[str]:
    """
    Active devices eligible for an "all due" run.

    Excluded: devices currently running and devices whose backoff has not
    expired. Devices never synced (no status row) are due.
    """
    now = now or utcnow()
    rows = (
        DB.query(Device.device_id)
        .outerjoin(SyncStatus, SyncStatus.device_id == Device.device_id)
        .filter(Device.is_active.is_(True))
        .filter(
            or_(
                SyncStatus.device_id.is_(None),
                SyncStatus.sync_status.in_(("idle", "error")),
                and_(SyncStatus.sync_status == "backoff", SyncStatus.backoff_until <= now),
            )
        )
        .order_by(Device.device_id)
        .all()
    )
    return [r[0] for r in rows]


# ==========================================================
# STATE TRANSITIONS
# ==========================================================

def _ensure_row(DB: Session, device_id: str) -> None:
    insert = dialect_insert(DB)
    DB.execute(
        insert(SyncStatus)
        .values(device_id=device_id, sync_status="idle", trips_total=0,
                trips_processed=0, progress_percent=0.0)
        .on_conflict_do_nothing(index_elements=["device_id"])
    )


def try_acquire(
    DB: Session,
    device_id: str,
    now: Optional[datetime] = None,
    stale_after: Optional[timedelta] = None
) -> bool:
    """
    Atomic check-and-set into 'running'. Commits.

    Returns:
        bool: True if this caller now owns the device's sync
    """
    now = now or utcnow()
    _ensure_row(DB, device_id)

    eligible = [
        SyncStatus.sync_status.in_(("idle", "error")),
        and_(SyncStatus.sync_status == "backoff",
             or_(SyncStatus.backoff_until.is_(None), SyncStatus.backoff_until <= now)),
    ]
    if stale_after is not None:
        eligible.append(
            and_(SyncStatus.sync_status == "running", SyncStatus.sync_started_at < now - stale_after)
        )

    result = DB.execute(
        update(SyncStatus)
        .where(SyncStatus.device_id == device_id, or_(*eligible))
        .values(
            sync_status="running",
            sync_started_at=now,
            backoff_until=None,
            last_error=None,
            trips_total=0,
            trips_processed=0,
            progress_percent=0.0,
            current_operation="starting",
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    DB.commit()

    acquired = (result.rowcount or 0) == 1
    if not acquired:
        logger.info("[SYNC] %s: not acquired (already running or in backoff)", device_id)
    return acquired


def _set(DB: Session, device_id: str, **values) -> None:
    values.setdefault("updated_at", utcnow())
    DB.execute(
        update(SyncStatus)
        .where(SyncStatus.device_id == device_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def update_progress(
    DB: Session,
    device_id: str,
    operation: str,
    trips_total: Optional[int] = None,
    trips_processed: Optional[int] = None,
    percent: Optional[float] = None
) -> None:
    """Progress fields only. Does NOT commit."""
    values = {"current_operation": operation[:200]}
    if trips_total is not None:
        values["trips_total"] = trips_total
    if trips_processed is not None:
        values["trips_processed"] = trips_processed
    if percent is not None:
        values["progress_percent"] = round(max(0.0, min(percent, 100.0)), 1)
    _set(DB, device_id, **values)


def advance_cursor(DB: Session, device_id: str, cursor: datetime) -> None:
    """Move the cursor. Does NOT commit; call in the same transaction as the data."""
    _set(DB, device_id, cursor=cursor)


def mark_idle(DB: Session, device_id: str, now: Optional[datetime] = None) -> None:
    """running → idle. Commits."""
    now = now or utcnow()
    _set(DB, device_id, sync_status="idle", last_sync_at=now, progress_percent=100.0,
         current_operation=None, updated_at=now)
    DB.commit()


def mark_error(DB: Session, device_id: str, message: str) -> None:
    """running → error. Commits."""
    _set(DB, device_id, sync_status="error", last_error=message[:1000], current_operation=None)
    DB.commit()


def mark_backoff(DB: Session, device_id: str, until: datetime, message: str) -> None:
    """running → backoff. Commits."""
    _set(DB, device_id, sync_status="backoff", backoff_until=until,
         last_error=message[:1000], current_operation=None)
    DB.commit()


def reset_sync_status(DB: Session, device_id: str) -> Optional[SyncStatus]:
    """
    Operator reset: any state → idle. Cursor is kept. Commits.

    Returns:
        SyncStatus or None if the device never had a status row
    """
    status = get_status(DB, device_id)
    if status is None:
        return None
    _set(DB, device_id, sync_status="idle", backoff_until=None, last_error=None,
         current_operation=None, sync_started_at=None)
    DB.commit()
    DB.refresh(status)
    logger.warning("[SYNC] %s: status reset to idle by operator", device_id)
    return status
