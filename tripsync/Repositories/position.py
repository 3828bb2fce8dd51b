# tripsync/Repositories/position.py
"""
Position Repository - Position history and latest-position cache.

Responsibilities:
- Idempotent batched inserts into position_history (duplicates on
  (device_id, gps_time) are ignored, never errors)
- Last-write-wins upsert of the per-device cache row, guarded on gps_time
- Time-range reads for segmentation and nearest-fix lookups for
  reconciliation

Writes go through dialect-specific INSERT ... ON CONFLICT so the same code
runs on PostgreSQL (production) and SQLite (tests).

Usage:
    from tripsync.Repositories import position as position_repo

    result = position_repo.upsert_positions(db, points)
    db.commit()
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from tripsync.Core.config import settings
from tripsync.DB.dialect import dialect_insert
from tripsync.Core.time_utils import ensure_utc, utcnow
from tripsync.Models.position import PositionCache, PositionPoint
from tripsync.Schemas.position import CanonicalPoint, Position_get, Upsert_result
from tripsync.Services.telemetry_core.normalizers import is_online

logger = logging.getLogger(__name__)

_POINT_COLUMNS = (
    "device_id", "gps_time", "latitude", "longitude", "speed", "heading",
    "altitude", "ignition_on", "ignition_confidence", "detection_method",
    "status_text", "total_mileage_m", "speed_sensor_error",
)


def _to_row(point: CanonicalPoint) -> dict:
    return {col: getattr(point, col) for col in _POINT_COLUMNS}


def _to_point(row) -> CanonicalPoint:
    point = CanonicalPoint.model_validate(row)
    point.gps_time = ensure_utc(point.gps_time)
    return point


# ==========================================================
# WRITE OPERATIONS
# ==========================================================

def upsert_positions(
    DB: Session,
    points: Iterable[CanonicalPoint],
    batch_size: Optional[int] = None
) -> Upsert_result:
    """
    Insert points into history and refresh each device's cache row.

    Points must already be storable (gps_time and coordinates present).
    Does NOT commit; the caller owns the transaction.

    Returns:
        Upsert_result: inserted / duplicates / cache_updated counts
    """
    batch_size = batch_size or settings.POSITION_BATCH_SIZE
    insert = dialect_insert(DB)

    # Collapse duplicates inside the payload itself
    unique: Dict[tuple, CanonicalPoint] = {}
    for p in points:
        unique.setdefault((p.device_id, p.gps_time), p)
    rows = [_to_row(p) for p in sorted(unique.values(), key=lambda p: p.gps_time)]
    submitted = len(rows)

    inserted = 0
    for start in range(0, len(rows), batch_size):
        chunk = rows[start:start + batch_size]
        stmt = insert(PositionPoint).values(chunk).on_conflict_do_nothing(
            index_elements=["device_id", "gps_time"]
        )
        result = DB.execute(stmt)
        inserted += max(result.rowcount or 0, 0)

    # Latest point per device goes to the cache
    latest: Dict[str, CanonicalPoint] = {}
    for p in unique.values():
        current = latest.get(p.device_id)
        if current is None or p.gps_time > current.gps_time:
            latest[p.device_id] = p

    cache_updated = sum(1 for p in latest.values() if upsert_cache(DB, p))

    result = Upsert_result(
        inserted=inserted,
        duplicates=submitted - inserted,
        cache_updated=cache_updated,
    )
    logger.debug("[REPO] upsert_positions: %s", result.model_dump())
    return result


def upsert_cache(DB: Session, point: CanonicalPoint) -> bool:
    """
    Last-write-wins upsert of the cache row for ``point.device_id``.

    The row is overwritten only when ``point.gps_time`` is newer than the
    cached one; ``updated_at`` is set on every overwrite.

    Returns:
        bool: True if the row was created or overwritten
    """
    insert = dialect_insert(DB)
    values = _to_row(point)
    values["updated_at"] = utcnow()

    stmt = insert(PositionCache).values(**values)
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["device_id"],
        set_={col: excluded[col] for col in values if col != "device_id"},
        where=PositionCache.gps_time < excluded.gps_time,
    )
    return (DB.execute(stmt).rowcount or 0) > 0


def delete_positions_before(DB: Session, device_id: str, before: datetime) -> int:
    """Explicit history cleanup. Does NOT commit."""
    deleted = (
        DB.query(PositionPoint)
        .filter(PositionPoint.device_id == device_id, PositionPoint.gps_time < before)
        .delete(synchronize_session=False)
    )
    logger.info("[REPO] Deleted %d positions of %s before %s", deleted, device_id, before.isoformat())
    return deleted


# ==========================================================
# READ OPERATIONS - HISTORY
# ==========================================================

def get_positions_in_range(
    DB: Session,
    device_id: str,
    after: Optional[datetime] = None,
    until: Optional[datetime] = None
) -> List[CanonicalPoint]:
    """
    History points with ``after < gps_time <= until``, oldest first.

    Either bound may be None (open).
    """
    query = DB.query(PositionPoint).filter(PositionPoint.device_id == device_id)
    if after is not None:
        query = query.filter(PositionPoint.gps_time > after)
    if until is not None:
        query = query.filter(PositionPoint.gps_time <= until)
    return [_to_point(row) for row in query.order_by(PositionPoint.gps_time.asc()).all()]


def find_nearest_valid_position(
    DB: Session,
    device_id: str,
    at: datetime,
    window: timedelta
) -> Optional[CanonicalPoint]:
    """
    Nearest-in-time history point with non-zero coordinates.

    Only points inside ``[at - window, at + window]`` are considered; ties
    go to the earlier point.
    """
    rows = (
        DB.query(PositionPoint)
        .filter(
            PositionPoint.device_id == device_id,
            PositionPoint.gps_time >= at - window,
            PositionPoint.gps_time <= at + window,
            and_(PositionPoint.latitude.isnot(None), PositionPoint.latitude != 0),
            and_(PositionPoint.longitude.isnot(None), PositionPoint.longitude != 0),
        )
        .order_by(PositionPoint.gps_time.asc())
        .all()
    )
    if not rows:
        return None

    at = ensure_utc(at)
    points = [_to_point(r) for r in rows]
    return min(points, key=lambda p: abs((p.gps_time - at).total_seconds()))


# ==========================================================
# READ OPERATIONS - CACHE
# ==========================================================

def _cache_to_schema(row: PositionCache, now: datetime) -> Position_get:
    data = Position_get.model_validate(row)
    data.gps_time = ensure_utc(data.gps_time)
    data.updated_at = ensure_utc(data.updated_at)
    data.is_online = is_online(data.gps_time, now)
    return data


def get_latest_position(
    DB: Session,
    device_id: str,
    now: Optional[datetime] = None
) -> Optional[Position_get]:
    row = DB.query(PositionCache).filter(PositionCache.device_id == device_id).first()
    if row is None:
        return None
    return _cache_to_schema(row, now or utcnow())


def list_latest_positions(DB: Session, now: Optional[datetime] = None) -> List[Position_get]:
    now = now or utcnow()
    rows = DB.query(PositionCache).order_by(PositionCache.device_id).all()
    return [_cache_to_schema(r, now) for r in rows]
