# tripsync/Repositories/trip.py
"""
Trip Repository - Database operations for segmented trips.

Responsibilities:
- Persist closed trips idempotently (unique device_id/start_time/end_time)
- Keep at most one open trip row per device and close it in place
- Scope queries for reconciliation
- Apply coordinate/distance patches (never time changes)

Usage:
    from tripsync.Repositories import trip as trip_repo

    created, skipped = trip_repo.save_trips(db, "DEV1", closed, open_trip)
    db.commit()
"""

import logging
from datetime import datetime
from typing import List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from tripsync.Core.time_utils import ensure_utc
from tripsync.DB.dialect import dialect_insert
from tripsync.Models.trip import Trip
from tripsync.Schemas.trip import Trip_coordinates_update, Trip_create

logger = logging.getLogger(__name__)


# ==========================================================
# READ OPERATIONS
# ==========================================================

def get_open_trip(DB: Session, device_id: str) -> Optional[Trip]:
    """The device's open trip (end_time NULL), if any."""
    return (
        DB.query(Trip)
        .filter(Trip.device_id == device_id, Trip.end_time.is_(None))
        .order_by(Trip.start_time.desc())
        .first()
    )


def get_last_closed_trip_before(DB: Session, device_id: str, before: datetime) -> Optional[Trip]:
    """Most recent closed trip starting before ``before`` (continuity anchor)."""
    return (
        DB.query(Trip)
        .filter(
            Trip.device_id == device_id,
            Trip.end_time.isnot(None),
            Trip.start_time < before,
        )
        .order_by(Trip.start_time.desc())
        .first()
    )


def get_closed_trip_spanning(DB: Session, device_id: str, at: datetime) -> Optional[Trip]:
    """Closed trip with start_time <= at < end_time, if any."""
    return (
        DB.query(Trip)
        .filter(
            Trip.device_id == device_id,
            Trip.end_time.isnot(None),
            Trip.start_time <= at,
            Trip.end_time > at,
        )
        .order_by(Trip.end_time.desc())
        .first()
    )


def get_closed_trip_starts(DB: Session, device_id: str, starts: List[datetime]) -> Set[datetime]:
    """Subset of ``starts`` already used by a closed trip of the device."""
    if not starts:
        return set()
    rows = (
        DB.query(Trip.start_time)
        .filter(
            Trip.device_id == device_id,
            Trip.end_time.isnot(None),
            Trip.start_time.in_(starts),
        )
        .all()
    )
    return {ensure_utc(row.start_time) for row in rows}


def get_trips_by_device(
    DB: Session,
    device_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100
) -> List[Trip]:
    """
    Trips of a device, newest first, optionally bounded by start_time.
    """
    query = DB.query(Trip).filter(Trip.device_id == device_id)
    if start_date:
        query = query.filter(Trip.start_time >= start_date)
    if end_date:
        query = query.filter(Trip.start_time <= end_date)
    return query.order_by(Trip.start_time.desc()).limit(limit).all()


def get_trips_for_reconciliation(
    DB: Session,
    start_date: datetime,
    end_date: datetime,
    device_id: Optional[str] = None
) -> List[Trip]:
    """
    Closed trips whose start_time falls in [start_date, end_date].

    Open trips are excluded: their end endpoint does not exist yet.
    """
    query = DB.query(Trip).filter(
        Trip.end_time.isnot(None),
        Trip.start_time >= start_date,
        Trip.start_time <= end_date,
    )
    if device_id:
        query = query.filter(Trip.device_id == device_id)
    return query.order_by(Trip.device_id, Trip.start_time.asc()).all()


# ==========================================================
# WRITE OPERATIONS
# ==========================================================

def _apply_candidate(trip: Trip, candidate: Trip_create) -> None:
    for field, value in candidate.model_dump(exclude={"device_id", "start_time"}).items():
        setattr(trip, field, value)


def _insert_closed(DB: Session, candidate: Trip_create) -> bool:
    insert = dialect_insert(DB)
    stmt = insert(Trip).values(**candidate.model_dump()).on_conflict_do_nothing(
        index_elements=["device_id", "start_time", "end_time"]
    )
    return (DB.execute(stmt).rowcount or 0) > 0


def save_trips(
    DB: Session,
    device_id: str,
    closed: List[Trip_create],
    open_trip: Optional[Trip_create] = None,
    covered: Optional[Tuple[datetime, datetime]] = None
) -> Tuple[int, int]:
    """
    Persist a segmentation result for one device, start_time ascending.

    - A candidate (closed or open) whose start_time is already used by a
      stored closed trip is already stored: closed ones count as skipped,
      open ones are dropped
    - A closed candidate starting where the stored open trip started closes
      that row in place
    - Other closed candidates are inserted; an existing identical trip is a
      silent no-op (counted as skipped)
    - The open candidate refreshes the stored open row, or is inserted
    - A stored open row that matches neither is stale and removed, but only
      when its start lies inside ``covered`` (after, until], the span that
      was just re-segmented. Without ``covered`` every stored open row is
      in scope.

    Does NOT commit.

    Returns:
        (created, skipped)
    """
    created = 0
    skipped = 0

    starts = [c.start_time for c in closed]
    if open_trip is not None:
        starts.append(open_trip.start_time)
    closed_starts = get_closed_trip_starts(DB, device_id, starts)

    stored_open = get_open_trip(DB, device_id)
    stored_open_start = ensure_utc(stored_open.start_time) if stored_open else None
    if stored_open is not None and covered is not None:
        after, until = ensure_utc(covered[0]), ensure_utc(covered[1])
        if not (after < stored_open_start <= until):
            stored_open, stored_open_start = None, None
    stored_open_used = False

    for candidate in sorted(closed, key=lambda c: c.start_time):
        if ensure_utc(candidate.start_time) in closed_starts:
            skipped += 1
            logger.debug("[REPO] Trip already stored: %s %s", device_id, candidate.start_time.isoformat())
            continue

        if stored_open is not None and not stored_open_used and candidate.start_time == stored_open_start:
            _apply_candidate(stored_open, candidate)
            stored_open_used = True
            created += 1
            logger.info("[REPO] Trip closed in place: %s %s → %s",
                        device_id, candidate.start_time.isoformat(), candidate.end_time.isoformat())
            continue

        if _insert_closed(DB, candidate):
            created += 1
        else:
            skipped += 1
            logger.debug("[REPO] Trip already stored: %s %s", device_id, candidate.start_time.isoformat())

    if open_trip is not None and ensure_utc(open_trip.start_time) not in closed_starts:
        if stored_open is not None and not stored_open_used and open_trip.start_time == stored_open_start:
            _apply_candidate(stored_open, open_trip)
            stored_open_used = True
        else:
            DB.add(Trip(**open_trip.model_dump()))

    if stored_open is not None and not stored_open_used:
        logger.info("[REPO] Removing stale open trip %s of %s", stored_open.id, device_id)
        DB.delete(stored_open)

    DB.flush()
    return created, skipped


def apply_coordinates_patch(DB: Session, trip: Trip, patch: Trip_coordinates_update) -> Trip:
    """Apply a reconciliation patch. Does NOT commit."""
    for field, value in patch.model_dump(exclude_none=True).items():
        setattr(trip, field, value)
    DB.flush()
    return trip
