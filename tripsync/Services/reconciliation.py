# tripsync/Services/reconciliation.py
"""
Reconciliation Engine - Backfill missing trip endpoint coordinates.

For every closed trip in scope whose start or end coordinates are missing
or zero, the position history of the same device is searched within
±RECONCILE_WINDOW_MIN of the endpoint's timestamp, and the nearest-in-time
point with non-zero coordinates is written onto the trip. When the trip's
distance is a placeholder and both endpoints are valid afterwards, the
distance is recomputed as the haversine between the endpoints.

Rules:
- start_time / end_time are never modified
- A trip whose endpoints are already valid is left as is (second pass = no-op)
- Each endpoint is resolved on its own: an endpoint with no nearby fix is
  left as is, logged and counted as a miss, while the other endpoint is
  still patched

Usage:
    engine = ReconciliationEngine()
    result = engine.run(ReconcileRequest(device_id="DEV1"))
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from tripsync.Core.config import Settings, settings as default_settings
from tripsync.Core.exceptions import ConfigurationError, ReconciliationMiss
from tripsync.Core.time_utils import ensure_utc, utcnow
from tripsync.DB.session import SessionLocal
from tripsync.Models.trip import Trip
from tripsync.Repositories import position as position_repo
from tripsync.Repositories import trip as trip_repo
from tripsync.Schemas.reconcile import ReconcileRequest, ReconcileResult
from tripsync.Schemas.trip import Trip_coordinates_update
from tripsync.Services.event_handlers.trip_handler import calculate_haversine_distance

logger = logging.getLogger(__name__)

SUPPORTED_MODES = ("coordinates",)


def has_valid_coordinates(latitude: Optional[float], longitude: Optional[float]) -> bool:
    return latitude is not None and longitude is not None and latitude != 0 and longitude != 0


class ReconciliationEngine:

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.config = config or default_settings
        self.clock = clock
        self.window = timedelta(minutes=self.config.RECONCILE_WINDOW_MIN)

    def resolve_range(self, request: ReconcileRequest) -> Tuple[datetime, datetime]:
        end = ensure_utc(request.end_date) or self.clock()
        start = ensure_utc(request.start_date) or end - timedelta(days=self.config.RECONCILE_DEFAULT_DAYS)
        if start > end:
            raise ConfigurationError(f"startDate {start.isoformat()} is after endDate {end.isoformat()}")
        return start, end

    def run(self, request: ReconcileRequest) -> ReconcileResult:
        """
        Raises:
            ConfigurationError: unsupported mode or inverted date range
        """
        if request.mode not in SUPPORTED_MODES:
            raise ConfigurationError(
                f"Unsupported reconciliation mode '{request.mode}' (supported: {', '.join(SUPPORTED_MODES)})"
            )
        start, end = self.resolve_range(request)
        result = ReconcileResult()

        with self.session_factory() as db:
            trips = trip_repo.get_trips_for_reconciliation(db, start, end, request.device_id)
            logger.info(
                "[RECONCILE] Checking %d trips (%s → %s, device=%s)",
                len(trips), start.isoformat(), end.isoformat(), request.device_id or "all"
            )

            for trip in trips:
                result.trips_checked += 1
                patch, backfilled, misses = self.plan_patch(db, trip)
                for miss in misses:
                    result.misses += 1
                    logger.warning("[RECONCILE] %s", miss)

                if patch is None:
                    continue

                try:
                    trip_repo.apply_coordinates_patch(db, trip, patch)
                    db.commit()
                except SQLAlchemyError as e:
                    db.rollback()
                    result.errors.append(f"trip {trip.id}: {e}")
                    logger.error("[RECONCILE] Trip %s patch failed: %s", trip.id, e)
                    continue

                result.trips_fixed += 1
                result.coordinates_backfilled += backfilled
                if patch.distance_km is not None:
                    result.distances_recomputed += 1

        logger.info("[RECONCILE] Done: %s", result.model_dump())
        return result

    def nearest_fix(self, db, trip: Trip, endpoint: str) -> Tuple[float, float]:
        """
        Raises:
            ReconciliationMiss: no valid fix within the window of that endpoint
        """
        at = trip.start_time if endpoint == "start" else trip.end_time
        fix = position_repo.find_nearest_valid_position(db, trip.device_id, at, self.window)
        if fix is None:
            raise ReconciliationMiss(trip.id, endpoint)
        return fix.latitude, fix.longitude

    def plan_patch(self, db, trip: Trip) -> Tuple[Optional[Trip_coordinates_update], int, List[ReconciliationMiss]]:
        """
        Work out the patch for one trip without writing anything.

        Each endpoint is resolved on its own; a miss on one endpoint does
        not discard a fix found for the other.

        Returns:
            (patch or None when nothing changes, endpoints backfilled, misses)
        """
        values = {}
        misses = []
        endpoints = {
            "start": [trip.start_latitude, trip.start_longitude],
            "end": [trip.end_latitude, trip.end_longitude],
        }

        for endpoint, coords in endpoints.items():
            if has_valid_coordinates(*coords):
                continue
            try:
                coords[:] = self.nearest_fix(db, trip, endpoint)
            except ReconciliationMiss as miss:
                misses.append(miss)
                continue
            values[f"{endpoint}_latitude"], values[f"{endpoint}_longitude"] = coords

        backfilled = len(values) // 2
        (start_lat, start_lon), (end_lat, end_lon) = endpoints["start"], endpoints["end"]

        placeholder = trip.distance_source == "placeholder" or not trip.distance_km
        if placeholder and has_valid_coordinates(start_lat, start_lon) and has_valid_coordinates(end_lat, end_lon):
            distance_km = round(calculate_haversine_distance(start_lat, start_lon, end_lat, end_lon) / 1000.0, 3)
            if distance_km > 0 or trip.distance_source == "placeholder":
                values.update(distance_km=distance_km, distance_source="haversine")

        if not values:
            return None, 0, misses
        return Trip_coordinates_update(**values), backfilled, misses
