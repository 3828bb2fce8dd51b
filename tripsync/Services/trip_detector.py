# tripsync/Services/trip_detector.py
"""
Trip Detector Service - Segmentation of a position window into trips.

Responsibilities:
- Pick the segmentation mode for the window (ignition or speed)
- Find trip boundaries with a small state machine per mode
- Build Trip_create candidates with metrics (distance, duration, speeds)
- Drop ghost trips (short AND brief, not confirmed by ignition)
- Flag continuity breaks between consecutive trips

Key Concepts:
- Pure: the detector holds thresholds only; all state lives in the
  segment() call, so re-running it over the same points yields the same trips
- The last trip of a window may still be in progress: it comes back as
  ``open_trip`` and the caller persists it with end_time NULL

Mode selection:
1. Ignition mode when at least TRIP_IGNITION_COVERAGE_MIN of the points carry
   a direct ignition signal (status text or JT808 bits)
   - start: first point with ignition on while no trip is open
   - end:   first on→off point that stays off and stopped for
            TRIP_SETTLE_WINDOW_S (end_time = that point)
2. Speed mode otherwise
   - start: TRIP_MOVING_SAMPLES consecutive samples above TRIP_MOVING_SPEED_KMH
            (start_time = first of them)
   - end:   speed below TRIP_STOPPED_SPEED_KMH for TRIP_DWELL_S
            (end_time = first stopped sample)
In both modes a reporting gap longer than TRIP_MAX_GAP_S closes the running
trip at the last point before the gap.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from tripsync.Core.config import Settings, settings as default_settings
from tripsync.Core.exceptions import SegmentationError
from tripsync.Schemas.position import CanonicalPoint
from tripsync.Schemas.trip import Trip_create
from tripsync.Services.event_handlers.trip_handler import (
    calculate_haversine_distance,
    calculate_trip_metrics
)

logger = logging.getLogger(__name__)

DIRECT_IGNITION_METHODS = ("string_parse", "status_bit")


# ==========================================================
# RESULT
# ==========================================================

@dataclass
class SegmentationResult:
    device_id: str
    mode: Optional[str] = None
    trips: List[Trip_create] = field(default_factory=list)
    open_trip: Optional[Trip_create] = None
    discarded: int = 0
    continuity_breaks: int = 0


@dataclass
class _Segment:
    start: int
    end: Optional[int] = None  # None = still open at window end


# ==========================================================
# CONTINUITY
# ==========================================================

def check_continuity(
    trips: Sequence[Trip_create],
    tolerance_km: float,
    previous_end: Optional[Tuple[float, float]] = None
) -> int:
    """
    Flag trips whose start is farther than ``tolerance_km`` from the end of
    the trip before them. Flags are set in place; trips are kept.

    Args:
        trips: Trips in start_time order
        tolerance_km: Allowed gap between end N and start N+1
        previous_end: (lat, lon) of the trip preceding ``trips[0]``, if any

    Returns:
        int: number of flagged trips
    """
    flagged = 0
    prev_end = previous_end

    for trip in trips:
        if prev_end is not None and trip.start_latitude is not None and trip.start_longitude is not None:
            gap_km = calculate_haversine_distance(
                prev_end[0], prev_end[1], trip.start_latitude, trip.start_longitude
            ) / 1000.0
            if gap_km > tolerance_km:
                trip.continuity_flag = True
                flagged += 1
                logger.warning(
                    "[TRIP_DETECTOR] %s: continuity break of %.2f km before trip at %s",
                    trip.device_id, gap_km, trip.start_time.isoformat()
                )

        if trip.end_latitude is not None and trip.end_longitude is not None:
            prev_end = (trip.end_latitude, trip.end_longitude)
        else:
            prev_end = None

    return flagged


# ==========================================================
# CLASS: TRIP DETECTOR
# ==========================================================

class TripDetector:
    """
    Segmentation engine. Thresholds come from settings at construction.
    """

    def __init__(self, config: Optional[Settings] = None):
        cfg = config or default_settings
        self.settle_window_s = cfg.TRIP_SETTLE_WINDOW_S
        self.ignition_coverage_min = cfg.TRIP_IGNITION_COVERAGE_MIN
        self.moving_speed = cfg.TRIP_MOVING_SPEED_KMH
        self.stopped_speed = cfg.TRIP_STOPPED_SPEED_KMH
        self.moving_samples = max(1, cfg.TRIP_MOVING_SAMPLES)
        self.dwell_s = cfg.TRIP_DWELL_S
        self.max_gap_s = cfg.TRIP_MAX_GAP_S
        self.min_distance_km = cfg.TRIP_MIN_DISTANCE_KM
        self.min_duration_s = cfg.TRIP_MIN_DURATION_S
        self.confirm_confidence = cfg.TRIP_IGNITION_CONFIRM_CONFIDENCE
        self.continuity_tolerance_km = cfg.TRIP_CONTINUITY_TOLERANCE_KM

    # ==========================================================
    # MAIN ENTRY: SEGMENT
    # ==========================================================

    def segment(
        self,
        device_id: str,
        points: Sequence[CanonicalPoint],
        previous_end: Optional[Tuple[float, float]] = None
    ) -> SegmentationResult:
        """
        Segment an ordered window of points into trips.

        Args:
            device_id: Device the points belong to
            points: Storable points, ascending gps_time
            previous_end: (lat, lon) where the device's previous trip ended,
                for the continuity check of the first trip

        Returns:
            SegmentationResult

        Raises:
            SegmentationError: neither ignition nor speed is present in any point
        """
        result = SegmentationResult(device_id=device_id)
        if not points:
            return result

        if all(p.ignition_on is None and p.speed is None for p in points):
            raise SegmentationError(
                f"{device_id}: window of {len(points)} points has neither ignition nor speed"
            )

        result.mode = self.select_mode(points)
        if result.mode == "ignition":
            segments = self._ignition_segments(points)
        else:
            segments = self._speed_segments(points)

        for seg in segments:
            candidate = self._build_candidate(device_id, points, seg, result.mode)
            if candidate is None:
                result.discarded += 1
                continue
            if seg.end is None:
                result.open_trip = candidate
                continue
            if self._is_ghost(candidate, points[seg.start:seg.end + 1], result.mode):
                result.discarded += 1
                logger.debug(
                    "[TRIP_DETECTOR] %s: ghost trip dropped (%.3f km, %ss)",
                    device_id, candidate.distance_km, candidate.duration_seconds
                )
                continue
            result.trips.append(candidate)

        result.continuity_breaks = check_continuity(
            result.trips, self.continuity_tolerance_km, previous_end
        )

        logger.info(
            "[TRIP_DETECTOR] %s: mode=%s points=%d trips=%d open=%s ghosts=%d",
            device_id, result.mode, len(points), len(result.trips),
            result.open_trip is not None, result.discarded
        )
        return result

    def select_mode(self, points: Sequence[CanonicalPoint]) -> str:
        direct = sum(
            1 for p in points
            if p.ignition_on is not None and p.detection_method in DIRECT_IGNITION_METHODS
        )
        coverage = direct / len(points)
        return "ignition" if coverage >= self.ignition_coverage_min else "speed"

    # ==========================================================
    # STATE MACHINE: IGNITION
    # ==========================================================

    def _ignition_segments(self, points: Sequence[CanonicalPoint]) -> List[_Segment]:
        segments: List[_Segment] = []
        current: Optional[_Segment] = None
        pending_off: Optional[int] = None

        for i, p in enumerate(points):
            if current is not None and i > 0 and self._gap_exceeded(points[i - 1], p):
                current.end = i - 1
                segments.append(current)
                current, pending_off = None, None

            if current is None:
                if p.ignition_on is True:
                    current = _Segment(start=i)
                continue

            settling = p.ignition_on is not True and (p.speed is None or p.speed < self.stopped_speed)

            if pending_off is None:
                if p.ignition_on is False and settling:
                    pending_off = i
            elif not settling:
                # Flicker: ignition came back or the vehicle moved again
                pending_off = None
                continue

            if pending_off is not None and self._elapsed(points[pending_off], p) >= self.settle_window_s:
                current.end = pending_off
                segments.append(current)
                current, pending_off = None, None

        if current is not None:
            segments.append(current)
        return segments

    # ==========================================================
    # STATE MACHINE: SPEED
    # ==========================================================

    def _speed_segments(self, points: Sequence[CanonicalPoint]) -> List[_Segment]:
        segments: List[_Segment] = []
        current: Optional[_Segment] = None
        moving_run = 0
        stop_at: Optional[int] = None

        for i, p in enumerate(points):
            if current is not None and i > 0 and self._gap_exceeded(points[i - 1], p):
                current.end = i - 1
                segments.append(current)
                current, stop_at = None, None
                moving_run = 0

            if current is None:
                if p.speed is not None and p.speed > self.moving_speed:
                    moving_run += 1
                    if moving_run >= self.moving_samples:
                        current = _Segment(start=i - moving_run + 1)
                        moving_run = 0
                else:
                    moving_run = 0
                continue

            if p.speed is None:
                continue

            if p.speed < self.stopped_speed:
                if stop_at is None:
                    stop_at = i
                if self._elapsed(points[stop_at], p) >= self.dwell_s:
                    current.end = stop_at
                    segments.append(current)
                    current, stop_at = None, None
            else:
                stop_at = None

        if current is not None:
            segments.append(current)
        return segments

    # ==========================================================
    # HELPERS
    # ==========================================================

    @staticmethod
    def _elapsed(a: CanonicalPoint, b: CanonicalPoint) -> float:
        return (b.gps_time - a.gps_time).total_seconds()

    def _gap_exceeded(self, prev: CanonicalPoint, curr: CanonicalPoint) -> bool:
        return self._elapsed(prev, curr) > self.max_gap_s

    def _build_candidate(
        self,
        device_id: str,
        points: Sequence[CanonicalPoint],
        seg: _Segment,
        mode: str
    ) -> Optional[Trip_create]:
        last = seg.end if seg.end is not None else len(points) - 1
        trip_points = points[seg.start:last + 1]
        start_time: datetime = trip_points[0].gps_time
        end_time: Optional[datetime] = trip_points[-1].gps_time if seg.end is not None else None

        # A closed trip must span time
        if end_time is not None and end_time <= start_time:
            return None

        metrics = calculate_trip_metrics(trip_points, end_time)
        return Trip_create(
            device_id=device_id,
            start_time=start_time,
            end_time=end_time,
            detection_mode=mode,
            **metrics
        )

    def _is_ghost(self, candidate: Trip_create, trip_points: Sequence[CanonicalPoint], mode: str) -> bool:
        if candidate.distance_km >= self.min_distance_km:
            return False
        if (candidate.duration_seconds or 0) >= self.min_duration_s:
            return False
        if mode != "ignition":
            return True
        confirmed = any(
            p.ignition_on is True and (p.ignition_confidence or 0.0) >= self.confirm_confidence
            for p in trip_points
        )
        return not confirmed
