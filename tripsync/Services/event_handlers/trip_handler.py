# tripsync/Services/event_handlers/trip_handler.py
"""
Trip Event Handler
==================
Métricas de trip y persistencia de un resultado de segmentación.

Arquitectura:
- calculate_*: funciones puras sobre listas de CanonicalPoint
- handle_trip_persistence(): único punto que escribe trips (vía repository)

Funciones:
- calculate_haversine_distance(): distancia entre dos puntos (metros)
- calculate_trip_distance(): odómetro del vendor si existe, si no haversine
  con rechazo de saltos imposibles
- calculate_trip_metrics(): distancia, duración, velocidades, extremos
- handle_trip_persistence(): guarda trips cerrados + abierto de un device
"""

import logging
from datetime import datetime
from math import atan2, cos, radians, sin, sqrt
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from tripsync.Core.config import settings
from tripsync.Repositories.trip import save_trips
from tripsync.Schemas.position import CanonicalPoint
from tripsync.Schemas.trip import Trip_create

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000


# ==========================================================
# HELPER: CÁLCULO DE DISTANCIA (HAVERSINE)
# ==========================================================

def calculate_haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float
) -> float:
    """
    Distancia del círculo máximo entre dos puntos, en metros.

    Examples:
        >>> calculate_haversine_distance(10.0, -74.0, 10.001, -74.0)
        111.19...
        >>> calculate_haversine_distance(10.5, -74.8, 10.5, -74.8)
        0.0
    """
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = radians(lat2 - lat1)
    delta_lon = radians(lon2 - lon1)

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_M * c


# ==========================================================
# HELPER: DISTANCIA DE UN TRIP
# ==========================================================

def odometer_distance_km(points: Sequence[CanonicalPoint]) -> Optional[float]:
    """
    Delta del odómetro del vendor entre el primer y último punto que lo
    reportan. None si falta o si el delta es negativo (reset del equipo).
    """
    readings = [p.total_mileage_m for p in points if p.total_mileage_m is not None]
    if len(readings) < 2:
        return None
    delta_m = readings[-1] - readings[0]
    if delta_m < 0:
        return None
    return round(delta_m / 1000.0, 3)


def haversine_distance_km(
    points: Sequence[CanonicalPoint],
    max_implied_speed_kmh: Optional[float] = None
) -> float:
    """
    Suma de tramos haversine, descartando tramos cuya velocidad implícita
    supera max_implied_speed_kmh (jitter del GPS).
    """
    max_speed = max_implied_speed_kmh or settings.TRIP_MAX_IMPLIED_SPEED_KMH
    total_m = 0.0
    rejected = 0

    for prev, curr in zip(points, points[1:]):
        step_m = calculate_haversine_distance(prev.latitude, prev.longitude, curr.latitude, curr.longitude)
        if step_m == 0:
            continue
        dt = (curr.gps_time - prev.gps_time).total_seconds()
        if dt <= 0 or (step_m / 1000.0) / (dt / 3600.0) > max_speed:
            rejected += 1
            continue
        total_m += step_m

    if rejected:
        logger.debug("[TRIP_HANDLER] Rejected %d jitter steps", rejected)
    return round(total_m / 1000.0, 3)


def calculate_trip_distance(points: Sequence[CanonicalPoint]) -> Tuple[float, str]:
    """
    Returns:
        (distance_km, source) con source 'odometer' o 'haversine'
    """
    odometer = odometer_distance_km(points)
    if odometer is not None:
        return odometer, "odometer"
    return haversine_distance_km(points), "haversine"


# ==========================================================
# HELPER: CÁLCULO DE MÉTRICAS DE TRIP
# ==========================================================

def calculate_trip_metrics(
    points: Sequence[CanonicalPoint],
    end_time: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Métricas de un trip a partir de sus puntos (orden ascendente).

    Args:
        points: Puntos del trip, primero = inicio
        end_time: Fin del trip; None para un trip abierto (la duración se
            mide hasta el último punto disponible)

    Returns:
        dict con distance_km, distance_source, duration_seconds, avg_speed,
        max_speed y coordenadas de inicio/fin
    """
    first = points[0]
    last = points[-1]
    distance_km, source = calculate_trip_distance(points)

    speeds = [p.speed for p in points if p.speed is not None]
    moving = [s for s in speeds if s > settings.TRIP_STOPPED_SPEED_KMH]

    reference_end = end_time or last.gps_time
    return {
        "distance_km": distance_km,
        "distance_source": source,
        "duration_seconds": int((reference_end - first.gps_time).total_seconds()),
        "avg_speed": round(sum(moving) / len(moving), 1) if moving else 0.0,
        "max_speed": max(speeds) if speeds else 0.0,
        "start_latitude": first.latitude,
        "start_longitude": first.longitude,
        "end_latitude": last.latitude if end_time is not None else None,
        "end_longitude": last.longitude if end_time is not None else None,
    }


# ==========================================================
# PERSISTENCIA
# ==========================================================

def handle_trip_persistence(
    db: Session,
    device_id: str,
    trips: List[Trip_create],
    open_trip: Optional[Trip_create],
    covered: Optional[Tuple[datetime, datetime]] = None
) -> Tuple[int, int]:
    """
    Guarda el resultado de segmentación de un device. No hace commit.

    Args:
        covered: (after, until] re-segmentado; acota qué trip abierto
            almacenado puede considerarse obsoleto

    Returns:
        (created, skipped)
    """
    created, skipped = save_trips(db, device_id, trips, open_trip, covered)
    if created or skipped:
        logger.info("[TRIP_HANDLER] %s: %d trips created, %d already stored", device_id, created, skipped)
    return created, skipped
