# tripsync/Services/event_handlers/persistence_handler.py
"""
Persistence Handler
===================
Mapea, normaliza y guarda un lote de registros crudos del vendor.

Filosofía de errores:
- Un registro malformado se descarta y se loguea; el lote continúa
- Duplicados (device_id, gps_time) son silenciosos: no son errores reales
- No hace commit: el orquestador confirma datos y cursor juntos

Funciones:
- normalize_batch(): crudo → CanonicalPoint almacenables + rechazados
- persist_positions(): upsert en historial + cache
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from tripsync.Core.exceptions import MalformedDataError
from tripsync.Repositories.position import upsert_positions
from tripsync.Schemas.position import CanonicalPoint, Upsert_result
from tripsync.Services.telemetry_core import map_vendor_record, normalize_record

logger = logging.getLogger(__name__)


def normalize_batch(
    vendor: str,
    device_id: str,
    raw_records: Iterable[Mapping[str, Any]],
    now: Optional[datetime] = None
) -> Tuple[List[CanonicalPoint], int]:
    """
    Returns:
        (points, rejected): solo puntos con gps_time y coordenadas válidas
    """
    points: List[CanonicalPoint] = []
    rejected = 0

    for raw in raw_records:
        try:
            point = normalize_record(map_vendor_record(vendor, raw), device_id, now)
            if not point.is_storable:
                raise MalformedDataError(
                    f"point without usable time/coordinates "
                    f"(gps_time={point.gps_time}, lat={point.latitude}, lon={point.longitude})"
                )
        except MalformedDataError as e:
            rejected += 1
            logger.warning("[PERSISTENCE] %s: record skipped: %s", device_id, e)
            continue

        if point.speed_sensor_error:
            logger.info("[PERSISTENCE] %s: speed clamped at %s", device_id, point.gps_time.isoformat())
        points.append(point)

    return points, rejected


def persist_positions(db: Session, points: List[CanonicalPoint]) -> Upsert_result:
    """Upsert del lote en historial y cache. No hace commit."""
    if not points:
        return Upsert_result()
    result = upsert_positions(db, points)
    if result.duplicates:
        logger.debug("[PERSISTENCE] %d duplicate points ignored", result.duplicates)
    return result
