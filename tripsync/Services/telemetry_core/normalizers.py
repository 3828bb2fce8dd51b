# tripsync/Services/telemetry_core/normalizers.py
"""
Telemetry Normalizers Module
============================
Convierte un VendorRecord (schema canónico de ingesta) en un CanonicalPoint
listo para el position store.

Reglas:
- Velocidad en km/h, clamped a [0, 200]; fuera de rango marca
  speed_sensor_error pero el punto se devuelve igual
- Timestamps: epoch s/ms, ISO-8601 y 'YYYY-MM-DD HH:MM:SS' (hora local del
  vendor) → datetime UTC; irreconocible → None; fuera de rango → clamp
- Coordenadas fuera de rango o (0, 0) → None
- Ignición resuelta por ignition.resolve_ignition()

El normalizador nunca descarta registros: quien llama (el orquestador)
rechaza los puntos sin gps_time o sin coordenadas.

Funciones:
- coerce_number(): strings numéricos → float
- normalize_timestamp(): valor crudo → datetime UTC | None
- normalize_coordinates(): validación lat/lon
- normalize_speed(): clamp + flag
- normalize_record(): orquesta todo lo anterior
- is_online(): frescura de un fix
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple, Union

from tripsync.Core.config import settings
from tripsync.Core.time_utils import utcnow
from tripsync.Schemas.position import CanonicalPoint, VendorRecord
from tripsync.Services.telemetry_core.ignition import resolve_ignition


# ==========================================================
# CONSTANTES
# ==========================================================

MAX_SPEED_KMH = 200.0

GPS_TIME_MIN = datetime(2020, 1, 1, tzinfo=timezone.utc)
GPS_TIME_MAX_FUTURE = timedelta(days=1)

# 2000-01-01T00:00:00Z en milisegundos. Un epoch numérico menor que esto
# no puede ser milisegundos de una fecha plausible, así que son segundos.
_EPOCH_MS_THRESHOLD = 946_684_800_000

_VENDOR_TIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S")


# ==========================================================
# FUNCIONES DE BAJO NIVEL
# ==========================================================

def coerce_number(value: Any) -> Optional[float]:
    """
    Convierte a float, tratando "", "null" y basura como None.

    Examples:
        >>> coerce_number("3,14")
        3.14
        >>> coerce_number("null")
        None
        >>> coerce_number("n/a")
        None
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        v = value.strip()
        if v == "" or v.lower() == "null":
            return None
        try:
            return float(v.replace(",", "."))
        except ValueError:
            return None

    return None


def _vendor_tz() -> timezone:
    return timezone(timedelta(hours=settings.VENDOR_TIMEZONE_OFFSET_H))


def _from_epoch(value: float) -> Optional[datetime]:
    if value < _EPOCH_MS_THRESHOLD:
        seconds = value
    else:
        seconds = value / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _from_string(value: str) -> Optional[datetime]:
    v = value.strip()
    if not v:
        return None

    numeric = coerce_number(v)
    if numeric is not None:
        return _from_epoch(numeric)

    parsed = None
    try:
        parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _VENDOR_TIME_FORMATS:
            try:
                parsed = datetime.strptime(v, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None

    # Strings sin zona son hora local del vendor (GPS51: GMT+8)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_vendor_tz())
    return parsed.astimezone(timezone.utc)


def clamp_gps_time(value: datetime, now: Optional[datetime] = None) -> datetime:
    """Acota gps_time a [2020-01-01, now + 1 día]."""
    now = now or utcnow()
    upper = now + GPS_TIME_MAX_FUTURE
    if value < GPS_TIME_MIN:
        return GPS_TIME_MIN
    if value > upper:
        return upper
    return value


def normalize_timestamp(
    ts_value: Union[int, float, str, datetime, None],
    now: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Normaliza un timestamp del vendor a datetime UTC-aware.

    Soporta:
    - datetime (naive se asume UTC)
    - epoch en segundos o milisegundos (numérico o string)
    - ISO-8601 con o sin zona
    - 'YYYY-MM-DD HH:MM:SS' en hora local del vendor

    Returns:
        datetime | None: None si el valor no es interpretable
    """
    if ts_value is None or isinstance(ts_value, bool):
        return None

    if isinstance(ts_value, datetime):
        parsed = ts_value if ts_value.tzinfo else ts_value.replace(tzinfo=timezone.utc)
        parsed = parsed.astimezone(timezone.utc)
    elif isinstance(ts_value, (int, float)):
        parsed = _from_epoch(float(ts_value))
    elif isinstance(ts_value, str):
        parsed = _from_string(ts_value)
    else:
        return None

    if parsed is None:
        return None
    return clamp_gps_time(parsed, now)


def normalize_coordinates(
    latitude: Optional[float],
    longitude: Optional[float]
) -> Tuple[Optional[float], Optional[float]]:
    """Valida rango y descarta null island (0, 0). Inválido → (None, None)."""
    if latitude is None or longitude is None:
        return None, None
    if not (-90.0 <= latitude <= 90.0) or not (-180.0 <= longitude <= 180.0):
        return None, None
    if latitude == 0.0 and longitude == 0.0:
        return None, None
    return latitude, longitude


def normalize_speed(speed_kmh: Optional[float]) -> Tuple[Optional[float], bool]:
    """
    Clamp a [0, 200] km/h.

    Returns:
        (speed, sensor_error): sensor_error es True si hubo que recortar
    """
    if speed_kmh is None:
        return None, False
    if speed_kmh < 0:
        return 0.0, True
    if speed_kmh > MAX_SPEED_KMH:
        return MAX_SPEED_KMH, True
    return speed_kmh, False


# ==========================================================
# FUNCIÓN DE ALTO NIVEL
# ==========================================================

def normalize_record(
    record: VendorRecord,
    device_id: str,
    now: Optional[datetime] = None
) -> CanonicalPoint:
    """
    Normaliza un VendorRecord a CanonicalPoint.

    Args:
        record: Registro ya mapeado al schema canónico de ingesta
        device_id: Id interno del dispositivo (no el del vendor)
        now: Referencia temporal para el clamp (tests)

    Returns:
        CanonicalPoint: siempre; gps_time/coords pueden ser None
    """
    speed, speed_error = normalize_speed(record.speed_kmh)
    latitude, longitude = normalize_coordinates(record.latitude, record.longitude)
    reading = resolve_ignition(record.status_text, record.status_bits, speed)

    return CanonicalPoint(
        device_id=device_id,
        gps_time=normalize_timestamp(record.gps_time_raw, now),
        latitude=latitude,
        longitude=longitude,
        speed=speed,
        heading=record.heading,
        altitude=record.altitude,
        ignition_on=reading.ignition_on,
        ignition_confidence=reading.confidence,
        detection_method=reading.method,
        status_text=record.status_text,
        total_mileage_m=record.total_mileage_m,
        speed_sensor_error=speed_error,
    )


def is_online(
    gps_time: Optional[datetime],
    now: Optional[datetime] = None,
    threshold_s: Optional[int] = None
) -> bool:
    """True si el último fix es más reciente que OFFLINE_THRESHOLD_S."""
    if gps_time is None:
        return False
    now = now or utcnow()
    threshold = settings.OFFLINE_THRESHOLD_S if threshold_s is None else threshold_s
    return (now - gps_time).total_seconds() < threshold
