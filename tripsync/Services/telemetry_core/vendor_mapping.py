# tripsync/Services/telemetry_core/vendor_mapping.py
"""
Vendor Mapping Module
=====================
One explicit mapping per vendor into the canonical ingestion schema
(VendorRecord). Field names are never guessed at runtime: a record that
lacks the keys its mapping requires is rejected with MalformedDataError.

Registered vendors:
- gps51: GPS51 openapi (lastposition / querytracks)
- generic: JSON that already uses the canonical names
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from tripsync.Core.exceptions import MalformedDataError
from tripsync.Schemas.position import VendorRecord
from tripsync.Services.telemetry_core.normalizers import coerce_number

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> Optional[int]:
    number = coerce_number(value)
    return int(number) if number is not None else None


# ==========================================================
# GPS51
# ==========================================================

GPS51_REQUIRED_KEYS = ("deviceid", "gpstime")


def map_gps51(raw: Mapping[str, Any]) -> VendorRecord:
    """
    GPS51 openapi record → VendorRecord.

    Field notes:
    - callat/callon are the corrected WGS84 coordinates
    - speed comes in meters per hour
    - course is the heading in degrees
    - status is the JT808 status word, strstatus the human text
    - gpstime is epoch milliseconds of the fix; updatetime (server receive
      time) is never used as gps_time
    - totaldistance is the cumulative odometer in meters
    """
    missing = [k for k in GPS51_REQUIRED_KEYS if raw.get(k) in (None, "")]
    if missing:
        raise MalformedDataError(f"gps51 record missing {missing}")

    speed_mh = coerce_number(raw.get("speed"))
    status_text = raw.get("strstatus")

    return VendorRecord(
        vendor_device_id=str(raw["deviceid"]),
        latitude=coerce_number(raw.get("callat")),
        longitude=coerce_number(raw.get("callon")),
        speed_kmh=speed_mh / 1000.0 if speed_mh is not None else None,
        heading=coerce_number(raw.get("course")),
        altitude=coerce_number(raw.get("altitude")),
        status_bits=_as_int(raw.get("status")),
        status_text=status_text or None,
        gps_time_raw=raw["gpstime"],
        total_mileage_m=coerce_number(raw.get("totaldistance")),
    )


# ==========================================================
# GENERIC (already canonical)
# ==========================================================

def map_generic(raw: Mapping[str, Any]) -> VendorRecord:
    try:
        return VendorRecord.model_validate(dict(raw))
    except ValidationError as e:
        raise MalformedDataError(f"generic record rejected: {e.error_count()} validation errors") from e


# ==========================================================
# REGISTRY
# ==========================================================

VENDOR_MAPPERS: Dict[str, Callable[[Mapping[str, Any]], VendorRecord]] = {
    "gps51": map_gps51,
    "generic": map_generic,
}


def map_vendor_record(vendor: str, raw: Mapping[str, Any]) -> VendorRecord:
    """
    Apply the registered mapping for ``vendor``.

    Raises:
        MalformedDataError: unknown vendor, non-dict payload or missing keys
    """
    mapper = VENDOR_MAPPERS.get(vendor)
    if mapper is None:
        raise MalformedDataError(f"No mapping registered for vendor '{vendor}'")
    if not isinstance(raw, Mapping):
        raise MalformedDataError(f"{vendor} record is not an object: {type(raw).__name__}")

    try:
        return mapper(raw)
    except ValidationError as e:
        raise MalformedDataError(f"{vendor} record failed validation: {e.error_count()} errors") from e
