# tripsync/Services/telemetry_core/__init__.py
"""
Telemetry Core Module
=====================
Normalización de telemetría del vendor al punto canónico.

Componentes:
- vendor_mapping: un mapeo explícito por vendor → VendorRecord
- ignition: resolución de ignición (texto, bits JT808, velocidad)
- normalizers: velocidad, timestamps, coordenadas → CanonicalPoint
"""

from .ignition import IgnitionReading, parse_acc_text, score_status_bits, resolve_ignition
from .normalizers import (
    MAX_SPEED_KMH,
    coerce_number,
    normalize_timestamp,
    normalize_coordinates,
    normalize_speed,
    normalize_record,
    is_online
)
from .vendor_mapping import VENDOR_MAPPERS, map_vendor_record

__all__ = [
    # Ignition
    'IgnitionReading',
    'parse_acc_text',
    'score_status_bits',
    'resolve_ignition',

    # Normalizers
    'MAX_SPEED_KMH',
    'coerce_number',
    'normalize_timestamp',
    'normalize_coordinates',
    'normalize_speed',
    'normalize_record',
    'is_online',

    # Vendor mapping
    'VENDOR_MAPPERS',
    'map_vendor_record',
]
