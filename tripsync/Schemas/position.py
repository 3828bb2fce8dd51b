# tripsync/Schemas/position.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, Union


# ============================================
# CANONICAL INGESTION SCHEMA
# ============================================
class VendorRecord(BaseModel):
    """
    Single shape every vendor record is mapped into before normalization.

    Values are still "raw" here: speed may be out of range, the timestamp is
    whatever the vendor sent, and coordinates have not been validated.
    Produced by Services/telemetry_core/vendor_mapping.py.
    """
    model_config = ConfigDict(extra="forbid")

    vendor_device_id: str = Field(..., min_length=1)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed_kmh: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    status_bits: Optional[int] = Field(
        None,
        description="JT808 32-bit status word, when the vendor exposes it"
    )
    status_text: Optional[str] = None
    gps_time_raw: Union[int, float, str, None] = Field(
        None,
        description="Epoch seconds/ms, ISO-8601 or 'YYYY-MM-DD HH:MM:SS'"
    )
    total_mileage_m: Optional[float] = None


# ============================================
# NORMALIZED POINT
# ============================================
class CanonicalPoint(BaseModel):
    """
    Output of the telemetry normalizer. Same columns as PositionPoint.

    gps_time, latitude and longitude are Optional here because the
    normalizer never drops a record; the sync orchestrator rejects points
    missing any of them.
    """
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    gps_time: Optional[datetime] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    speed: Optional[float] = Field(None, ge=0, le=200, description="km/h")
    heading: Optional[float] = None
    altitude: Optional[float] = None
    ignition_on: Optional[bool] = None
    ignition_confidence: float = Field(0.0, ge=0, le=1)
    detection_method: str = Field(
        "unknown",
        pattern="^(string_parse|status_bit|speed_inference|unknown)$"
    )
    status_text: Optional[str] = None
    total_mileage_m: Optional[float] = None
    speed_sensor_error: bool = False

    @property
    def is_storable(self) -> bool:
        return (
            self.gps_time is not None
            and self.latitude is not None
            and self.longitude is not None
        )


# ============================================
# READ SCHEMAS
# ============================================
class Position_get(BaseModel):
    """Latest position of a device as served by GET /positions/latest."""
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    gps_time: datetime
    latitude: float
    longitude: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    ignition_on: Optional[bool] = None
    ignition_confidence: Optional[float] = None
    detection_method: str
    updated_at: datetime
    is_online: bool = False


class Upsert_result(BaseModel):
    inserted: int = 0
    duplicates: int = 0
    cache_updated: int = 0
