# tripsync/Schemas/trip.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional


# ============================================
# BASE SCHEMA
# ============================================
class Trip_base(BaseModel):
    """
    Base schema for Trip with common attributes and validations.
    """
    model_config = ConfigDict(from_attributes=True)

    device_id: str = Field(..., min_length=1, max_length=64)

    start_time: datetime = Field(..., description="UTC time of trip start")
    end_time: Optional[datetime] = Field(None, description="UTC time of trip end (None while open)")

    start_latitude: Optional[float] = Field(None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(None, ge=-180, le=180)
    end_latitude: Optional[float] = Field(None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(None, ge=-180, le=180)

    distance_km: float = Field(0.0, ge=0)
    distance_source: str = Field("haversine", pattern="^(odometer|haversine|placeholder)$")
    duration_seconds: Optional[int] = Field(None, ge=0)
    avg_speed: Optional[float] = Field(None, ge=0)
    max_speed: Optional[float] = Field(None, ge=0)
    detection_mode: str = Field("ignition", pattern="^(ignition|speed)$")
    continuity_flag: bool = False


# ============================================
# CREATE SCHEMA
# ============================================
class Trip_create(Trip_base):
    """
    Trip candidate produced by the segmentation engine.

    Used by:
    - TripDetector.segment() (closed trips and the open trip)
    - Repositories/trip.save_trips()
    """
    pass


# ============================================
# UPDATE SCHEMA
# ============================================
class Trip_coordinates_update(BaseModel):
    """
    Patch applied by reconciliation. Times are deliberately absent.
    """
    start_latitude: Optional[float] = Field(None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(None, ge=-180, le=180)
    end_latitude: Optional[float] = Field(None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(None, ge=-180, le=180)
    distance_km: Optional[float] = Field(None, ge=0)
    distance_source: Optional[str] = Field(None, pattern="^(odometer|haversine|placeholder)$")


# ============================================
# READ SCHEMA
# ============================================
class Trip_get(Trip_base):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
