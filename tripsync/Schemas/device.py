# tripsync/Schemas/device.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional


class Device_create(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: str = Field(..., min_length=1, max_length=64)
    vendor_id: Optional[str] = Field(
        None,
        max_length=64,
        description="Vendor-side id; defaults to device_id"
    )
    vendor: str = Field("gps51", max_length=32)
    name: Optional[str] = Field(None, max_length=200)
    is_active: bool = True


class Device_get(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    vendor_id: str
    vendor: str
    name: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
