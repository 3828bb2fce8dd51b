# tripsync/Controller/Routes/devices.py

"""
Device Registry REST API

Vehicles must be registered here before the sync picks them up. vendor_id
is the id the telemetry vendor knows the device by (defaults to device_id).

Endpoints:
- GET  /devices/                    List devices
- POST /devices/                    Register a device
- GET  /devices/{device_id}         Device details
- GET  /devices/{device_id}/trips   Trips of a device, newest first

Usage:
    from tripsync.Controller.Routes import devices
    app.include_router(devices.router, prefix="/devices", tags=["devices"])
"""

from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from tripsync.Controller.deps import get_DB
from tripsync.Core.exceptions import DuplicateWriteConflict
from tripsync.Repositories import device as device_repo
from tripsync.Repositories import trip as trip_repo
from tripsync.Schemas import device as device_schema
from tripsync.Schemas import trip as trip_schema

router = APIRouter()


# ==========================================================
# 📌 List Devices
# ==========================================================

@router.get("/", response_model=List[device_schema.Device_get])
def list_devices(
    only_active: bool = Query(False, description="Filter only active devices"),
    DB: Session = Depends(get_DB)
):
    return device_repo.get_all_devices(DB, only_active=only_active)


# ==========================================================
# 📌 Register Device
# ==========================================================

@router.post("/", response_model=device_schema.Device_get, status_code=201)
def register_device(
    device: device_schema.Device_create,
    DB: Session = Depends(get_DB)
):
    """
    Register a device for sync.

    Example Request:
        POST /devices/
        {"device_id": "TRUCK-001", "vendor_id": "358899051234567", "name": "Truck 1"}

    Raises:
        409: device_id already registered
    """
    try:
        return device_repo.create_device(DB, device)
    except DuplicateWriteConflict:
        raise HTTPException(
            status_code=409,
            detail=f"Device '{device.device_id}' already exists"
        )


# ==========================================================
# 📌 Get Device
# ==========================================================

@router.get("/{device_id}", response_model=device_schema.Device_get)
def get_device(device_id: str, DB: Session = Depends(get_DB)):
    device = device_repo.get_device_by_id(DB, device_id)
    if device is None:
        raise HTTPException(
            status_code=404,
            detail=f"Device '{device_id}' not found"
        )
    return device


# ==========================================================
# 📌 Device Trips
# ==========================================================

@router.get("/{device_id}/trips", response_model=List[trip_schema.Trip_get])
def get_device_trips(
    device_id: str,
    start: Optional[datetime] = Query(None, description="Only trips starting at or after (UTC)"),
    end: Optional[datetime] = Query(None, description="Only trips starting at or before (UTC)"),
    limit: int = Query(100, ge=1, le=1000),
    DB: Session = Depends(get_DB)
):
    """
    Trips of a device, newest first. The open trip (if any) has end_time null.

    Raises:
        404: Device not found
    """
    if device_repo.get_device_by_id(DB, device_id) is None:
        raise HTTPException(
            status_code=404,
            detail=f"Device '{device_id}' not found"
        )
    return trip_repo.get_trips_by_device(DB, device_id, start, end, limit)
