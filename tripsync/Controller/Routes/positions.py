# tripsync/Controller/Routes/positions.py

"""
Latest Position REST API

Serves the position cache: one row per device, the newest fix the sync
has seen, with an is_online flag (gps_time within OFFLINE_THRESHOLD_S).

Endpoints:
- GET /positions/latest              Every device's latest position
- GET /positions/latest/{device_id}  One device's latest position
"""

from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from tripsync.Controller.deps import get_DB
from tripsync.Repositories import position as position_repo
from tripsync.Schemas import position as position_schema

router = APIRouter()


@router.get("/latest", response_model=dict)
def get_latest_positions(DB: Session = Depends(get_DB)):
    """
    Returns:
        {
            "positions": [ {device_id, gps_time, latitude, ..., is_online}, ... ],
            "count": 2,
            "online": 1,
            "timestamp": "2025-01-12T10:30:05+00:00"
        }
    """
    now = datetime.now(timezone.utc)
    positions = position_repo.list_latest_positions(DB, now)
    return {
        "positions": [p.model_dump(mode="json") for p in positions],
        "count": len(positions),
        "online": sum(1 for p in positions if p.is_online),
        "timestamp": now.isoformat()
    }


@router.get("/latest/{device_id}", response_model=position_schema.Position_get)
def get_latest_position(device_id: str, DB: Session = Depends(get_DB)):
    position = position_repo.get_latest_position(DB, device_id)
    if position is None:
        raise HTTPException(
            status_code=404,
            detail=f"No position cached for device '{device_id}'"
        )
    return position
