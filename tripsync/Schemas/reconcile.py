# tripsync/Schemas/reconcile.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional


class ReconcileRequest(BaseModel):
    """
    Reconciliation invocation.

    Without device_id the sweep covers every device; without dates it
    covers the last RECONCILE_DEFAULT_DAYS days.
    """
    model_config = ConfigDict(populate_by_name=True)

    mode: str = "coordinates"
    device_id: Optional[str] = Field(None, alias="deviceId")
    start_date: Optional[datetime] = Field(None, alias="startDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")


class ReconcileResult(BaseModel):
    trips_checked: int = 0
    trips_fixed: int = 0
    coordinates_backfilled: int = 0
    distances_recomputed: int = 0
    misses: int = 0
    errors: List[str] = Field(default_factory=list)
