# tripsync/Schemas/sync.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional


# ============================================
# REQUEST
# ============================================
class SyncRequest(BaseModel):
    """
    Sync invocation.

    device_ids=None means "every active device that is due" (not running,
    not inside an unexpired backoff).
    """
    model_config = ConfigDict(populate_by_name=True)

    device_ids: Optional[List[str]] = Field(None, alias="deviceIds")
    force_full_sync: bool = Field(False, alias="forceFullSync")


# ============================================
# RESULT
# ============================================
class DeviceSyncResult(BaseModel):
    device_id: str
    status: str = Field(..., description="Final state: idle, error, backoff or skipped")
    positions_inserted: int = 0
    trips_created: int = 0
    trips_skipped: int = 0
    error: Optional[str] = None


class SyncResult(BaseModel):
    devices_processed: int = 0
    trips_created: int = 0
    trips_skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    device_results: List[DeviceSyncResult] = Field(default_factory=list)
    sync_type: str = "incremental"
    duration_ms: int = 0


# ============================================
# STATUS READ SCHEMA
# ============================================
class SyncStatus_get(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    sync_status: str
    cursor: Optional[datetime] = None
    backoff_until: Optional[datetime] = None
    trips_total: int = 0
    trips_processed: int = 0
    progress_percent: float = 0.0
    current_operation: Optional[str] = None
    last_error: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    sync_started_at: Optional[datetime] = None
