# tripsync/Controller/Routes/sync.py

"""
Trip Sync REST API

On-demand sync invocation plus the per-device sync state read surface.

Endpoints:
- POST /sync                          Run a sync batch (blocking)
- GET  /sync/status                   Sync state of every device
- GET  /sync/status/{device_id}       Sync state of one device
- POST /sync/status/{device_id}/reset Operator reset to idle (cursor kept)

Usage:
    # In main.py
    from tripsync.Controller.Routes import sync
    app.include_router(sync.router, prefix="/sync", tags=["sync"])
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from tripsync.Controller.deps import get_DB, get_sync_orchestrator
from tripsync.Core.exceptions import ConfigurationError
from tripsync.Repositories import sync_status as status_repo
from tripsync.Schemas import sync as sync_schema
from tripsync.Services.sync_orchestrator import SyncOrchestrator

router = APIRouter()


# ==========================================================
# 📌 Run Sync
# ==========================================================

@router.post("", response_model=sync_schema.SyncResult)
def run_sync(
    request: Optional[sync_schema.SyncRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)
):
    """
    Run a sync batch and return its summary.

    Body (optional):
        {
            "deviceIds": ["DEV1", "DEV2"],   # omit for every due device
            "forceFullSync": false
        }

    Per-device failures are reported in ``errors`` with HTTP 200; only a
    missing vendor configuration fails the request.

    Raises:
        503: Vendor credentials are not configured
    """
    try:
        return orchestrator.run(request or sync_schema.SyncRequest())
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))


# ==========================================================
# 📌 Sync State
# ==========================================================

@router.get("/status", response_model=List[sync_schema.SyncStatus_get])
def list_sync_status(DB: Session = Depends(get_DB)):
    return status_repo.list_statuses(DB)


@router.get("/status/{device_id}", response_model=sync_schema.SyncStatus_get)
def get_sync_status(device_id: str, DB: Session = Depends(get_DB)):
    status = status_repo.get_status(DB, device_id)
    if status is None:
        raise HTTPException(
            status_code=404,
            detail=f"No sync status for device '{device_id}'"
        )
    return status


@router.post("/status/{device_id}/reset", response_model=sync_schema.SyncStatus_get)
def reset_sync_status(device_id: str, DB: Session = Depends(get_DB)):
    """
    Force a device back to idle, clearing backoff and last error.

    Meant for a device stuck in 'running' after a crash or held in backoff
    longer than wanted. The cursor is not touched.
    """
    status = status_repo.reset_sync_status(DB, device_id)
    if status is None:
        raise HTTPException(
            status_code=404,
            detail=f"No sync status for device '{device_id}'"
        )
    return status
