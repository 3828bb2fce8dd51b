# tripsync/Controller/Routes/reconcile.py

"""
Trip Reconciliation REST API

Endpoints:
- POST /reconcile    Backfill missing trip endpoint coordinates

Usage:
    from tripsync.Controller.Routes import reconcile
    app.include_router(reconcile.router, prefix="/reconcile", tags=["reconcile"])
"""

from fastapi import APIRouter, Depends, HTTPException
from tripsync.Controller.deps import get_reconciliation_engine
from tripsync.Core.exceptions import ConfigurationError
from tripsync.Schemas import reconcile as reconcile_schema
from tripsync.Services.reconciliation import ReconciliationEngine

router = APIRouter()


@router.post("", response_model=reconcile_schema.ReconcileResult)
def run_reconciliation(
    request: reconcile_schema.ReconcileRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine)
):
    """
    Run a coordinates reconciliation pass.

    Body:
        {
            "mode": "coordinates",
            "deviceId": "DEV1",                  # optional, all devices if omitted
            "startDate": "2025-01-01T00:00:00Z", # optional, default now - 30 days
            "endDate": "2025-01-31T00:00:00Z"    # optional, default now
        }

    Raises:
        400: Unsupported mode or startDate after endDate
    """
    try:
        return engine.run(request)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
