"""
tripsync/main.py
============================================
FastAPI Application for Fleet Trip Sync
============================================

Entry point of the trip sync service. Pulls telemetry from the vendor API,
stores positions, segments them into trips and reconciles trip endpoints.

Architecture Overview:
---------------------
- REST API: on-demand sync / reconciliation, sync state and latest positions
- Background Services: periodic sync scheduler (daemon thread)
- Persistence: PostgreSQL via SQLAlchemy, schema managed by Alembic

Run:
    uvicorn tripsync.main:app --host 0.0.0.0 --port 8000
"""

# Environment Configuration
from dotenv import load_dotenv
import os
load_dotenv()

import logging
from contextlib import asynccontextmanager

# FastAPI Core
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tripsync.Core.config import settings
from tripsync.Core.logging_config import configure_logging
from tripsync.Controller.deps import get_sync_orchestrator
from tripsync.Controller.Routes import devices, positions, reconcile, sync

# Database
from tripsync.DB import database

# Background Services
from tripsync.Services.scheduler import PeriodicSyncScheduler

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# ============================================================
# CORS CONFIGURATION
# ============================================================

def _parse_origins(csv_value: str):
    """
    Parse comma-separated origins into a list for CORS configuration.

    Examples:
        "*" → ["*"]
        "https://app.com,https://admin.app.com" → ["https://app.com", "https://admin.app.com"]
        "" → []
    """
    if not csv_value:
        return []
    csv_value = csv_value.strip()
    if csv_value == "*":
        return ["*"]
    return [origin.strip() for origin in csv_value.split(",") if origin.strip()]


_http_origins = _parse_origins(os.getenv("HTTP_ALLOWED_ORIGINS", "*"))


# ============================================================
# APPLICATION LIFESPAN MANAGEMENT
# ============================================================

scheduler = PeriodicSyncScheduler(get_sync_orchestrator(), settings.SYNC_INTERVAL_S)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup Sequence:
        1. Check the database connection
        2. Start the periodic sync scheduler if SCHEDULER_ENABLED

    Shutdown Sequence:
        - Stop the scheduler (the current tick finishes in its own thread)
    """
    if database.test_db_connection():
        logger.info("[STARTUP] Database connection OK")
    else:
        logger.error("[STARTUP] Database not reachable, requests will fail until it is")

    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("[SERVICES] Periodic sync scheduler is disabled")

    logger.info("[STARTUP] Application initialization complete")

    yield

    logger.info("[SHUTDOWN] Application shutdown initiated")
    if scheduler.running:
        scheduler.stop()


# ============================================================
# APPLICATION INSTANCE CREATION
# ============================================================
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_http_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# HEALTH CHECK ENDPOINT
# ============================================================
@app.get("/health")
def health():
    return {"status": "ok"}


# ============================================================
# REST API ROUTE REGISTRATION
# ============================================================
app.include_router(devices.router, prefix="/devices", tags=["devices"])
app.include_router(sync.router, prefix="/sync", tags=["sync"])
app.include_router(reconcile.router, prefix="/reconcile", tags=["reconcile"])
app.include_router(positions.router, prefix="/positions", tags=["positions"])


# ============================================================
# API INFORMATION ENDPOINT
# ============================================================
@app.get("/api")
def api_info():
    return {
        "status": "online",
        "version": settings.PROJECT_VERSION,
        "features": {
            "scheduler_enabled": settings.SCHEDULER_ENABLED,
            "sync_interval_s": settings.SYNC_INTERVAL_S,
            "vendor_configured": bool(settings.VENDOR_BASE_URL and settings.VENDOR_USERNAME),
        },
        "endpoints": {
            "sync": "/sync",
            "reconcile": "/reconcile",
            "positions": "/positions/latest",
            "devices": "/devices",
            "health": "/health"
        }
    }
