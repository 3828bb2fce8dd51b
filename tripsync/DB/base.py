"""
tripsync/DB/base.py
==========================
SQLAlchemy Model Registry
==========================

Imports every model so its table is registered on ``Base.metadata`` before
Alembic autogenerate or ``create_all()`` runs.

Models Registered:
-----------------
- Device: vehicles known to the service and their vendor ids
- PositionPoint: immutable position history
- PositionCache: one latest-position row per device
- Trip: segmented trips
- SyncStatus: per-device sync state machine

Important:
----------
Any new model class MUST be imported here.
"""

from tripsync.DB.base_class import Base

# ============================================================
# MODEL IMPORTS - DO NOT REMOVE
# ============================================================
from tripsync.Models.device import Device
from tripsync.Models.position import PositionPoint, PositionCache
from tripsync.Models.trip import Trip
from tripsync.Models.sync_status import SyncStatus
