# tripsync/Models/sync_status.py
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import declared_attr
from tripsync.DB.base_class import Base


SYNC_STATES = ("idle", "running", "error", "backoff")


class SyncStatus(Base):
    """
    Per-device sync state machine.

    States: idle, running, error, backoff. Transitions are performed only by
    Repositories/sync_status.py on behalf of the sync orchestrator, plus the
    operator reset endpoint.

    ``cursor`` is the gps_time of the last position fully processed; the
    next incremental sync fetches strictly after it.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "trip_sync_status"

    device_id = Column(
        String(64),
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        primary_key=True
    )

    sync_status = Column(
        String(16),
        nullable=False,
        default="idle",
        server_default="idle"
    )

    cursor = Column(
        DateTime(timezone=True),
        nullable=True,
        doc="Last processed gps_time (NULL = never synced)"
    )

    backoff_until = Column(DateTime(timezone=True), nullable=True)

    # ========================================
    # PROGRESS
    # ========================================
    trips_total = Column(Integer, nullable=False, default=0)
    trips_processed = Column(Integer, nullable=False, default=0)
    progress_percent = Column(Float, nullable=False, default=0.0)
    current_operation = Column(String(200), nullable=True)

    last_error = Column(String(1000), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_started_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "sync_status IN ('idle', 'running', 'error', 'backoff')",
            name="check_sync_status_state"
        ),
    )

    def __repr__(self) -> str:
        return f"<SyncStatus(device_id={self.device_id!r}, status={self.sync_status!r}, cursor={self.cursor})>"
