# tripsync/Models/position.py
from sqlalchemy.orm import declared_attr
from sqlalchemy import (
    Column, BigInteger, Integer, String, Float, Boolean, DateTime,
    CheckConstraint, ForeignKey, Index, UniqueConstraint, func
)
from tripsync.DB.base_class import Base


DETECTION_METHODS = ("string_parse", "status_bit", "speed_inference", "unknown")

_detection_check = "detection_method IN ('string_parse', 'status_bit', 'speed_inference', 'unknown')"


class _CanonicalPositionColumns:
    """
    Columns shared by the history table and the latest-position cache.

    Both tables store the canonical (normalized) point; see
    Services/telemetry_core/normalizers.py for how they are filled.
    """

    gps_time = Column(
        DateTime(timezone=True),
        nullable=False,
        doc="UTC time of the fix as reported by the device"
    )

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    speed = Column(
        Float,
        nullable=True,
        doc="Speed in km/h, clamped to [0, 200] (NULL when not reported)"
    )
    heading = Column(Float, nullable=True)
    altitude = Column(Float, nullable=True)

    # Ignition
    ignition_on = Column(Boolean, nullable=True)
    ignition_confidence = Column(Float, nullable=True)
    detection_method = Column(String(20), nullable=False, default="unknown")

    status_text = Column(
        String(500),
        nullable=True,
        doc="Raw vendor status string (kept for re-parsing)"
    )

    total_mileage_m = Column(
        Float,
        nullable=True,
        doc="Vendor cumulative odometer in meters"
    )

    speed_sensor_error = Column(
        Boolean,
        nullable=False,
        default=False,
        doc="Reported speed was outside [0, 200] km/h and got clamped"
    )


class PositionPoint(_CanonicalPositionColumns, Base):
    """
    Immutable position history.

    Responsibilities:
    - One row per (device_id, gps_time); duplicates are ignored on insert
    - Source for trip segmentation and coordinate reconciliation
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "position_history"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    device_id = Column(
        String(64),
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    recorded_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="Insertion time"
    )

    __table_args__ = (
        UniqueConstraint("device_id", "gps_time", name="uq_position_device_time"),
        Index("idx_position_device_time", "device_id", "gps_time"),
        CheckConstraint(_detection_check, name="check_position_detection_method"),
        CheckConstraint(
            "ignition_confidence IS NULL OR (ignition_confidence >= 0 AND ignition_confidence <= 1)",
            name="check_position_confidence_range"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PositionPoint(device_id={self.device_id!r}, gps_time={self.gps_time}, "
            f"lat={self.latitude:.5f}, lon={self.longitude:.5f}, speed={self.speed})>"
        )


class PositionCache(_CanonicalPositionColumns, Base):
    """
    Latest known position per device (last-write-wins on gps_time).

    Real-time consumers read or subscribe to this table; ``updated_at`` is
    bumped on every overwrite.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "position_cache"

    device_id = Column(
        String(64),
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        primary_key=True
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        doc="Time this row was last overwritten"
    )

    __table_args__ = (
        CheckConstraint(_detection_check, name="check_cache_detection_method"),
    )

    def __repr__(self) -> str:
        return f"<PositionCache(device_id={self.device_id!r}, gps_time={self.gps_time})>"
