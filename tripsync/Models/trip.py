# tripsync/Models/trip.py
from sqlalchemy import (
    Column, BigInteger, Integer, String, Float, Boolean, DateTime,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import declared_attr
from tripsync.DB.base_class import Base


class Trip(Base):
    """
    SQLAlchemy model for a segmented trip.

    Responsibilities:
    - Stores trip bounds (time and coordinates) and pre-calculated metrics
    - end_time is NULL while the trip is still open at the end of a sync window
    - Coordinates and distance may be patched by reconciliation; start/end
      times are never rewritten once closed

    Related models:
    - Device (1:N) - one device has many trips
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "trips"

    # ========================================
    # PRIMARY KEY
    # ========================================
    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    # ========================================
    # FOREIGN KEY
    # ========================================
    device_id = Column(
        String(64),
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Device that generated this trip"
    )

    # ========================================
    # TEMPORAL BOUNDS
    # ========================================
    start_time = Column(
        DateTime(timezone=True),
        nullable=False,
        doc="UTC time of the first point of the trip"
    )

    end_time = Column(
        DateTime(timezone=True),
        nullable=True,
        doc="UTC time the trip ended (NULL while open)"
    )

    # ========================================
    # SPATIAL BOUNDS
    # ========================================
    start_latitude = Column(Float, nullable=True)
    start_longitude = Column(Float, nullable=True)
    end_latitude = Column(Float, nullable=True)
    end_longitude = Column(Float, nullable=True)

    # ========================================
    # PRE-CALCULATED METRICS
    # ========================================
    distance_km = Column(
        Float,
        nullable=False,
        default=0.0,
        server_default="0",
        doc="Distance in km (odometer delta when available, haversine otherwise)"
    )

    distance_source = Column(
        String(16),
        nullable=False,
        default="haversine",
        doc="Where distance_km came from: 'odometer', 'haversine' or 'placeholder'"
    )

    duration_seconds = Column(Integer, nullable=True)
    avg_speed = Column(Float, nullable=True, doc="Mean speed of moving samples, km/h")
    max_speed = Column(Float, nullable=True)

    detection_mode = Column(
        String(16),
        nullable=False,
        default="ignition",
        doc="Segmentation mode that produced the trip: 'ignition' or 'speed'"
    )

    continuity_flag = Column(
        Boolean,
        nullable=False,
        default=False,
        doc="Start is far from the previous trip's end (possible data gap)"
    )

    # ========================================
    # AUDIT FIELDS
    # ========================================
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    updated_at = Column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True
    )

    # ========================================
    # TABLE CONSTRAINTS
    # ========================================
    __table_args__ = (
        UniqueConstraint("device_id", "start_time", "end_time", name="uq_trip_device_bounds"),
        Index("idx_trips_device_start_time", "device_id", "start_time"),

        CheckConstraint(
            "end_time IS NULL OR end_time > start_time",
            name="check_trip_time_order"
        ),
        CheckConstraint(
            "distance_km >= 0",
            name="check_trip_distance_non_negative"
        ),
        CheckConstraint(
            "detection_mode IN ('ignition', 'speed')",
            name="check_trip_detection_mode"
        ),
        CheckConstraint(
            "distance_source IN ('odometer', 'haversine', 'placeholder')",
            name="check_trip_distance_source"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Trip(id={self.id}, device_id={self.device_id!r}, "
            f"start={self.start_time}, end={self.end_time}, km={self.distance_km})>"
        )
