# tripsync/Models/device.py

"""
Device Model - Vehicle Registry

Registry of vehicles whose telemetry is pulled from the vendor platform.

Database Table: devices
Primary Key: device_id (String)

Usage:
    from tripsync.Models.device import Device

    device = Device(device_id="358899051234567", vendor_id="358899051234567",
                    name="Delivery Van 3")
    db.add(device)
    db.commit()
"""

from sqlalchemy.orm import declared_attr
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.sql import func
from tripsync.DB.base_class import Base


class Device(Base):
    """
    SQLAlchemy model representing a tracked vehicle.

    Schema:
    - device_id (PK): Internal identifier used by every other table
    - vendor_id: Identifier on the vendor platform (GPS51 deviceid)
    - vendor: Key of the vendor mapping used to decode its records
    - name: Display name
    - is_active: Inactive devices are skipped by "all due" sync runs

    Relationships:
    - One PositionCache row, many PositionPoint rows, many Trip rows,
      one SyncStatus row
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "devices"

    # ============================================================
    # Primary Key
    # ============================================================
    device_id = Column(
        String(64),
        primary_key=True,
        doc="Internal device identifier"
    )

    # ============================================================
    # Vendor Binding
    # ============================================================
    vendor_id = Column(
        String(64),
        nullable=False,
        index=True,
        doc="Device identifier on the vendor platform"
    )

    vendor = Column(
        String(32),
        nullable=False,
        default="gps51",
        server_default="gps51",
        doc="Vendor mapping key (see telemetry_core.vendor_mapping)"
    )

    # ============================================================
    # Metadata
    # ============================================================
    name = Column(
        String(200),
        nullable=True,
        doc="Human-readable name"
    )

    is_active = Column(
        Boolean,
        default=True,
        nullable=False,
        doc="Whether the device takes part in scheduled syncs"
    )

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Device(device_id={self.device_id!r}, vendor={self.vendor!r}, "
            f"is_active={self.is_active})>"
        )
