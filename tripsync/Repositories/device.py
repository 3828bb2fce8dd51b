# tripsync/Repositories/device.py

"""
Device Repository - Database operations for the vehicle registry.

Usage:
    from tripsync.Repositories import device as device_repo

    device = device_repo.get_device_by_id(db, "358899051234567")
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tripsync.Core.exceptions import DuplicateWriteConflict
from tripsync.Models.device import Device
from tripsync.Schemas.device import Device_create

logger = logging.getLogger(__name__)


def get_all_devices(DB: Session, only_active: bool = False) -> List[Device]:
    query = DB.query(Device)
    if only_active:
        query = query.filter(Device.is_active.is_(True))
    return query.order_by(Device.device_id).all()


def get_device_by_id(DB: Session, device_id: str) -> Optional[Device]:
    return DB.query(Device).filter(Device.device_id == device_id).first()


def get_devices_by_ids(DB: Session, device_ids: List[str]) -> List[Device]:
    """Devices for the given ids, in the order requested; unknown ids are dropped."""
    rows = DB.query(Device).filter(Device.device_id.in_(device_ids)).all()
    by_id = {d.device_id: d for d in rows}
    return [by_id[i] for i in device_ids if i in by_id]


def create_device(DB: Session, device: Device_create) -> Device:
    """
    Register a device.

    Raises:
        DuplicateWriteConflict: device_id already registered
    """
    data = device.model_dump()
    data["vendor_id"] = data.get("vendor_id") or data["device_id"]
    new_device = Device(**data)
    DB.add(new_device)
    try:
        DB.commit()
    except IntegrityError as e:
        DB.rollback()
        raise DuplicateWriteConflict(f"Device {device.device_id} already exists") from e
    DB.refresh(new_device)

    logger.info("[REPO] Device registered: %s (vendor=%s)", new_device.device_id, new_device.vendor)
    return new_device
