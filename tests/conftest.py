from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
for _name in ("VENDOR_BASE_URL", "VENDOR_USERNAME", "VENDOR_PASSWORD", "SCHEDULER_ENABLED"):
    os.environ.pop(_name, None)

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from tripsync.DB.database import create_all_tables
from tripsync.DB.session import build_engine
from tripsync.Models.device import Device
from tripsync.Schemas.position import CanonicalPoint
from tripsync.Services.telemetry_core import resolve_ignition

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'tripsync.db'}")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def add_device(db):
    def _add(device_id: str, vendor_id: Optional[str] = None, vendor: str = "gps51") -> Device:
        device = Device(device_id=device_id, vendor_id=vendor_id or device_id, vendor=vendor, is_active=True)
        db.add(device)
        db.commit()
        return device

    return _add


def at(hour: int, minute: int = 0, second: int = 0, day: int = 10) -> datetime:
    return datetime(2025, 3, day, hour, minute, second, tzinfo=timezone.utc)


def point(
    gps_time: datetime,
    lat: float,
    lon: float,
    speed: Optional[float],
    status_text: Optional[str] = None,
    status_bits: Optional[int] = None,
    mileage_m: Optional[float] = None,
    device_id: str = "DEV1",
) -> CanonicalPoint:
    """Canonical point with ignition resolved the same way the normalizer does."""
    reading = resolve_ignition(status_text, status_bits, speed)
    return CanonicalPoint(
        device_id=device_id,
        gps_time=gps_time,
        latitude=lat,
        longitude=lon,
        speed=speed,
        ignition_on=reading.ignition_on,
        ignition_confidence=reading.confidence,
        detection_method=reading.method,
        status_text=status_text,
        total_mileage_m=mileage_m,
    )


def gps51_record(
    vendor_id: str,
    gps_time: datetime,
    lat: float,
    lon: float,
    speed_kmh: float,
    strstatus: Optional[str] = None,
    totaldistance: Optional[float] = None,
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "deviceid": vendor_id,
        "gpstime": int(gps_time.timestamp() * 1000),
        "callat": lat,
        "callon": lon,
        "speed": speed_kmh * 1000,
        "course": 90,
    }
    if strstatus is not None:
        record["strstatus"] = strstatus
    if totaldistance is not None:
        record["totaldistance"] = totaldistance
    return record


class FakeGps51:
    """In-memory stand-in for Gps51Client: serves track records by time window."""

    def __init__(self, tracks: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tracks: Dict[str, List[Dict[str, Any]]] = tracks or {}
        self.track_calls: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}

    def last_positions(self, vendor_ids: List[str]) -> List[Dict[str, Any]]:
        latest = []
        for vendor_id in vendor_ids:
            records = self.tracks.get(vendor_id) or []
            if records:
                latest.append(max(records, key=lambda r: r["gpstime"]))
        return latest

    def query_track(self, vendor_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        self.track_calls.append((vendor_id, start, end))
        if vendor_id in self.fail_on:
            raise self.fail_on[vendor_id]
        lo = start.timestamp() * 1000
        hi = end.timestamp() * 1000
        return [r for r in self.tracks.get(vendor_id, []) if lo <= r["gpstime"] < hi]


@pytest.fixture
def fake_vendor() -> FakeGps51:
    return FakeGps51()


def scenario_a_records(vendor_id: str = "V1") -> List[Dict[str, Any]]:
    """ACC on at 08:00, moving at 08:05, off at 08:20 and still off at 08:25."""
    return [
        gps51_record(vendor_id, at(8, 0), 10.00, -74.0, 0, "ACC ON"),
        gps51_record(vendor_id, at(8, 5), 10.02, -74.0, 40, "ACC ON"),
        gps51_record(vendor_id, at(8, 20), 10.05, -74.0, 0, "ACC OFF"),
        gps51_record(vendor_id, at(8, 25), 10.05, -74.0, 0, "ACC OFF"),
    ]


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)
