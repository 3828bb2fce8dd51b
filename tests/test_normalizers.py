from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tripsync.Core.exceptions import MalformedDataError
from tripsync.Schemas.position import VendorRecord
from tripsync.Services.event_handlers import normalize_batch
from tripsync.Services.telemetry_core import (
    coerce_number,
    is_online,
    map_vendor_record,
    normalize_coordinates,
    normalize_record,
    normalize_speed,
    normalize_timestamp,
)

from conftest import NOW, at, gps51_record


def test_coerce_number_handles_vendor_strings() -> None:
    assert coerce_number("3,5") == 3.5
    assert coerce_number(" 12 ") == 12.0
    assert coerce_number("null") is None
    assert coerce_number("n/a") is None
    assert coerce_number(True) is None


@pytest.mark.parametrize(
    ("raw", "expected", "flag"),
    [
        (55.0, 55.0, False),
        (0.0, 0.0, False),
        (250.0, 200.0, True),
        (-4.0, 0.0, True),
        (None, None, False),
    ],
)
def test_normalize_speed_clamps_and_flags(raw, expected, flag) -> None:
    assert normalize_speed(raw) == (expected, flag)


def test_timestamp_epoch_seconds_and_milliseconds_agree() -> None:
    expected = at(8, 0)
    seconds = int(expected.timestamp())
    assert normalize_timestamp(seconds, NOW) == expected
    assert normalize_timestamp(seconds * 1000, NOW) == expected
    assert normalize_timestamp(str(seconds * 1000), NOW) == expected


def test_timestamp_iso_with_zone() -> None:
    assert normalize_timestamp("2025-03-10T08:00:00Z", NOW) == at(8, 0)
    assert normalize_timestamp("2025-03-10T10:00:00+02:00", NOW) == at(8, 0)


def test_naive_vendor_string_is_gmt8() -> None:
    assert normalize_timestamp("2025-03-10 16:00:00", NOW) == at(8, 0)


def test_unparseable_timestamp_is_none() -> None:
    assert normalize_timestamp("yesterday", NOW) is None
    assert normalize_timestamp(None, NOW) is None


def test_timestamp_is_clamped() -> None:
    assert normalize_timestamp("2009-06-01T00:00:00Z", NOW) == datetime(2020, 1, 1, tzinfo=timezone.utc)
    assert normalize_timestamp(NOW + timedelta(days=30), NOW) == NOW + timedelta(days=1)


def test_normalize_coordinates_rejects_null_island_and_out_of_range() -> None:
    assert normalize_coordinates(0.0, 0.0) == (None, None)
    assert normalize_coordinates(91.0, 10.0) == (None, None)
    assert normalize_coordinates(10.0, -181.0) == (None, None)
    assert normalize_coordinates(10.5, -74.8) == (10.5, -74.8)
    assert normalize_coordinates(0.0, -74.8) == (0.0, -74.8)


def test_gps51_record_maps_to_canonical_point() -> None:
    raw = gps51_record("V1", at(8, 5), 10.02, -74.0, 40, "ACC ON", totaldistance=123456)
    point = normalize_record(map_vendor_record("gps51", raw), "DEV1", NOW)

    assert point.device_id == "DEV1"
    assert point.gps_time == at(8, 5)
    assert point.speed == pytest.approx(40.0)
    assert point.ignition_on is True
    assert point.ignition_confidence == 0.9
    assert point.detection_method == "string_parse"
    assert point.total_mileage_m == 123456
    assert point.is_storable


def test_out_of_range_speed_keeps_point_with_flag() -> None:
    record = VendorRecord(vendor_device_id="V1", latitude=10.0, longitude=-74.0,
                          speed_kmh=320.0, gps_time_raw="2025-03-10T08:00:00Z")
    point = normalize_record(record, "DEV1", NOW)
    assert point.speed == 200.0
    assert point.speed_sensor_error is True


def test_gps51_record_without_deviceid_is_malformed() -> None:
    raw = gps51_record("V1", at(8, 0), 10.0, -74.0, 0)
    del raw["deviceid"]
    with pytest.raises(MalformedDataError):
        map_vendor_record("gps51", raw)


def test_gps51_receive_time_is_never_used_as_fix_time() -> None:
    raw = gps51_record("V1", at(8, 0), 10.0, -74.0, 0)
    raw["updatetime"] = raw.pop("gpstime")
    with pytest.raises(MalformedDataError):
        map_vendor_record("gps51", raw)


def test_gps51_ignores_undocumented_coordinate_keys() -> None:
    raw = gps51_record("V1", at(8, 0), 10.0, -74.0, 0)
    raw["lat"] = raw.pop("callat")
    raw["lng"] = raw.pop("callon")
    raw["heading"] = raw.pop("course")

    record = map_vendor_record("gps51", raw)

    assert record.latitude is None
    assert record.longitude is None
    assert record.heading is None


def test_unknown_vendor_is_malformed() -> None:
    with pytest.raises(MalformedDataError):
        map_vendor_record("teltonika", {"deviceid": "V1"})


def test_generic_mapping_rejects_unknown_fields() -> None:
    with pytest.raises(MalformedDataError):
        map_vendor_record("generic", {"vendor_device_id": "V1", "lat": 10.0})


def test_normalize_batch_skips_bad_records() -> None:
    good = gps51_record("V1", at(8, 0), 10.0, -74.0, 0, "ACC ON")
    no_coords = gps51_record("V1", at(8, 1), 0.0, 0.0, 0)
    no_time = {"deviceid": "V1", "callat": 10.0, "callon": -74.0}

    points, rejected = normalize_batch("gps51", "DEV1", [good, no_coords, no_time, "garbage"], NOW)

    assert [p.gps_time for p in points] == [at(8, 0)]
    assert rejected == 3


def test_is_online_threshold() -> None:
    assert is_online(NOW - timedelta(seconds=30), NOW, threshold_s=600)
    assert not is_online(NOW - timedelta(minutes=11), NOW, threshold_s=600)
    assert not is_online(None, NOW)
