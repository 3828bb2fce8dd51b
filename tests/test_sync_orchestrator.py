from __future__ import annotations

from datetime import timedelta

import pytest

from tripsync.Core.config import settings
from tripsync.Core.exceptions import ConfigurationError, RateLimitError
from tripsync.Core.time_utils import ensure_utc
from tripsync.Models.sync_status import SyncStatus
from tripsync.Models.trip import Trip
from tripsync.Repositories import sync_status as status_repo
from tripsync.Schemas.sync import SyncRequest
from tripsync.Services.sync_orchestrator import SyncOrchestrator, split_windows

from conftest import NOW, at, scenario_a_records


def orchestrator_for(session_factory, client, now=NOW, config=None) -> SyncOrchestrator:
    return SyncOrchestrator(session_factory=session_factory, client=client, config=config, clock=lambda: now)


def trips_of(db, device_id="DEV1"):
    db.expire_all()
    return db.query(Trip).filter(Trip.device_id == device_id).order_by(Trip.start_time).all()


def status_of(db, device_id="DEV1"):
    db.expire_all()
    return status_repo.get_status(db, device_id)


def test_split_windows_covers_range_without_overlap() -> None:
    windows = split_windows(at(0, 0), at(0, 0, day=12) + timedelta(hours=5), 24)
    assert windows[0] == (at(0, 0), at(0, 0, day=11))
    assert windows[-1] == (at(0, 0, day=12), at(5, 0, day=12))
    assert all(a[1] == b[0] for a, b in zip(windows, windows[1:]))


def test_first_sync_stores_positions_and_trip(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    fake_vendor.tracks["V1"] = scenario_a_records()

    result = orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1"]))

    assert result.errors == []
    assert result.devices_processed == 1
    assert result.trips_created == 1
    assert result.device_results[0].positions_inserted == 4

    trips = trips_of(db)
    assert [(ensure_utc(t.start_time), ensure_utc(t.end_time)) for t in trips] == [(at(8, 0), at(8, 20))]

    status = status_of(db)
    assert status.sync_status == "idle"
    assert ensure_utc(status.cursor) == at(8, 25)
    assert status.progress_percent == 100.0


def test_rerunning_sync_creates_no_duplicates(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    fake_vendor.tracks["V1"] = scenario_a_records()
    orchestrator = orchestrator_for(session_factory, fake_vendor)

    orchestrator.run(SyncRequest(device_ids=["DEV1"]))
    incremental = orchestrator.run(SyncRequest(device_ids=["DEV1"]))
    full = orchestrator.run(SyncRequest(device_ids=["DEV1"], force_full_sync=True))

    assert incremental.trips_created == 0
    assert full.sync_type == "full"
    assert full.trips_created == 0
    assert full.trips_skipped == 1
    assert len(trips_of(db)) == 1


def test_open_trip_is_stored_then_closed_in_place(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    records = scenario_a_records()
    fake_vendor.tracks["V1"] = records[:2]

    first = orchestrator_for(session_factory, fake_vendor, now=at(8, 12)).run(SyncRequest(device_ids=["DEV1"]))

    assert first.trips_created == 0
    (open_trip,) = trips_of(db)
    assert open_trip.end_time is None
    assert ensure_utc(status_of(db).cursor) < at(8, 0)

    fake_vendor.tracks["V1"] = records
    second = orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1"]))

    assert second.trips_created == 1
    (closed,) = trips_of(db)
    assert closed.id == open_trip.id
    assert ensure_utc(closed.end_time) == at(8, 20)
    assert closed.end_latitude == 10.05


def test_rate_limit_backs_off_device_and_aborts_batch(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    add_device("DEV2", "V2")
    fake_vendor.fail_on["V1"] = RateLimitError("ip limit", code=8902, action="querytracks")

    result = orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1", "DEV2"]))

    assert [r.status for r in result.device_results] == ["backoff"]
    assert {call[0] for call in fake_vendor.track_calls} == {"V1"}
    assert any("Batch aborted" in e for e in result.errors)

    status = status_of(db, "DEV1")
    assert status.sync_status == "backoff"
    assert ensure_utc(status.backoff_until) == NOW + timedelta(seconds=900)
    assert status_of(db, "DEV2") is None


def test_device_in_backoff_is_not_due(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    add_device("DEV2", "V2")
    fake_vendor.fail_on["V1"] = RateLimitError("ip limit", code=8902, action="querytracks")
    orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1"]))
    fake_vendor.fail_on.clear()

    soon = orchestrator_for(session_factory, fake_vendor, now=NOW + timedelta(minutes=5)).run(SyncRequest())
    later = orchestrator_for(session_factory, fake_vendor, now=NOW + timedelta(minutes=20)).run(SyncRequest())

    assert [r.device_id for r in soon.device_results] == ["DEV2"]
    assert sorted(r.device_id for r in later.device_results) == ["DEV1", "DEV2"]


def test_running_device_is_skipped(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    db.add(SyncStatus(device_id="DEV1", sync_status="running", sync_started_at=NOW - timedelta(minutes=10)))
    db.commit()

    result = orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1"]))

    assert result.device_results[0].status == "skipped"
    assert result.devices_processed == 0
    assert fake_vendor.track_calls == []


def test_stale_running_device_is_reclaimed(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    db.add(SyncStatus(device_id="DEV1", sync_status="running", sync_started_at=NOW - timedelta(hours=2)))
    db.commit()

    result = orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1"]))

    assert result.device_results[0].status == "idle"
    assert status_of(db).sync_status == "idle"


def test_try_acquire_is_exclusive(db, add_device) -> None:
    add_device("DEV1")
    assert status_repo.try_acquire(db, "DEV1", NOW) is True
    assert status_repo.try_acquire(db, "DEV1", NOW) is False
    status_repo.mark_idle(db, "DEV1", NOW)
    assert status_repo.try_acquire(db, "DEV1", NOW) is True


def test_failing_device_does_not_stop_batch(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    add_device("DEV2", "V2")
    blind = scenario_a_records("V1")
    for record in blind:
        del record["speed"]
        del record["strstatus"]
    fake_vendor.tracks["V1"] = blind
    fake_vendor.tracks["V2"] = scenario_a_records("V2")

    result = orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1", "DEV2"]))

    assert [r.status for r in result.device_results] == ["error", "idle"]
    assert result.trips_created == 1
    assert any(e.startswith("DEV1: SegmentationError") for e in result.errors)

    status = status_of(db, "DEV1")
    assert status.sync_status == "error"
    assert "SegmentationError" in status.last_error
    assert status.cursor is None


def test_unknown_device_is_reported_without_vendor_call(session_factory) -> None:
    orchestrator = SyncOrchestrator(session_factory=session_factory, client=None, clock=lambda: NOW)

    result = orchestrator.run(SyncRequest(device_ids=["NOPE"]))

    assert result.errors == ["NOPE: unknown device"]
    assert result.devices_processed == 0


def test_missing_vendor_configuration_surfaces(session_factory, add_device) -> None:
    add_device("DEV1", "V1")
    orchestrator = SyncOrchestrator(session_factory=session_factory, client=None, clock=lambda: NOW)

    with pytest.raises(ConfigurationError):
        orchestrator.run(SyncRequest(device_ids=["DEV1"]))


def test_reset_returns_device_to_idle(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    fake_vendor.fail_on["V1"] = RateLimitError("ip limit", code=8902, action="querytracks")
    orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1"]))

    status = status_repo.reset_sync_status(db, "DEV1")

    assert status.sync_status == "idle"
    assert status.backoff_until is None
    assert status_repo.get_due_device_ids(db, NOW) == ["DEV1"]


def test_full_resync_with_window_boundary_inside_stored_trip(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    fake_vendor.tracks["V1"] = scenario_a_records()
    orchestrator_for(session_factory, fake_vendor, now=at(7, 0, day=11)).run(SyncRequest(device_ids=["DEV1"]))

    # 30 days back from 08:03 puts a window boundary at 03-10 08:03, mid-trip
    full = orchestrator_for(session_factory, fake_vendor, now=at(8, 3, day=11)).run(
        SyncRequest(device_ids=["DEV1"], force_full_sync=True)
    )

    assert full.errors == []
    assert full.trips_created == 0
    assert [(ensure_utc(t.start_time), ensure_utc(t.end_time)) for t in trips_of(db)] == [(at(8, 0), at(8, 20))]

    for hour in (9, 10, 11):
        later = orchestrator_for(session_factory, fake_vendor, now=at(hour, 0, day=11)).run(SyncRequest(device_ids=["DEV1"]))
        assert later.errors == []

    status = status_of(db)
    assert status.sync_status == "idle"
    assert ensure_utc(status.cursor) == at(8, 25)
    assert len(trips_of(db)) == 1


def test_full_resync_with_lookback_inside_stored_trip(db, session_factory, add_device, fake_vendor) -> None:
    add_device("DEV1", "V1")
    fake_vendor.tracks["V1"] = scenario_a_records()
    one_day = settings.model_copy(update={"SYNC_FIRST_LOOKBACK_DAYS": 1})
    orchestrator_for(session_factory, fake_vendor, config=one_day).run(SyncRequest(device_ids=["DEV1"]))

    # lookback starts at 03-10 08:03, three minutes into the stored trip
    full = orchestrator_for(session_factory, fake_vendor, now=at(8, 3, day=11), config=one_day).run(
        SyncRequest(device_ids=["DEV1"], force_full_sync=True)
    )

    assert full.errors == []
    assert full.trips_created == 0
    (trip,) = trips_of(db)
    assert (ensure_utc(trip.start_time), ensure_utc(trip.end_time)) == (at(8, 0), at(8, 20))
    assert trip.distance_km == pytest.approx(5.56, abs=0.01)


def test_rate_limit_mid_batch_keeps_earlier_device_results(db, session_factory, add_device, fake_vendor) -> None:
    for device_id, vendor_id in (("DEV1", "V1"), ("DEV2", "V2"), ("DEV3", "V3")):
        add_device(device_id, vendor_id)
    fake_vendor.tracks["V1"] = scenario_a_records("V1")
    fake_vendor.tracks["V3"] = scenario_a_records("V3")
    fake_vendor.fail_on["V2"] = RateLimitError("ip limit", code=8902, action="querytracks")

    result = orchestrator_for(session_factory, fake_vendor).run(SyncRequest(device_ids=["DEV1", "DEV2", "DEV3"]))

    assert [(r.device_id, r.status) for r in result.device_results] == [("DEV1", "idle"), ("DEV2", "backoff")]
    assert result.trips_created == 1
    assert "V3" not in {call[0] for call in fake_vendor.track_calls}

    assert len(trips_of(db, "DEV1")) == 1
    first = status_of(db, "DEV1")
    assert first.sync_status == "idle"
    assert ensure_utc(first.cursor) == at(8, 25)
    assert status_of(db, "DEV2").sync_status == "backoff"
    assert status_of(db, "DEV3") is None
    assert trips_of(db, "DEV3") == []
