from __future__ import annotations

import pytest

from tripsync.Services.telemetry_core.ignition import (
    IgnitionReading,
    parse_acc_text,
    resolve_ignition,
    score_status_bits,
)

ACC = 1
EXT_ACC = 1 << 16


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Moving,ACC ON,GPS fixed", True),
        ("acc:on", True),
        ("ACC_OFF,parked", False),
        ("ACC开,行驶", True),
        ("ACC关,静止", False),
        ("ACC ON,ACC OFF", False),
        ("GPS fixed", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_acc_text(text, expected) -> None:
    assert parse_acc_text(text) is expected


def test_score_status_bits_weights() -> None:
    assert score_status_bits(ACC, 0) == 0.6
    assert score_status_bits(ACC | EXT_ACC, 0) == 0.8
    assert score_status_bits(ACC | EXT_ACC, 10) == 1.0
    assert score_status_bits(EXT_ACC, 10) == 0.4
    assert score_status_bits(0, 50) == 0.2
    assert score_status_bits(None, 50) == 0.0


def test_text_wins_over_status_bits() -> None:
    reading = resolve_ignition("ACC OFF", ACC | EXT_ACC, 60)
    assert reading == IgnitionReading(False, 0.9, "string_parse")


def test_status_bits_above_threshold() -> None:
    reading = resolve_ignition(None, ACC, 0)
    assert reading == IgnitionReading(True, 0.6, "status_bit")


def test_status_bits_below_threshold_fall_back_to_speed() -> None:
    reading = resolve_ignition(None, EXT_ACC, 10)
    assert reading == IgnitionReading(True, 0.4, "speed_inference")


@pytest.mark.parametrize(
    ("speed", "expected"),
    [
        (12.0, IgnitionReading(True, 0.4, "speed_inference")),
        (3.0, IgnitionReading(False, 0.5, "speed_inference")),
        (0.0, IgnitionReading(False, 0.5, "speed_inference")),
        (4.0, IgnitionReading(None, 0.0, "unknown")),
        (None, IgnitionReading(None, 0.0, "unknown")),
    ],
)
def test_speed_inference(speed, expected) -> None:
    assert resolve_ignition(None, None, speed) == expected


def test_resolution_is_deterministic() -> None:
    inputs = ("Moving", ACC | EXT_ACC, 7.5)
    assert len({resolve_ignition(*inputs) for _ in range(5)}) == 1
