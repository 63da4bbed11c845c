# tests/test_tracker.py
import math

import numpy as np
import pandas as pd
import polars as pl
import pytest

from pyslk.filtering import GpsReading
from pyslk.referencing import RoadNetworkIndex
from pyslk.tracking import (
    Destination,
    SpeedZone,
    Tracker,
    TrackerConfig,
    track_trajectory,
)

from conftest import LAT0, LON0, north_of, reading_at

EVERY_READING = TrackerConfig(update_interval_s=0.0)


@pytest.fixture
def roads(highway, side_road):
    return [highway, side_road]


def _run(tracker, readings):
    tracker.start()
    return [tracker.process(r) for r in readings]


# ========== Configuration ==========

@pytest.mark.parametrize(
    "field, value",
    [("slk_unit_m", 0.0), ("update_interval_s", -1.0),
     ("moving_speed_kmh", math.nan), ("road_match_distance_m", "500")],
)
def test_config_rejects_invalid_values(field, value):
    with pytest.raises(ValueError):
        TrackerConfig(**{field: value})


def test_filter_config_follows_tracker_config(roads):
    tracker = Tracker(roads, TrackerConfig(max_prediction_time_s=12.0, road_constraint=False))
    assert tracker.filter.config.max_prediction_time_s == 12.0
    assert tracker.filter.config.road_constraint_enabled is False


# ========== Session Control ==========

def test_stopped_tracker_ignores_readings(roads):
    tracker = Tracker(roads, EVERY_READING)
    assert tracker.process(reading_at(100.0, 0.0)) is None

    tracker.start()
    state = tracker.process(reading_at(100.0, 0.0))
    assert state is not None
    tracker.stop()
    assert tracker.filter.state is None
    assert tracker.prediction_info() is None
    assert tracker.process(reading_at(115.0, 1.0)) is None
    assert tracker.last_state == state


def test_restart_after_stop_starts_a_fresh_estimate(roads):
    tracker = Tracker(roads, EVERY_READING)
    tracker.start()
    tracker.process(reading_at(100.0, 0.0))
    tracker.process(reading_at(115.0, 1.0))
    tracker.stop()

    tracker.start()
    state = tracker.process(reading_at(600.0, 60.0))
    assert state.direction is None
    assert tracker.filter.state.last_timestamp_ms == 60_000
    assert state.lat == pytest.approx(north_of(LAT0, 600.0), abs=1e-9)


def test_reset_clears_filter_and_history(roads):
    tracker = Tracker(roads, EVERY_READING)
    _run(tracker, [reading_at(100.0, 0.0), reading_at(115.0, 1.0)])
    tracker.reset()
    assert tracker.is_tracking
    assert tracker.last_state is None
    assert tracker.filter.state is None
    assert tracker.prediction_info() is None


# ========== Road Lookup ==========

def test_process_reports_road_and_slk(roads):
    tracker = Tracker(roads, EVERY_READING)
    state = _run(tracker, [reading_at(450.0, 0.0)])[0]

    assert state.road.road_id == "H1"
    assert state.road.road_name == "Test Highway"
    assert state.slk == pytest.approx(0.45, abs=1e-4)
    assert state.calibrated_slk == state.slk
    assert state.speed_kmh == pytest.approx(54.0, abs=0.1)
    assert state.speed_limit == 100
    assert state.confidence == "high"
    assert not state.is_predicted
    assert tracker.prediction_info().can_predict


def test_index_gives_same_result_as_scan(roads):
    readings = [reading_at(15.0 * i, float(i)) for i in range(1, 6)]
    scanned = _run(Tracker(roads, EVERY_READING), readings)
    indexed = _run(Tracker(roads, EVERY_READING, index=RoadNetworkIndex(roads)), readings)
    assert [s.slk for s in scanned] == [s.slk for s in indexed]


def test_no_road_nearby(roads):
    tracker = Tracker(roads, EVERY_READING)
    state = _run(tracker, [GpsReading(LAT0 + 1.0, LON0, 0, speed=10.0, heading=0.0, accuracy=5.0)])[0]
    assert state.road is None
    assert state.slk is None
    assert state.calibrated_slk is None
    assert state.speed_limit == 100
    assert state.upcoming_zone is None


def test_road_lookup_is_throttled(roads):
    tracker = Tracker(roads, TrackerConfig(update_interval_s=10.0))
    states = _run(tracker, [reading_at(15.0, 1.0), reading_at(30.0, 2.0), reading_at(165.0, 11.0)])
    assert states[1].slk == states[0].slk
    assert states[2].slk > states[0].slk


def test_road_constraint_snaps_predicted_position(roads):
    tracker = Tracker(roads, EVERY_READING)
    tracker.start()
    first = tracker.process(reading_at(500.0, 0.0, speed=0.0, east_m=20.0))
    assert first.lon > LON0

    predicted = tracker.process(GpsReading(LAT0, LON0, 1000))
    assert predicted.is_predicted
    assert predicted.lon == LON0
    assert tracker.filter.state.lon == LON0


def test_road_constraint_can_be_disabled(roads):
    tracker = Tracker(roads, EVERY_READING.replace(road_constraint=False))
    tracker.start()
    tracker.process(reading_at(500.0, 0.0, speed=0.0, east_m=20.0))
    predicted = tracker.process(GpsReading(LAT0, LON0, 1000))
    assert predicted.is_predicted
    assert predicted.lon > LON0


# ========== Speed ==========

def test_stationary_speed_snaps_to_zero(roads):
    tracker = Tracker(roads, EVERY_READING)
    state = _run(tracker, [reading_at(100.0, 0.0, speed=0.5)])[0]
    assert state.speed_kmh == 0.0


def test_raw_mode_derives_speed_and_heading(roads):
    tracker = Tracker(roads, EVERY_READING.replace(ekf_enabled=False))
    states = _run(tracker, [
        GpsReading(LAT0, LON0, 0, accuracy=5.0),
        GpsReading(north_of(LAT0, 15.0), LON0, 1000, accuracy=5.0),
    ])

    assert states[0].speed_kmh == 0.0
    assert states[1].filter_output is None
    assert states[1].speed_kmh == pytest.approx(54.0, rel=1e-6)
    assert states[1].heading == pytest.approx(0.0, abs=1e-6)
    assert states[1].slk == pytest.approx(0.015, abs=1e-6)
    assert states[1].confidence == "high"
    assert tracker.prediction_info() is None


def test_raw_mode_uses_receiver_speed_and_clamps(roads):
    tracker = Tracker(roads, EVERY_READING.replace(ekf_enabled=False))
    state = _run(tracker, [reading_at(100.0, 0.0, speed=1000.0, heading=370.0)])[0]
    assert state.speed_kmh == 500.0
    assert state.heading == pytest.approx(10.0)


# ========== Destination ==========

def test_direction_towards_destination(roads):
    tracker = Tracker(roads, EVERY_READING, destination=Destination("H1", 0.8))
    states = _run(tracker, [reading_at(15.0 * i, float(i)) for i in range(1, 5)])

    assert states[0].direction is None
    assert [s.direction for s in states[1:]] == ["towards"] * 3

    last = states[-1]
    assert last.distance_to_destination == pytest.approx(0.8 - last.slk)
    assert last.distance_to_destination > 0
    assert last.eta_s == pytest.approx(
        last.distance_to_destination * 1000.0 / (last.speed_kmh / 3.6))


def test_direction_away_from_destination(roads):
    tracker = Tracker(roads, EVERY_READING, destination=Destination("H1", 0.8))
    states = _run(tracker, [reading_at(300.0 - 15.0 * i, float(i), heading=180.0)
                            for i in range(1, 5)])
    assert [s.direction for s in states[1:]] == ["away"] * 3
    assert states[-1].distance_to_destination > states[1].distance_to_destination


def test_direction_static_when_stopped(roads):
    tracker = Tracker(roads, EVERY_READING, destination=Destination("H1", 0.8))
    states = _run(tracker, [reading_at(500.0, float(t), speed=0.0) for t in range(3)])
    assert [s.direction for s in states] == ["static"] * 3
    assert all(s.eta_s is None for s in states)
    assert states[-1].distance_to_destination == pytest.approx(0.3, abs=1e-3)


def test_destination_behind_gives_negative_distance(roads):
    tracker = Tracker(roads, EVERY_READING, destination=Destination("H1", 0.1))
    state = _run(tracker, [reading_at(500.0, 0.0)])[0]
    assert state.distance_to_destination == pytest.approx(-0.4, abs=1e-3)
    assert state.eta_s == pytest.approx(400.0 / 15.0, rel=1e-2)


def test_destination_on_other_road(roads):
    tracker = Tracker(roads, EVERY_READING, destination=Destination("S2", 5.5))
    states = _run(tracker, [reading_at(15.0 * i, float(i)) for i in range(1, 4)])
    assert all(s.distance_to_destination is None for s in states)
    assert all(s.direction is None for s in states)
    assert all(s.eta_s is None for s in states)


def test_set_destination(roads):
    tracker = Tracker(roads, EVERY_READING)
    state = _run(tracker, [reading_at(100.0, 0.0)])[0]
    assert state.distance_to_destination is None

    tracker.set_destination(Destination("H1", 0.0))
    state = tracker.process(reading_at(115.0, 1.0))
    assert state.distance_to_destination < 0


# ========== Speed Zones ==========

def test_speed_zone_limit_and_upcoming_decrease(roads):
    zones = {"H1": [SpeedZone("H1", 0.5, 1.0, 60), SpeedZone("H1", 0.0, 0.5, 110)]}
    tracker = Tracker(roads, EVERY_READING, speed_zones=zones)
    state = _run(tracker, [reading_at(450.0, 0.0)])[0]

    assert state.speed_limit == 110
    assert not state.is_speeding
    assert state.upcoming_zone is not None
    assert state.upcoming_zone.zone.speed_limit == 60
    assert state.upcoming_zone.distance_m == pytest.approx(50.0, abs=0.5)


def test_speeding_flag(roads):
    tracker = Tracker(roads, EVERY_READING, speed_zones=[SpeedZone("H1", 0.0, 1.0, 40)])
    state = _run(tracker, [reading_at(450.0, 0.0)])[0]
    assert state.speed_limit == 40
    assert state.is_speeding


def test_set_speed_zones(roads):
    tracker = Tracker(roads, EVERY_READING)
    tracker.set_speed_zones("H1", [SpeedZone("H1", 0.0, 1.0, 80)])
    assert tracker.speed_zones("H1")[0].speed_limit == 80
    assert tracker.speed_zones("S2") == []
    state = _run(tracker, [reading_at(450.0, 0.0)])[0]
    assert state.speed_limit == 80


# ========== Calibration ==========

def test_calibration_offsets_slk(roads):
    tracker = Tracker(roads, EVERY_READING)
    tracker.start()
    assert tracker.calibrate(1.0) is None

    state = tracker.process(reading_at(450.0, 0.0))
    offset = tracker.calibrate(0.5)
    assert offset == pytest.approx(0.5 - state.slk)
    assert tracker.calibrations == {"H1": offset}

    state = tracker.process(reading_at(465.0, 1.0))
    assert state.calibrated_slk == pytest.approx(state.slk + offset)

    tracker.clear_calibration()
    state = tracker.process(reading_at(480.0, 2.0))
    assert state.calibrated_slk == state.slk
    assert tracker.calibrations == {}


def test_calibrate_rejects_non_finite(roads):
    tracker = Tracker(roads, EVERY_READING)
    with pytest.raises(ValueError):
        tracker.calibrate(math.nan)


def test_sessions_are_independent(roads):
    a = Tracker(roads, EVERY_READING)
    b = Tracker(roads, EVERY_READING)
    _run(a, [reading_at(100.0, 0.0)])
    b.start()
    assert b.filter.state is None
    assert a.filter is not b.filter


# ========== Batch Replay ==========

def _drive_frame():
    n = 10
    return pd.DataFrame({
        "lat": [north_of(LAT0, 15.0 * i) for i in range(1, n + 1)],
        "lon": [LON0] * n,
        "time": [i * 1000 for i in range(1, n + 1)],
        "speed": [15.0] * n,
        "heading": [0.0] * n,
        "accuracy": [5.0] * n,
    })


def test_track_trajectory_pandas(roads):
    df = _drive_frame()
    result = track_trajectory(df, roads, speed_col="speed", heading_col="heading",
                              accuracy_col="accuracy", destination=Destination("H1", 0.8))

    assert isinstance(result, pd.DataFrame)
    for col in ("road_id", "slk", "distance_to_destination", "direction",
                "speed_kmh", "speed_limit", "confidence"):
        assert col in result.columns
    assert (result["road_id"] == "H1").all()
    assert result["slk"].is_monotonic_increasing
    assert result["slk"].iloc[-1] == pytest.approx(0.15, abs=0.005)
    assert result["direction"].iloc[-1] == "towards"
    assert (result["speed_limit"] == 100).all()


def test_track_trajectory_polars_with_index(roads):
    df = _drive_frame()
    plain = track_trajectory(df, roads, speed_col="speed", heading_col="heading")
    indexed = track_trajectory(pl.from_pandas(df), roads, speed_col="speed",
                               heading_col="heading", use_index=True, verbose=True)

    assert isinstance(indexed, pl.DataFrame)
    assert np.array_equal(indexed["slk"].to_numpy(), plain["slk"].to_numpy())


def test_track_trajectory_missing_column(roads):
    with pytest.raises(ValueError, match="speed_ms"):
        track_trajectory(_drive_frame(), roads, speed_col="speed_ms")
