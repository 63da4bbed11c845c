# tests/test_road_network.py
import math

import numpy as np
import pytest

from pyslk.utilities import (
    filter_roads_by_bbox,
    parse_speed_limit,
    roads_from_records,
    speed_zones_from_records,
)

from conftest import LAT0, LON0, north_of


def _segment(start_slk, end_slk, metres_from=0.0, metres_to=500.0, lon=LON0):
    return {
        "start_slk": start_slk,
        "end_slk": end_slk,
        "geometry": [[north_of(LAT0, metres_from), lon], [north_of(LAT0, metres_to), lon]],
    }


def test_roads_from_records_builds_segments():
    roads = roads_from_records([{
        "road_id": "H005",
        "road_name": "Great Eastern Hwy",
        "network_type": "State Road",
        "segments": [_segment(0.0, 0.5), _segment(0.5, 1.0, 500.0, 1000.0)],
    }])

    assert len(roads) == 1
    road = roads[0]
    assert road.road_id == "H005"
    assert road.road_name == "Great Eastern Hwy"
    assert road.network_type == "State Road"
    assert [s.start_slk for s in road.segments] == [0.0, 0.5]
    assert road.segments[1].end_slk == 1.0


def test_roads_from_records_merges_inline_segments():
    records = [
        {"road_id": "H005", "road_name": "Great Eastern Hwy", **_segment(0.0, 0.5)},
        {"road_id": "M010", "road_name": "Other Road", **_segment(3.0, 3.5, lon=LON0 + 0.01)},
        {"road_id": "H005", "road_name": "ignored", **_segment(0.5, 1.0, 500.0, 1000.0)},
    ]
    roads = roads_from_records(records)

    assert [r.road_id for r in roads] == ["H005", "M010"]
    assert roads[0].road_name == "Great Eastern Hwy"
    assert len(roads[0].segments) == 2
    assert roads[0].network_type == ""


def test_roads_from_records_skips_bad_segments_with_warning():
    good = _segment(0.0, 0.5)
    one_vertex = {"start_slk": 0.5, "end_slk": 1.0, "geometry": [[LAT0, LON0]]}
    reversed_span = _segment(2.0, 1.0)
    missing_slk = {"geometry": good["geometry"]}

    with pytest.warns(UserWarning, match="H005"):
        roads = roads_from_records([{
            "road_id": "H005",
            "road_name": "Great Eastern Hwy",
            "segments": [good, one_vertex, reversed_span, missing_slk],
        }])

    assert len(roads) == 1
    assert len(roads[0].segments) == 1


def test_roads_from_records_drops_road_without_usable_segments():
    with pytest.warns(UserWarning, match="no usable segments"):
        roads = roads_from_records([{
            "road_id": "X1",
            "road_name": "Broken",
            "segments": [{"start_slk": 0.0, "end_slk": 1.0, "geometry": []}],
        }])
    assert roads == []


@pytest.mark.parametrize(
    "value, expected",
    [
        ("110km/h", 110),
        ("60 km/h", 60),
        ("80", 80),
        (70, 70),
        (90.0, 90),
        ("", 100),
        ("unknown", 100),
        (None, 100),
        (math.nan, 100),
        (True, 100),
    ],
)
def test_parse_speed_limit(value, expected):
    assert parse_speed_limit(value) == expected


def test_parse_speed_limit_custom_default():
    assert parse_speed_limit("n/a", default=50) == 50


def test_speed_zones_from_records_sorts_and_skips_reversed():
    records = [
        {"road_id": "H005", "start_slk": 2.0, "end_slk": 3.0, "speed_limit": "60km/h"},
        {"road_id": "H005", "start_slk": 0.0, "end_slk": 2.0, "speed_limit": 110,
         "road_name": "Great Eastern Hwy", "carriageway": "L"},
        {"road_id": "H005", "start_slk": 5.0, "end_slk": 4.0, "speed_limit": 80},
    ]
    with pytest.warns(UserWarning, match="H005"):
        zones = speed_zones_from_records(records)

    assert [z.start_slk for z in zones] == [0.0, 2.0]
    assert [z.speed_limit for z in zones] == [110, 60]
    assert zones[0].road_name == "Great Eastern Hwy"
    assert zones[0].carriageway == "L"


def test_filter_roads_by_bbox(highway, side_road):
    far_lon = LON0 + 1.0
    roads = roads_from_records([{
        "road_id": "FAR", "road_name": "Far Away", **_segment(0.0, 1.0, lon=far_lon),
    }])
    all_roads = [highway, side_road] + roads

    lats = np.array([north_of(LAT0, 100.0), north_of(LAT0, 200.0)])
    lons = np.array([LON0, LON0])
    kept = filter_roads_by_bbox(all_roads, lats, lons, buffer=0.01)
    assert [r.road_id for r in kept] == ["H1", "S2"]

    # A tight box still keeps the road it sits on
    kept = filter_roads_by_bbox(all_roads, lats, lons, buffer=0.0)
    assert [r.road_id for r in kept] == ["H1"]


def test_filter_roads_by_bbox_without_finite_points(highway):
    assert filter_roads_by_bbox([highway], [math.nan], [math.nan]) == []
