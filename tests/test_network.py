# tests/test_network.py
import math

import numpy as np
import pytest

from pyslk.referencing import Road, RoadGeometry, RoadNetworkIndex, find_nearest

from conftest import LAT0, LON0, east_of, make_road, north_of


def test_find_nearest_returns_closest_road(highway, side_road):
    lat = north_of(LAT0, 500.0)

    near_highway = find_nearest(lat, east_of(lat, LON0, 30.0), [highway, side_road])
    assert near_highway.road_id == "H1"
    assert near_highway.road_name == "Test Highway"
    assert near_highway.network_type == "State Road"
    assert near_highway.slk == pytest.approx(0.5, abs=1e-6)
    assert near_highway.distance_m == pytest.approx(30.0, abs=0.01)

    near_side = find_nearest(lat, east_of(lat, LON0, 170.0), [highway, side_road])
    assert near_side.road_id == "S2"
    assert near_side.slk == pytest.approx(5.5, abs=1e-6)
    assert near_side.distance_m == pytest.approx(30.0, abs=0.05)


def test_find_nearest_outside_tolerance_is_none(highway):
    lat = north_of(LAT0, 500.0)
    assert find_nearest(lat, east_of(lat, LON0, 600.0), [highway]) is None
    assert find_nearest(lat, east_of(lat, LON0, 60.0), [highway], max_distance_m=50.0) is None
    assert find_nearest(lat, LON0, []) is None


def test_find_nearest_tie_keeps_first_road(highway):
    twin = highway._replace(road_id="H1-TWIN", road_name="Twin")
    lat = north_of(LAT0, 300.0)
    match = find_nearest(lat, east_of(lat, LON0, 10.0), [highway, twin])
    assert match.road_id == "H1"

    match = find_nearest(lat, east_of(lat, LON0, 10.0), [twin, highway])
    assert match.road_id == "H1-TWIN"


def test_find_nearest_searches_every_segment():
    first = RoadGeometry.from_span([(LAT0, LON0), (north_of(LAT0, 500.0), LON0)], 0.0, 0.5)
    second = RoadGeometry.from_span(
        [(north_of(LAT0, 2000.0), LON0), (north_of(LAT0, 2500.0), LON0)], 2.0, 2.5)
    road = Road("H7", "Split Road", (first, second))

    match = find_nearest(north_of(LAT0, 2250.0), LON0, [road])
    assert match.road_id == "H7"
    assert match.slk == pytest.approx(2.25, abs=1e-6)


def _random_roads(rng, count):
    roads = []
    for k in range(count):
        start_lat = LAT0 + rng.uniform(-0.05, 0.05)
        start_lon = LON0 + rng.uniform(-0.05, 0.05)
        steps = rng.uniform(-0.002, 0.002, size=(int(rng.integers(2, 6)), 2))
        coords = np.cumsum(np.vstack(([start_lat, start_lon], steps)), axis=0)
        start_slk = float(rng.uniform(0.0, 50.0))
        roads.append(make_road(f"R{k}", [tuple(c) for c in coords], start_slk, start_slk + 1.0))
    return roads


def test_index_matches_brute_force():
    rng = np.random.default_rng(42)
    roads = _random_roads(rng, 60)
    idx = RoadNetworkIndex(roads)
    assert len(idx) == 60

    queries_lat = LAT0 + rng.uniform(-0.06, 0.06, 300)
    queries_lon = LON0 + rng.uniform(-0.06, 0.06, 300)
    for max_distance in (50.0, 500.0, 5000.0, math.inf):
        for lat, lon in zip(queries_lat, queries_lon):
            expected = find_nearest(float(lat), float(lon), roads, max_distance)
            assert idx.find_nearest(float(lat), float(lon), max_distance) == expected


def test_index_tie_break_follows_road_order(highway):
    twin = highway._replace(road_id="H1-TWIN")
    idx = RoadNetworkIndex([highway, twin])
    lat = north_of(LAT0, 300.0)
    assert idx.find_nearest(lat, east_of(lat, LON0, 10.0)).road_id == "H1"


def test_empty_index_and_non_finite_query(highway):
    assert RoadNetworkIndex([]).find_nearest(LAT0, LON0) is None
    assert RoadNetworkIndex([highway]).find_nearest(math.nan, LON0) is None


def test_index_does_not_modify_roads(highway, side_road):
    roads = [highway, side_road]
    before = [r.segments[0].lats.copy() for r in roads]
    idx = RoadNetworkIndex(roads)
    idx.find_nearest(north_of(LAT0, 100.0), LON0)
    for road, lats in zip(roads, before):
        assert np.array_equal(road.segments[0].lats, lats)
