# tests/conftest.py
import math

import pytest

from pyslk.filtering import GpsReading
from pyslk.referencing import Road, RoadGeometry
from pyslk.utilities.geodesy import EARTH_RADIUS_M

# Perth CBD
LAT0 = -31.95
LON0 = 115.86

# Great-circle metres per degree along a meridian
M_PER_DEG = EARTH_RADIUS_M * math.pi / 180.0


def north_of(lat, metres):
    """Latitude ``metres`` north of ``lat`` along a meridian."""
    return lat + metres / M_PER_DEG


def east_of(lat, lon, metres):
    """Longitude ``metres`` east of ``lon`` along the parallel at ``lat``."""
    return lon + metres / (M_PER_DEG * math.cos(math.radians(lat)))


def reading_at(metres, t_s, speed=15.0, heading=0.0, accuracy=5.0, east_m=0.0):
    """A reading ``metres`` north of the origin at time ``t_s`` seconds."""
    lat = north_of(LAT0, metres)
    lon = east_of(lat, LON0, east_m) if east_m else LON0
    return GpsReading(lat, lon, t_s * 1000.0, speed=speed, heading=heading, accuracy=accuracy)


def make_road(road_id, coords, start_slk, end_slk, road_name="", network_type=""):
    return Road(road_id, road_name or road_id,
                (RoadGeometry.from_span(coords, start_slk, end_slk),), network_type)


@pytest.fixture
def meridian_geometry():
    """Straight 1000 m road due north from the origin, SLK 0-1000 (metres)."""
    return RoadGeometry.from_span([(LAT0, LON0), (north_of(LAT0, 1000.0), LON0)], 0.0, 1000.0)


@pytest.fixture
def bent_geometry():
    """Three-leg road: north 400 m, east 300 m, north 300 m, with a duplicate vertex."""
    a = (LAT0, LON0)
    b = (north_of(LAT0, 400.0), LON0)
    c = (b[0], east_of(b[0], LON0, 300.0))
    d = (north_of(c[0], 300.0), c[1])
    return RoadGeometry.from_span([a, b, b, c, d], 10.0, 11.0)


@pytest.fixture
def highway():
    """Road H1: 1 km due north from the origin, SLK 0.0-1.0 km."""
    return make_road("H1", [(LAT0, LON0), (north_of(LAT0, 1000.0), LON0)], 0.0, 1.0,
                     road_name="Test Highway", network_type="State Road")


@pytest.fixture
def side_road():
    """Road S2 parallel to H1, 200 m to the east."""
    lon = east_of(LAT0, LON0, 200.0)
    return make_road("S2", [(LAT0, lon), (north_of(LAT0, 1000.0), lon)], 5.0, 6.0,
                     road_name="Side Road", network_type="Local Road")
