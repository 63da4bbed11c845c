"""
Utilities module for the pyslk library.

This module provides geodesy helpers, road and speed-zone record adapters, and
the DataFrame helpers shared by the batch replay functions.
"""

from pyslk.utilities.geodesy import (
    METERS_PER_DEG_LAT,
    EARTH_RADIUS_M,
    meters_per_deg_lon,
    degrees_to_meters,
    meters_to_degrees,
    haversine_distance,
    calculate_bearing,
    calculate_speed_ms,
)
from pyslk.utilities import frames
from pyslk.utilities.road_network import (
    roads_from_records,
    parse_speed_limit,
    speed_zones_from_records,
    filter_roads_by_bbox,
)

__all__ = [
    # Geodesy
    'METERS_PER_DEG_LAT',
    'EARTH_RADIUS_M',
    'meters_per_deg_lon',
    'degrees_to_meters',
    'meters_to_degrees',
    'haversine_distance',
    'calculate_bearing',
    'calculate_speed_ms',
    # Road data
    'roads_from_records',
    'parse_speed_limit',
    'speed_zones_from_records',
    'filter_roads_by_bbox',
    # DataFrame helpers
    'frames',
]
