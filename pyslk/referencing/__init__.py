"""
Referencing module for the pyslk library.

This module converts between coordinates and SLK (distance-along-road) values on
single road polylines, and finds the nearest road in a road collection.
"""

from pyslk.referencing.linear import (
    Vertex,
    RoadGeometry,
    Projection,
    LocatedPoint,
    project,
    locate,
)
from pyslk.referencing.network import (
    Road,
    Match,
    find_nearest,
    RoadNetworkIndex,
)

__all__ = [
    # Linear referencing
    'Vertex',
    'RoadGeometry',
    'Projection',
    'LocatedPoint',
    'project',
    'locate',
    # Road network lookup
    'Road',
    'Match',
    'find_nearest',
    'RoadNetworkIndex',
]
