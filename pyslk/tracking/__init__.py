"""
Tracking module for the pyslk library.

This module turns a stream of GPS readings into road-referenced tracking state:
current road and SLK, speed against the posted limit, upcoming speed decreases,
and progress towards a destination.
"""

from pyslk.tracking.speed_zones import (
    SpeedZone,
    UpcomingZone,
    make_zone,
    zone_at,
    speed_limit_at,
    upcoming_decrease,
)
from pyslk.tracking.tracker import (
    TrackerConfig,
    DEFAULT_TRACKER_CONFIG,
    Destination,
    TrackingState,
    Tracker,
    track_trajectory,
)

__all__ = [
    # Speed zones
    'SpeedZone',
    'UpcomingZone',
    'make_zone',
    'zone_at',
    'speed_limit_at',
    'upcoming_decrease',
    # Orchestrator
    'TrackerConfig',
    'DEFAULT_TRACKER_CONFIG',
    'Destination',
    'TrackingState',
    'Tracker',
    'track_trajectory',
]
