"""
pyslk - A Python library for GPS tracking in road terms.

pyslk turns raw GPS readings into road-referenced positions: a smoothed
position from a Kalman filter, the road the vehicle is on, its SLK
(straight-line kilometre, distance along the road), the posted speed limit and
progress towards a destination.

Components
----------
- **filtering**: Kalman filtering of GPS readings (smoothing, outage prediction, confidence)
- **referencing**: Linear referencing (coordinate <-> SLK) and nearest-road lookup
- **tracking**: Tracking orchestrator (destination distance/direction/ETA, speed zones, calibration)
- **utilities**: Utility functions (geodesy, road and speed-zone record adapters)

Quick Start
-----------
```python
import pyslk as slk

# Build roads from offline records
roads = slk.utilities.roads_from_records(road_records)
zones = slk.utilities.speed_zones_from_records(zone_records)

# Track a live stream
tracker = slk.tracking.Tracker(
    roads,
    destination=slk.tracking.Destination("H005", 12.5),
    speed_zones=zones,
)
tracker.start()
state = tracker.process(slk.filtering.GpsReading(lat, lon, timestamp_ms,
                                                 speed=speed, heading=heading,
                                                 accuracy=accuracy))
print(state.road.road_name, state.slk, state.direction, state.eta_s)

# Or replay a recorded trajectory
tracked = slk.tracking.track_trajectory(df, roads, destination=slk.tracking.Destination("H005", 12.5))
```
"""

from pyslk._version import __version__, __version_info__
from pyslk import utilities, referencing, filtering, tracking

__all__ = [
    '__version__',
    '__version_info__',
    'filtering',
    'referencing',
    'tracking',
    'utilities',
]
