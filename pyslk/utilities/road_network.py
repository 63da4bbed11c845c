"""
Road network utilities module for pyslk.

This module converts road and speed-zone data from plain records (as delivered by
an offline road store or a JSON road query service) into the immutable types the
linear-referencing and tracking modules work with, and narrows a road collection
down to the area around a trajectory.

Key functionality:
- Building ``Road`` objects from segment records with a declared SLK span
- Parsing posted speed limits such as ``"110km/h"``
- Building sorted ``SpeedZone`` lists from zone records
- Filtering roads by a bounding box around a trajectory

Malformed records are skipped with a warning, never raised: the data belongs to
an external collaborator and one bad segment should not take the whole network
down.
"""

import math
import re
import warnings

import numpy as np
from shapely import bounds as shapely_bounds

from pyslk.referencing.linear import RoadGeometry
from pyslk.referencing.network import Road
from pyslk.tracking.speed_zones import DEFAULT_SPEED_LIMIT, make_zone, sort_zones

_FIRST_INTEGER = re.compile(r"\d+")


def roads_from_records(records):
    """
    Build roads from plain records.

    Parameters
    ----------
    records : iterable of dict
        One dict per road::

            {
                "road_id": "H005",
                "road_name": "Great Eastern Hwy",
                "network_type": "State Road",           # optional
                "segments": [
                    {"start_slk": 0.0, "end_slk": 1.2,
                     "geometry": [[lat, lon], [lat, lon], ...]},
                    ...
                ],
            }

        A record may also carry a single segment inline (``start_slk``,
        ``end_slk`` and ``geometry`` at the top level), which is how the road
        service returns one road per segment.

    Returns
    -------
    list of Road
        Roads in input order. Segment SLK values are assigned proportionally
        along each segment's great-circle length (see
        ``RoadGeometry.from_span``). Records sharing a ``road_id`` are merged
        into one road, keeping the first name and type seen.

    Warns
    -----
    UserWarning
        For every segment that is skipped: fewer than two vertices, non-finite
        coordinates, ``end_slk <= start_slk`` or zero total length. A road left
        with no usable segment is dropped.

    Examples
    --------
    >>> roads = roads_from_records([{
    ...     "road_id": "H005", "road_name": "Great Eastern Hwy",
    ...     "segments": [{"start_slk": 0.0, "end_slk": 1.11,
    ...                   "geometry": [[-31.95, 115.86], [-31.94, 115.86]]}],
    ... }])
    >>> roads[0].segments[0].end_slk
    1.11
    """
    order = []
    merged = {}

    for record in records:
        road_id = str(record.get("road_id", ""))
        segment_records = record.get("segments")
        if segment_records is None:
            segment_records = [record]

        geometries = []
        for seg in segment_records:
            geometry = _segment_from_record(road_id, seg)
            if geometry is not None:
                geometries.append(geometry)

        if road_id not in merged:
            order.append(road_id)
            merged[road_id] = {
                "road_name": str(record.get("road_name") or ""),
                "network_type": str(record.get("network_type") or ""),
                "segments": [],
            }
        merged[road_id]["segments"].extend(geometries)

    roads = []
    for road_id in order:
        entry = merged[road_id]
        if not entry["segments"]:
            warnings.warn(f"Road {road_id!r} has no usable segments and was skipped.", UserWarning)
            continue
        roads.append(Road(
            road_id=road_id,
            road_name=entry["road_name"],
            segments=tuple(entry["segments"]),
            network_type=entry["network_type"],
        ))
    return roads


def _segment_from_record(road_id, seg):
    """RoadGeometry for one segment record, or None (with a warning) if unusable."""
    try:
        coords = [(float(p[0]), float(p[1])) for p in seg.get("geometry") or []]
        start_slk = float(seg.get("start_slk"))
        end_slk = float(seg.get("end_slk"))
    except (TypeError, ValueError, IndexError) as exc:
        warnings.warn(f"Skipping malformed segment on road {road_id!r}: {exc}", UserWarning)
        return None

    if len(coords) < 2:
        warnings.warn(
            f"Skipping segment on road {road_id!r} with {len(coords)} vertex(es); "
            "at least two are required.",
            UserWarning,
        )
        return None

    try:
        return RoadGeometry.from_span(coords, start_slk, end_slk)
    except ValueError as exc:
        warnings.warn(f"Skipping segment on road {road_id!r}: {exc}", UserWarning)
        return None


def parse_speed_limit(value, default=DEFAULT_SPEED_LIMIT):
    """
    Posted speed limit as an integer km/h.

    Numbers pass through (rounded down). Strings are parsed by their first run
    of digits, so ``"110km/h"``, ``"110 km/h"`` and ``"110"`` all give 110.
    Anything else, including an empty string and non-finite numbers, gives
    ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float, np.integer, np.floating)):
        return int(value) if math.isfinite(value) else default
    if isinstance(value, str):
        found = _FIRST_INTEGER.search(value)
        if found:
            return int(found.group())
    return default


def speed_zones_from_records(records):
    """
    Build a sorted speed-zone list from plain records.

    Each record needs ``road_id``, ``start_slk``, ``end_slk`` and
    ``speed_limit`` (number or string such as ``"60km/h"``); ``road_name`` and
    ``carriageway`` are optional. Records with a missing or reversed SLK range
    are skipped with a ``UserWarning``.

    Returns
    -------
    list of SpeedZone
        Sorted by ``start_slk``.
    """
    zones = []
    for record in records:
        road_id = record.get("road_id", "")
        try:
            zone = make_zone(
                road_id,
                record.get("start_slk"),
                record.get("end_slk"),
                parse_speed_limit(record.get("speed_limit")),
                road_name=str(record.get("road_name") or ""),
                carriageway=str(record.get("carriageway") or ""),
            )
        except (TypeError, ValueError) as exc:
            warnings.warn(f"Skipping speed zone on road {road_id!r}: {exc}", UserWarning)
            continue
        zones.append(zone)
    return sort_zones(zones)


def filter_roads_by_bbox(roads, lats, lons, buffer=0.01):
    """
    Keep only roads near a trajectory.

    Parameters
    ----------
    roads : iterable of Road
        Full road collection.
    lats, lons : array-like
        Trajectory coordinates used to build the bounding box. Non-finite
        values are ignored.
    buffer : float, default=0.01
        Buffer added on every side of the box, in degrees (~1.1 km).

    Returns
    -------
    list of Road
        Roads with at least one segment whose bounding box intersects the
        buffered trajectory box, in input order. Empty if the trajectory has no
        finite coordinate.

    Notes
    -----
    This is a rectangular pre-filter for :func:`pyslk.referencing.network.find_nearest`
    and :class:`pyslk.referencing.network.RoadNetworkIndex`; it never drops a
    road that touches the box, so lookups inside the box are unaffected.
    """
    # ========== Calculate Trajectory Bounding Box ==========
    lats = np.asarray(lats, dtype=float)
    lons = np.asarray(lons, dtype=float)
    finite = np.isfinite(lats) & np.isfinite(lons)
    if not np.any(finite):
        return []

    min_lon = lons[finite].min() - buffer
    min_lat = lats[finite].min() - buffer
    max_lon = lons[finite].max() + buffer
    max_lat = lats[finite].max() + buffer

    # ========== Test Segment Bounds ==========
    kept = []
    for road in roads:
        if not road.segments:
            continue
        b = shapely_bounds([geometry.to_linestring() for geometry in road.segments])
        overlaps = (
            (b[:, 0] <= max_lon) & (b[:, 2] >= min_lon) &  # Longitude overlap
            (b[:, 1] <= max_lat) & (b[:, 3] >= min_lat)    # Latitude overlap
        )
        if np.any(overlaps):
            kept.append(road)
    return kept
