"""
Road-network lookup module for pyslk.

Given a raw coordinate and a collection of candidate roads, find the road the
vehicle is most likely on and its SLK there. Candidate sets are expected to be
pre-filtered by the caller (a bounding box, a dataset scoped to one region), so
the default lookup is a brute-force scan over every segment of every road.

``RoadNetworkIndex`` adds an R-tree over segment bounding boxes for large
candidate sets. It evaluates the same segments in the same order as the scan, so
both return identical matches.
"""

import math
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

from rtree import index
from shapely import bounds as shapely_bounds

from pyslk.referencing.linear import RoadGeometry, project
from pyslk.utilities.geodesy import METERS_PER_DEG_LAT


class Road(NamedTuple):
    """A road made of one or more SLK-referenced segments."""
    road_id: str
    road_name: str
    segments: Tuple[RoadGeometry, ...]
    network_type: str = ""


class Match(NamedTuple):
    """The best road match for a coordinate."""
    road_id: str
    road_name: str
    slk: float
    distance_m: float
    network_type: str
    lat: float              # Matched point on the road
    lon: float


def _match_from_projection(road, hit):
    return Match(
        road_id=road.road_id,
        road_name=road.road_name,
        slk=hit.slk,
        distance_m=hit.distance_m,
        network_type=road.network_type,
        lat=hit.lat,
        lon=hit.lon,
    )


def find_nearest(
    lat: float,
    lon: float,
    roads: Iterable[Road],
    max_distance_m: float = 500.0,
) -> Optional[Match]:
    """
    Find the closest road segment to a point.

    Parameters
    ----------
    lat, lon : float
        Query point in WGS84 decimal degrees.
    roads : iterable of Road
        Candidate roads. Iteration order matters for ties.
    max_distance_m : float, default=500.0
        Segments farther than this are ignored.

    Returns
    -------
    Match or None
        The match with the smallest perpendicular distance. A later candidate
        replaces the current best only if it is strictly closer. ``None`` means
        the location is unknown, not an error.

    Examples
    --------
    >>> match = find_nearest(-31.9505, 115.8605, roads, max_distance_m=100)
    >>> if match is not None:
    ...     print(f"{match.road_name} ({match.road_id}) SLK {match.slk:.2f}")
    """
    best = None
    best_road = None
    for road in roads:
        for geometry in road.segments:
            hit = project(lat, lon, geometry, max_distance_m)
            if hit is None:
                continue
            if best is None or hit.distance_m < best.distance_m:
                best = hit
                best_road = road

    if best is None:
        return None
    return _match_from_projection(best_road, best)


class RoadNetworkIndex:
    """
    R-tree accelerated version of :func:`find_nearest`.

    The index is built once over the bounding boxes of every segment. A query
    expands the point by ``max_distance_m`` (with a safety margin), collects the
    segments whose boxes intersect, and projects onto them in their original
    road/segment order. Any segment that could be within ``max_distance_m`` is
    in the candidate set, so results match the brute-force scan exactly.

    Parameters
    ----------
    roads : iterable of Road
        Candidate roads. They are read, never modified.

    Notes
    -----
    The index holds no per-query state, so independent queries may run
    concurrently against one instance.
    """

    # Expansion factor applied to the metre-to-degree margin
    _MARGIN_FACTOR = 1.5

    def __init__(self, roads: Iterable[Road]):
        self.roads: List[Road] = list(roads)

        # Flat (road index, segment) list in scan order; rtree ids index into it
        self._entries: List[Tuple[int, RoadGeometry]] = [
            (ri, geometry)
            for ri, road in enumerate(self.roads)
            for geometry in road.segments
        ]

        if self._entries:
            lines = [geometry.to_linestring() for _, geometry in self._entries]
            bounds_array = shapely_bounds(lines)

            def generate_items():
                """Yield (entry_id, bbox, None) tuples for R-tree construction."""
                for i, b in enumerate(bounds_array):
                    yield (i, tuple(float(x) for x in b), None)

            self._index = index.Index(generate_items())
        else:
            self._index = None

    def __len__(self):
        return len(self._entries)

    def _candidate_ids(self, lat: float, lon: float, max_distance_m: float) -> Sequence[int]:
        if not math.isfinite(max_distance_m):
            return range(len(self._entries))

        lat_margin = self._MARGIN_FACTOR * max_distance_m / METERS_PER_DEG_LAT
        far_lat = min(abs(lat) + lat_margin, 90.0)
        cos_far = math.cos(math.radians(far_lat))
        if cos_far <= 1e-6:
            # Box would wrap over a pole
            return range(len(self._entries))
        lon_margin = self._MARGIN_FACTOR * max_distance_m / (METERS_PER_DEG_LAT * cos_far)
        if lon - lon_margin < -180.0 or lon + lon_margin > 180.0:
            # Box would wrap over the antimeridian
            return range(len(self._entries))

        box = (lon - lon_margin, lat - lat_margin, lon + lon_margin, lat + lat_margin)
        return sorted(self._index.intersection(box))

    def find_nearest(
        self,
        lat: float,
        lon: float,
        max_distance_m: float = 500.0,
    ) -> Optional[Match]:
        """Same contract as the module-level :func:`find_nearest`."""
        if self._index is None or not (math.isfinite(lat) and math.isfinite(lon)):
            return None

        best = None
        best_road = None
        for entry_id in self._candidate_ids(lat, lon, max_distance_m):
            ri, geometry = self._entries[entry_id]
            hit = project(lat, lon, geometry, max_distance_m)
            if hit is None:
                continue
            if best is None or hit.distance_m < best.distance_m:
                best = hit
                best_road = self.roads[ri]

        if best is None:
            return None
        return _match_from_projection(best_road, best)
