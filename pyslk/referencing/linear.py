"""
Linear-referencing module for pyslk.

This module converts between 2-D positions and SLK (straight-line kilometre,
or more generally distance-along-road) coordinates on a single road polyline.

- ``project``: snap a latitude/longitude onto the nearest point of a polyline and
  return the interpolated SLK plus the perpendicular offset in metres.
- ``locate``: the inverse, turning an SLK value into a latitude/longitude on the
  polyline.

Road geometry is owned by the caller (an offline road dataset, a live query
service); ``RoadGeometry`` only validates and wraps it, it is never mutated.
"""

import math
from typing import Iterable, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import LineString

from pyslk.utilities.geodesy import haversine_distance

# cos(latitude) floor for the local plane, mirrors pyslk.utilities.geodesy
_MIN_COS_LAT = 1e-12


class Vertex(NamedTuple):
    """A polyline vertex tagged with its SLK value."""
    lat: float
    lon: float
    slk: float


class Projection(NamedTuple):
    """Result of projecting a point onto a polyline."""
    lat: float              # Projected point on the polyline
    lon: float
    slk: float              # Interpolated distance-along-road value
    distance_m: float       # Great-circle distance from the query point
    segment_index: int      # Index of the winning segment's first vertex
    t: float                # Position along the winning segment, in [0, 1]


class LocatedPoint(NamedTuple):
    """Result of locating an SLK value on a polyline."""
    lat: float
    lon: float
    slk: float              # The SLK actually located (clamped when out of range)
    out_of_range: bool


class RoadGeometry:
    """
    An ordered polyline whose vertices carry SLK values.

    Parameters
    ----------
    vertices : iterable of Vertex or (lat, lon, slk) tuples
        At least two vertices. SLK must be non-decreasing along the sequence and
        every coordinate must be finite. Consecutive duplicate vertices are
        allowed; the zero-length segments they form are skipped by ``project``.
        Any segment with non-zero length must have a positive SLK span.

    Raises
    ------
    ValueError
        If fewer than two vertices are given, a coordinate is not finite, the
        SLK sequence decreases, or a segment of non-zero length has no SLK span.

    Notes
    -----
    Cumulative great-circle arc lengths are computed once at construction and
    exposed as ``cumulative_m``. The arrays returned by the properties are
    read-only views.
    """

    __slots__ = ("_lats", "_lons", "_slks", "_cumulative")

    def __init__(self, vertices: Iterable[Sequence[float]]):
        rows = [tuple(v) for v in vertices]
        if len(rows) < 2:
            raise ValueError("RoadGeometry requires at least two vertices.")
        if any(len(r) != 3 for r in rows):
            raise ValueError("Each vertex must be a (lat, lon, slk) triple.")

        arr = np.asarray(rows, dtype=float)
        if not np.all(np.isfinite(arr)):
            raise ValueError("RoadGeometry vertices must have finite lat, lon and slk.")
        slk_steps = np.diff(arr[:, 2])
        if np.any(slk_steps < 0):
            raise ValueError("RoadGeometry SLK values must be non-decreasing.")

        self._lats = arr[:, 0].copy()
        self._lons = arr[:, 1].copy()
        self._slks = arr[:, 2].copy()

        # Cumulative arc length (metres) at each vertex
        seg_lengths = haversine_distance(
            self._lats[:-1], self._lons[:-1], self._lats[1:], self._lons[1:]
        )
        if np.any((seg_lengths > 0) & (slk_steps == 0)):
            raise ValueError("RoadGeometry segments with non-zero length must advance SLK.")
        self._cumulative = np.concatenate(([0.0], np.cumsum(seg_lengths)))

        for a in (self._lats, self._lons, self._slks, self._cumulative):
            a.setflags(write=False)

    @classmethod
    def from_span(
        cls,
        coords: Iterable[Sequence[float]],
        start_slk: float,
        end_slk: float,
    ) -> "RoadGeometry":
        """
        Build a geometry from plain coordinates and a declared SLK span.

        Vertex SLK values are assigned proportionally along the cumulative
        great-circle length, so ``start_slk`` lands on the first vertex and
        ``end_slk`` on the last.

        Parameters
        ----------
        coords : iterable of (lat, lon)
            Polyline coordinates, at least two.
        start_slk, end_slk : float
            Declared SLK at the first and last vertex. ``end_slk`` must be
            greater than ``start_slk``.

        Raises
        ------
        ValueError
            For fewer than two coordinates, an empty or reversed span, or a
            polyline whose total length is zero.
        """
        pts = np.asarray([tuple(c)[:2] for c in coords], dtype=float)
        if pts.ndim != 2 or len(pts) < 2:
            raise ValueError("RoadGeometry requires at least two vertices.")
        if not (math.isfinite(start_slk) and math.isfinite(end_slk)):
            raise ValueError("start_slk and end_slk must be finite.")
        if not end_slk > start_slk:
            raise ValueError("end_slk must be greater than start_slk.")

        seg_lengths = haversine_distance(pts[:-1, 0], pts[:-1, 1], pts[1:, 0], pts[1:, 1])
        cumulative = np.concatenate(([0.0], np.cumsum(seg_lengths)))
        total = cumulative[-1]
        if not total > 0:
            raise ValueError("Cannot assign SLK along a polyline of zero length.")

        slks = start_slk + (end_slk - start_slk) * (cumulative / total)
        # Pin the last vertex exactly to the declared end
        slks[-1] = end_slk
        return cls(np.column_stack((pts, slks)))

    # ========== Accessors ==========
    @property
    def lats(self) -> np.ndarray:
        return self._lats

    @property
    def lons(self) -> np.ndarray:
        return self._lons

    @property
    def slks(self) -> np.ndarray:
        return self._slks

    @property
    def cumulative_m(self) -> np.ndarray:
        """Cumulative great-circle length (metres) at each vertex."""
        return self._cumulative

    @property
    def length_m(self) -> float:
        return float(self._cumulative[-1])

    @property
    def start_slk(self) -> float:
        return float(self._slks[0])

    @property
    def end_slk(self) -> float:
        return float(self._slks[-1])

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Bounding box as (min_lon, min_lat, max_lon, max_lat)."""
        return (float(self._lons.min()), float(self._lats.min()),
                float(self._lons.max()), float(self._lats.max()))

    def contains_slk(self, slk: float) -> bool:
        return self.start_slk <= slk <= self.end_slk

    def to_linestring(self) -> LineString:
        """Shapely LineString in (x=lon, y=lat) order."""
        return LineString(np.column_stack((self._lons, self._lats)))

    def __len__(self):
        return len(self._lats)

    def __iter__(self):
        for lat, lon, slk in zip(self._lats, self._lons, self._slks):
            yield Vertex(float(lat), float(lon), float(slk))

    def __repr__(self):
        return (f"RoadGeometry({len(self)} vertices, "
                f"slk {self.start_slk:g}-{self.end_slk:g}, {self.length_m:.1f} m)")


def project(
    lat: float,
    lon: float,
    geometry: RoadGeometry,
    max_distance_m: float = math.inf,
) -> Optional[Projection]:
    """
    Project a point onto the nearest segment of a road polyline.

    Parameters
    ----------
    lat, lon : float
        Query point in WGS84 decimal degrees.
    geometry : RoadGeometry
        Polyline to project onto.
    max_distance_m : float, default=inf
        Tolerance in metres. If the closest point of the polyline is farther
        than this, there is no match.

    Returns
    -------
    Projection or None
        The closest point on the polyline, its SLK and the perpendicular
        distance; ``None`` if nothing lies within ``max_distance_m`` or the
        query point is not finite.

    Notes
    -----
    **Algorithm:**

    1. For every segment, compute the clamped scalar projection parameter
       ``t`` in a local equirectangular plane centred on the query latitude
       (longitude differences scaled by cos(lat)).
    2. Measure the offset from the query point to the projected point with the
       haversine great-circle distance.
    3. Keep the segment with the smallest offset. Ties keep the earlier
       segment.
    4. Interpolate SLK between the winning segment's vertex SLK values at
       ``t``. For geometries built with ``RoadGeometry.from_span`` this equals
       mapping (arc length to the projected point / total arc length) into
       the declared [start_slk, end_slk] span.

    Zero-length segments are skipped.

    Examples
    --------
    >>> geom = RoadGeometry.from_span([(-31.95, 115.86), (-31.94, 115.86)], 0.0, 1.11)
    >>> hit = project(-31.945, 115.8601, geom, max_distance_m=50)
    >>> print(f"SLK {hit.slk:.3f} km, {hit.distance_m:.1f} m off the road")
    """
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None

    lats, lons, slks = geometry.lats, geometry.lons, geometry.slks
    cos_lat = max(math.cos(math.radians(lat)), _MIN_COS_LAT)

    # ========== Segment Vectors in the Local Plane ==========
    d_lat = np.diff(lats)
    d_lon = np.diff(lons)
    dy = d_lat
    dx = d_lon * cos_lat
    length_sq = dx * dx + dy * dy
    valid = length_sq > 0.0
    if not np.any(valid):
        return None

    # ========== Clamped Scalar Projection ==========
    py = lat - lats[:-1]
    px = (lon - lons[:-1]) * cos_lat
    dot = px * dx + py * dy
    t = np.divide(dot, length_sq, out=np.zeros_like(dot), where=valid)
    t = np.clip(t, 0.0, 1.0)

    proj_lats = lats[:-1] + t * d_lat
    proj_lons = lons[:-1] + t * d_lon

    # ========== Great-Circle Offsets ==========
    distances = np.asarray(haversine_distance(lat, lon, proj_lats, proj_lons), dtype=float)
    distances = np.where(valid, distances, np.inf)

    # argmin returns the first minimum, so ties keep the earlier segment
    i = int(np.argmin(distances))
    best = float(distances[i])
    if not math.isfinite(best) or best > max_distance_m:
        return None

    ti = float(t[i])
    slk = float(slks[i] + (slks[i + 1] - slks[i]) * ti)
    return Projection(
        lat=float(proj_lats[i]),
        lon=float(proj_lons[i]),
        slk=slk,
        distance_m=best,
        segment_index=i,
        t=ti,
    )


def locate(slk: float, geometry: RoadGeometry) -> LocatedPoint:
    """
    Find the point on a polyline at a given SLK.

    The bracketing vertex pair is found by SLK, and the position is interpolated
    linearly between the two vertices in proportion to where ``slk`` falls in
    the pair's SLK span. Because ``project`` assigns SLK the same way, locating
    a projected SLK returns the projected point.

    Parameters
    ----------
    slk : float
        Target SLK.
    geometry : RoadGeometry
        Polyline to interpolate on.

    Returns
    -------
    LocatedPoint
        Interpolated position. When ``slk`` lies outside
        [start_slk, end_slk] the nearest endpoint is returned with
        ``out_of_range=True``; nothing is extrapolated.

    Raises
    ------
    ValueError
        If ``slk`` is not finite.
    """
    if not math.isfinite(slk):
        raise ValueError("slk must be finite.")

    lats, lons, slks = geometry.lats, geometry.lons, geometry.slks

    # ========== Clamp Out-of-Range Targets ==========
    if slk < slks[0]:
        return LocatedPoint(float(lats[0]), float(lons[0]), float(slks[0]), True)
    if slk > slks[-1]:
        return LocatedPoint(float(lats[-1]), float(lons[-1]), float(slks[-1]), True)

    # ========== Bracketing Vertex Pair ==========
    # First vertex whose SLK reaches the target; the pair is (i - 1, i)
    i = int(np.searchsorted(slks, slk, side="left"))
    i = min(max(i, 1), len(slks) - 1)

    span = slks[i] - slks[i - 1]
    fraction = (slk - slks[i - 1]) / span if span > 0 else 0.0

    return LocatedPoint(
        lat=float(lats[i - 1] + (lats[i] - lats[i - 1]) * fraction),
        lon=float(lons[i - 1] + (lons[i] - lons[i - 1]) * fraction),
        slk=float(slk),
        out_of_range=False,
    )
