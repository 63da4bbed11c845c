"""
Tracking orchestrator module for pyslk.

This module wires a stream of GPS readings through the Kalman filter and the
road-network lookup to produce, for every reading, a snapshot of where the
vehicle is in road terms: which road, which SLK, how fast, what the limit is,
and how far it is to a configured destination.

The implementation supports:

- Push model: call ``Tracker.process`` with each reading as it arrives
- Filtered or raw positions (``TrackerConfig.ekf_enabled``)
- Throttled road lookup with an optional R-tree index
- Road constraint: predicted positions are re-anchored onto the matched road
- Destination distance, direction (towards/away/static) and ETA
- Speed-zone limit, speeding flag and upcoming-decrease lookahead
- Per-road SLK calibration offsets for display
- Batch replay of pandas/polars trajectories via ``track_trajectory``
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, NamedTuple, Optional, Union

import numpy as np
import pandas as pd
import polars as pl
from tqdm import tqdm

from pyslk.filtering.ekf import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    DEFAULT_FILTER_CONFIG,
    FALLBACK_UNCERTAINTY_M,
    HIGH_CONFIDENCE_M,
    MAX_SPEED_KMH,
    MEDIUM_CONFIDENCE_M,
    FilterConfig,
    FilterOutput,
    GpsKalmanFilter,
    GpsReading,
    PredictionInfo,
    has_position,
)
from pyslk.referencing.network import Match, Road, RoadNetworkIndex, find_nearest
from pyslk.tracking.speed_zones import (
    SpeedZone,
    UpcomingZone,
    sort_zones,
    speed_limit_at,
    upcoming_decrease,
)
from pyslk.utilities.frames import (
    from_pandas_preserve,
    optional_column,
    require_columns,
    timestamps_ms,
    to_pandas_preserve,
    value_or_none,
)
from pyslk.utilities.geodesy import MS_TO_KMH, calculate_bearing, calculate_speed_ms

# Direction labels
DIRECTION_TOWARDS = "towards"
DIRECTION_AWAY = "away"
DIRECTION_STATIC = "static"


@dataclass(frozen=True)
class TrackerConfig:
    """
    Orchestrator settings.

    Parameters
    ----------
    ekf_enabled : bool, default=True
        Filter readings through the Kalman filter. When False, raw fixes are
        used as-is.
    road_constraint : bool, default=True
        Re-anchor predicted (outage) positions onto the matched road.
    max_prediction_time_s : float, default=30.0
        Outage ceiling passed on to the filter when no filter config is given.
    road_match_distance_m : float, default=500.0
        Lookup tolerance for the nearest road.
    update_interval_s : float, default=0.5
        Minimum time between road lookups. 0 looks up on every reading.
    slk_unit_m : float, default=1000.0
        Metres per SLK unit (SLK in kilometres by default).
    direction_dead_band_m : float, default=1.0
        Change in distance-to-destination below which direction is ``static``.
    moving_speed_kmh : float, default=3.0
        Below this speed direction is ``static`` and no ETA is given.
    stationary_speed_kmh : float, default=2.0
        Speeds below this are reported as exactly 0.
    max_filter_speed_kmh : float, default=200.0
        Filter speeds at or above this fall back to the raw GPS speed.
    speed_lookahead_s : float, default=5.0
        Seconds of travel ahead scanned for a lower speed limit.
    gps_lag_compensation_s : float, default=0.0
        Extra seconds added to the lookahead window.
    default_speed_limit : int, default=100
        Limit reported when no zone covers the current SLK.

    Raises
    ------
    ValueError
        If a distance or time parameter is negative, or ``slk_unit_m``,
        ``road_match_distance_m``, ``max_prediction_time_s`` or
        ``max_filter_speed_kmh`` is not positive.
    """
    ekf_enabled: bool = True
    road_constraint: bool = True
    max_prediction_time_s: float = 30.0
    road_match_distance_m: float = 500.0
    update_interval_s: float = 0.5
    slk_unit_m: float = 1000.0
    direction_dead_band_m: float = 1.0
    moving_speed_kmh: float = 3.0
    stationary_speed_kmh: float = 2.0
    max_filter_speed_kmh: float = 200.0
    speed_lookahead_s: float = 5.0
    gps_lag_compensation_s: float = 0.0
    default_speed_limit: int = 100

    def __post_init__(self):
        positive = ("max_prediction_time_s", "road_match_distance_m",
                    "slk_unit_m", "max_filter_speed_kmh")
        non_negative = ("update_interval_s", "direction_dead_band_m", "moving_speed_kmh",
                        "stationary_speed_kmh", "speed_lookahead_s", "gps_lag_compensation_s")
        for name in positive + non_negative:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value!r}")
            if name in positive and value <= 0:
                raise ValueError(f"{name} must be positive, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must not be negative, got {value!r}")

    def replace(self, **changes) -> "TrackerConfig":
        """Return a validated copy with ``changes`` applied."""
        return replace(self, **changes)


DEFAULT_TRACKER_CONFIG = TrackerConfig()


class Destination(NamedTuple):
    """Target road and SLK."""
    road_id: str
    slk: float


class TrackingState(NamedTuple):
    """
    Snapshot produced for every processed reading.

    ``slk`` is the raw SLK from the road lookup and ``calibrated_slk`` the same
    value with the road's calibration offset applied. Destination distance is
    signed (``destination.slk - slk``, SLK units) and only set while on the
    destination road.
    """
    timestamp_ms: float
    lat: Optional[float]
    lon: Optional[float]
    filter_output: Optional[FilterOutput]
    road: Optional[Match]
    slk: Optional[float]
    calibrated_slk: Optional[float]
    speed_kmh: float
    heading: float
    speed_limit: int
    is_speeding: bool
    upcoming_zone: Optional[UpcomingZone]
    distance_to_destination: Optional[float]
    eta_s: Optional[float]
    direction: Optional[str]
    uncertainty_m: float
    confidence: str
    is_predicted: bool
    outage_duration_s: float


class _RoadSnapshot(NamedTuple):
    match: Optional[Match]
    slk: Optional[float]
    distance_to_destination: Optional[float]
    direction: Optional[str]


_NO_ROAD = _RoadSnapshot(None, None, None, None)


def _finite(value) -> bool:
    return value is not None and math.isfinite(value)


def _group_zones(speed_zones) -> Dict[str, List[SpeedZone]]:
    if speed_zones is None:
        return {}
    if isinstance(speed_zones, Mapping):
        return {str(road_id): sort_zones(zones) for road_id, zones in speed_zones.items()}
    grouped: Dict[str, List[SpeedZone]] = {}
    for zone in speed_zones:
        grouped.setdefault(zone.road_id, []).append(zone)
    return {road_id: sort_zones(zones) for road_id, zones in grouped.items()}


class Tracker:
    """
    One tracking session.

    Parameters
    ----------
    roads : iterable of Road
        Candidate roads, typically pre-filtered to the area of interest (see
        :func:`pyslk.utilities.road_network.filter_roads_by_bbox`). Read only.
    config : TrackerConfig, optional
        Orchestrator settings. Defaults to ``DEFAULT_TRACKER_CONFIG``.
    filter_config : FilterConfig, optional
        Kalman filter tuning. By default the filter defaults are used with
        ``max_prediction_time_s`` and ``road_constraint_enabled`` taken from
        ``config``.
    destination : Destination, optional
        Target road and SLK.
    speed_zones : mapping or iterable of SpeedZone, optional
        Either ``{road_id: [SpeedZone, ...]}`` or a flat iterable, which is
        grouped by ``road_id``.
    index : RoadNetworkIndex, optional
        Prebuilt index over ``roads``. Without one, every lookup is a
        brute-force scan.

    Notes
    -----
    A tracker is created stopped. ``start()`` begins a session and
    ``process()`` ignores readings (returns None) while stopped. Each tracker
    owns its own filter; separate sessions share nothing.

    Examples
    --------
    >>> tracker = Tracker(roads, destination=Destination("H005", 12.5))
    >>> tracker.start()
    >>> for reading in readings:
    ...     state = tracker.process(reading)
    ...     if state.direction == "towards":
    ...         print(f"{state.distance_to_destination:.2f} km to go, ETA {state.eta_s:.0f} s")
    """

    def __init__(
        self,
        roads: Iterable[Road],
        config: Optional[TrackerConfig] = None,
        filter_config: Optional[FilterConfig] = None,
        destination: Optional[Destination] = None,
        speed_zones=None,
        index: Optional[RoadNetworkIndex] = None,
    ):
        self.roads: List[Road] = list(roads)
        self.config = config if config is not None else DEFAULT_TRACKER_CONFIG
        if filter_config is None:
            filter_config = DEFAULT_FILTER_CONFIG.replace(
                max_prediction_time_s=self.config.max_prediction_time_s,
                road_constraint_enabled=self.config.road_constraint,
            )
        self.filter = GpsKalmanFilter(filter_config)
        self.index = index
        self.destination = destination
        self._zones = _group_zones(speed_zones)
        self._calibrations: Dict[str, float] = {}

        self.is_tracking = False
        self.last_state: Optional[TrackingState] = None
        self._clear_session()

    # ========== Session Control ==========

    def _clear_session(self):
        self.filter.reset()
        self._road = _NO_ROAD
        self._last_lookup_ms: Optional[float] = None
        self._previous_fix: Optional[GpsReading] = None
        self.last_state = None

    def start(self):
        """Begin a fresh session."""
        self._clear_session()
        self.is_tracking = True

    def stop(self):
        """Stop accepting readings and drop the filter estimate. The last state stays available."""
        last_state = self.last_state
        self._clear_session()
        self.last_state = last_state
        self.is_tracking = False

    def reset(self):
        """Forget the filter estimate and direction history, keep tracking."""
        self._clear_session()

    # ========== Configuration ==========

    def set_destination(self, destination: Optional[Destination]):
        """Change (or clear, with None) the destination. Direction history restarts."""
        self.destination = destination
        self._road = self._road._replace(distance_to_destination=None, direction=None)

    def set_speed_zones(self, road_id: str, zones: Iterable[SpeedZone]):
        self._zones[str(road_id)] = sort_zones(zones)

    def speed_zones(self, road_id: str) -> List[SpeedZone]:
        return list(self._zones.get(str(road_id), []))

    # ========== Calibration ==========

    @property
    def calibrations(self) -> Dict[str, float]:
        """Per-road SLK offsets (``known - raw``)."""
        return dict(self._calibrations)

    def calibrate(self, known_slk: float) -> Optional[float]:
        """
        Store an SLK offset for the current road.

        The offset is ``known_slk - raw SLK`` at the current position and is
        added to every later SLK on the same road (``calibrated_slk``).

        Returns
        -------
        float or None
            The stored offset, or None if there is no current road match.

        Raises
        ------
        ValueError
            If ``known_slk`` is not finite.
        """
        known_slk = float(known_slk)
        if not math.isfinite(known_slk):
            raise ValueError("known_slk must be finite.")
        if self._road.match is None or self._road.slk is None:
            return None
        offset = known_slk - self._road.slk
        self._calibrations[self._road.match.road_id] = offset
        return offset

    def clear_calibration(self, road_id: Optional[str] = None):
        """Drop the offset of ``road_id`` (default: the current road)."""
        if road_id is None:
            if self._road.match is None:
                return
            road_id = self._road.match.road_id
        self._calibrations.pop(str(road_id), None)

    def calibrated(self, road_id: str, slk: float) -> float:
        return slk + self._calibrations.get(road_id, 0.0)

    def prediction_info(self) -> Optional[PredictionInfo]:
        if not self.config.ekf_enabled:
            return None
        return self.filter.prediction_info()

    # ========== Processing ==========

    def process(self, reading: GpsReading) -> Optional[TrackingState]:
        """
        Process one reading and return the new tracking snapshot.

        Steps: filter (or raw fix) -> speed selection -> stationary snap ->
        uncertainty fallback -> throttled road lookup -> road constraint ->
        destination metrics -> speed zones.

        Returns None while the tracker is stopped.
        """
        if not self.is_tracking:
            return None

        cfg = self.config
        now = float(reading.timestamp_ms)

        # ========== Position ==========
        filter_output = self.filter.update(reading) if cfg.ekf_enabled else None
        if filter_output is not None:
            lat, lon = filter_output.lat, filter_output.lon
        elif has_position(reading):
            lat, lon = float(reading.lat), float(reading.lon)
        else:
            lat = lon = None

        # ========== Speed and Heading ==========
        raw_speed_kmh, raw_heading = self._raw_motion(reading)
        if filter_output is not None:
            filter_speed = filter_output.speed_kmh
            if _finite(filter_speed) and 0 < filter_speed < cfg.max_filter_speed_kmh:
                speed_kmh = filter_speed
            else:
                speed_kmh = raw_speed_kmh
            heading = filter_output.heading
        else:
            speed_kmh = raw_speed_kmh
            heading = raw_heading

        if speed_kmh < cfg.stationary_speed_kmh:
            speed_kmh = 0.0

        # ========== Uncertainty and Confidence ==========
        if filter_output is not None:
            uncertainty = filter_output.uncertainty_m
        elif _finite(reading.accuracy):
            uncertainty = reading.accuracy
        else:
            uncertainty = FALLBACK_UNCERTAINTY_M
        if not _finite(uncertainty) or uncertainty < 0:
            uncertainty = FALLBACK_UNCERTAINTY_M

        if filter_output is not None:
            confidence = filter_output.confidence
            is_predicted = filter_output.is_predicted
            outage_s = filter_output.outage_duration_s
        else:
            confidence = _raw_confidence(uncertainty)
            is_predicted = False
            outage_s = 0.0

        # ========== Road Lookup (throttled) ==========
        if lat is not None and math.isfinite(now) and self._lookup_due(now):
            self._last_lookup_ms = now
            match = self._find_road(lat, lon)
            if match is not None and self._should_constrain(filter_output, match):
                self.filter.force_position(match.lat, match.lon)
                lat, lon = match.lat, match.lon
            self._road = self._road_snapshot(match, speed_kmh)

        # ========== Destination and Speed Zones ==========
        snapshot = self._road
        slk = snapshot.slk
        road_id = snapshot.match.road_id if snapshot.match is not None else None

        eta_s = None
        distance = snapshot.distance_to_destination
        if distance is not None and speed_kmh > cfg.moving_speed_kmh and distance != 0:
            eta_s = abs(distance) * cfg.slk_unit_m / (speed_kmh / MS_TO_KMH)

        zones = self._zones.get(road_id, []) if road_id is not None else []
        if slk is not None:
            speed_limit = speed_limit_at(zones, slk, default=cfg.default_speed_limit)
            upcoming = upcoming_decrease(
                zones,
                slk,
                speed_limit,
                speed_kmh,
                cfg.speed_lookahead_s,
                slk_unit_m=cfg.slk_unit_m,
                lag_compensation_s=cfg.gps_lag_compensation_s,
            )
        else:
            speed_limit = cfg.default_speed_limit
            upcoming = None

        state = TrackingState(
            timestamp_ms=now,
            lat=lat,
            lon=lon,
            filter_output=filter_output,
            road=snapshot.match,
            slk=slk,
            calibrated_slk=self.calibrated(road_id, slk) if slk is not None else None,
            speed_kmh=speed_kmh,
            heading=heading,
            speed_limit=speed_limit,
            is_speeding=speed_kmh > speed_limit,
            upcoming_zone=upcoming,
            distance_to_destination=distance,
            eta_s=eta_s,
            direction=snapshot.direction,
            uncertainty_m=uncertainty,
            confidence=confidence,
            is_predicted=is_predicted,
            outage_duration_s=outage_s,
        )
        self.last_state = state
        return state

    def _raw_motion(self, reading: GpsReading):
        """Speed (km/h, clamped) and heading from the receiver, else from the previous fix."""
        previous = self._previous_fix
        usable_fix = has_position(reading)
        if usable_fix:
            self._previous_fix = reading

        if _finite(reading.speed) and reading.speed >= 0:
            speed_ms = reading.speed
        elif usable_fix and previous is not None:
            speed_ms = calculate_speed_ms(previous.lat, previous.lon, reading.lat, reading.lon,
                                          reading.timestamp_ms - previous.timestamp_ms)
        else:
            speed_ms = 0.0
        speed_kmh = min(speed_ms * MS_TO_KMH, MAX_SPEED_KMH) if _finite(speed_ms) else 0.0

        if _finite(reading.heading):
            heading = reading.heading % 360.0
        elif usable_fix and previous is not None:
            heading = calculate_bearing(previous.lat, previous.lon, reading.lat, reading.lon)
        else:
            heading = 0.0
        if heading >= 360.0:
            heading = 0.0
        return speed_kmh, heading

    def _lookup_due(self, now: float) -> bool:
        if self._last_lookup_ms is None:
            return True
        return now - self._last_lookup_ms >= self.config.update_interval_s * 1000.0

    def _find_road(self, lat: float, lon: float) -> Optional[Match]:
        max_distance = self.config.road_match_distance_m
        if self.index is not None:
            return self.index.find_nearest(lat, lon, max_distance)
        return find_nearest(lat, lon, self.roads, max_distance)

    def _should_constrain(self, filter_output: Optional[FilterOutput], match: Match) -> bool:
        if filter_output is None or not filter_output.is_predicted:
            return False
        if not (self.config.road_constraint and self.filter.config.road_constraint_enabled):
            return False
        return match.distance_m <= self.filter.config.road_search_radius_m

    def _road_snapshot(self, match: Optional[Match], speed_kmh: float) -> _RoadSnapshot:
        if match is None:
            return _NO_ROAD

        dest = self.destination
        if dest is None or match.road_id != dest.road_id:
            return _RoadSnapshot(match, match.slk, None, None)

        # On the destination road
        distance = dest.slk - match.slk
        previous = self._road
        previous_slk = None
        if previous.match is not None and previous.match.road_id == match.road_id:
            previous_slk = previous.slk

        if speed_kmh < self.config.moving_speed_kmh:
            direction = DIRECTION_STATIC
        elif previous_slk is None:
            direction = None
        else:
            dead_band = self.config.direction_dead_band_m / self.config.slk_unit_m
            current_gap = abs(dest.slk - match.slk)
            previous_gap = abs(dest.slk - previous_slk)
            if current_gap < previous_gap - dead_band:
                direction = DIRECTION_TOWARDS
            elif current_gap > previous_gap + dead_band:
                direction = DIRECTION_AWAY
            else:
                direction = DIRECTION_STATIC

        return _RoadSnapshot(match, match.slk, distance, direction)


def _raw_confidence(uncertainty_m: float) -> str:
    if uncertainty_m < HIGH_CONFIDENCE_M:
        return CONFIDENCE_HIGH
    if uncertainty_m < MEDIUM_CONFIDENCE_M:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_LOW


# ========== Batch Replay ==========

def track_trajectory(
    df: Union[pd.DataFrame, pl.DataFrame],
    roads: Iterable[Road],
    lat_col: str = "lat",
    lon_col: str = "lon",
    time_col: Optional[str] = "time",
    speed_col: Optional[str] = None,
    heading_col: Optional[str] = None,
    accuracy_col: Optional[str] = None,
    default_accuracy_m: float = 10.0,
    destination: Optional[Destination] = None,
    speed_zones=None,
    config: Optional[TrackerConfig] = None,
    filter_config: Optional[FilterConfig] = None,
    use_index: bool = False,
    verbose: bool = False,
) -> Union[pd.DataFrame, pl.DataFrame]:
    """
    Replay a recorded trajectory through a fresh tracker.

    Parameters
    ----------
    df : pd.DataFrame or pl.DataFrame
        Recorded trajectory, one row per reading, in time order.
    roads : iterable of Road
        Candidate roads.
    lat_col, lon_col, time_col, speed_col, heading_col, accuracy_col : str
        Column names, as for :func:`pyslk.filtering.ekf.kalman_filter_trajectory`.
    default_accuracy_m : float, default=10.0
        Accuracy assumed for every row when ``accuracy_col`` is None.
    destination : Destination, optional
        Target road and SLK.
    speed_zones : mapping or iterable of SpeedZone, optional
        Zones, as accepted by :class:`Tracker`.
    config : TrackerConfig, optional
    filter_config : FilterConfig, optional
    use_index : bool, default=False
        Build a :class:`RoadNetworkIndex` over ``roads`` first. Worth it for
        large road collections; results are identical either way.
    verbose : bool, default=False
        Show a tqdm progress bar.

    Returns
    -------
    pd.DataFrame or pl.DataFrame
        Same type as the input with columns ``road_id``, ``slk``,
        ``distance_to_destination``, ``direction``, ``speed_kmh``,
        ``speed_limit`` and ``confidence`` added. Rows without a road match
        have missing values in the road columns.

    Raises
    ------
    ValueError
        If a requested column is missing.
    """
    pdf, was_polars = to_pandas_preserve(df)
    require_columns(pdf, lat_col, lon_col, speed_col, heading_col, accuracy_col)

    roads = list(roads)
    index = RoadNetworkIndex(roads) if use_index else None
    tracker = Tracker(roads, config=config, filter_config=filter_config,
                      destination=destination, speed_zones=speed_zones, index=index)
    tracker.start()

    n = len(pdf)
    lats = pdf[lat_col].to_numpy(dtype=float)
    lons = pdf[lon_col].to_numpy(dtype=float)
    times = timestamps_ms(pdf, time_col)
    speeds = optional_column(pdf, speed_col)
    headings = optional_column(pdf, heading_col)
    accuracies = optional_column(pdf, accuracy_col)

    out_road = np.full(n, None, dtype=object)
    out_slk = np.full(n, np.nan)
    out_distance = np.full(n, np.nan)
    out_direction = np.full(n, None, dtype=object)
    out_speed = np.full(n, np.nan)
    out_limit = np.zeros(n, dtype=int)
    out_confidence = np.full(n, None, dtype=object)

    rows = range(n)
    if verbose:
        rows = tqdm(rows, desc="tracking")

    for i in rows:
        state = tracker.process(GpsReading(
            lat=float(lats[i]),
            lon=float(lons[i]),
            timestamp_ms=float(times[i]),
            speed=value_or_none(speeds, i),
            heading=value_or_none(headings, i),
            accuracy=value_or_none(accuracies, i) if accuracies is not None else default_accuracy_m,
        ))
        if state.road is not None:
            out_road[i] = state.road.road_id
            out_slk[i] = state.slk
        if state.distance_to_destination is not None:
            out_distance[i] = state.distance_to_destination
        out_direction[i] = state.direction
        out_speed[i] = state.speed_kmh
        out_limit[i] = state.speed_limit
        out_confidence[i] = state.confidence

    tracker.stop()

    out_pdf = pdf.copy()
    out_pdf["road_id"] = out_road
    out_pdf["slk"] = out_slk
    out_pdf["distance_to_destination"] = out_distance
    out_pdf["direction"] = out_direction
    out_pdf["speed_kmh"] = out_speed
    out_pdf["speed_limit"] = out_limit
    out_pdf["confidence"] = out_confidence

    return from_pandas_preserve(out_pdf, was_polars)
