"""
Kalman filtering module for pyslk.

This module provides real-time GPS position filtering for road vehicles with a
constant-velocity Kalman filter. It is built for streaming use: one reading in,
one filtered estimate out, at whatever rate the receiver delivers fixes.

The implementation supports:

- 2D constant-velocity motion model in a local equirectangular plane
- Per-reading measurement noise taken from the receiver's reported accuracy
- Separate velocity correction from GPS speed and heading
- Pure prediction through GPS outages, with outage bookkeeping
- Confidence classification and display-ready speed/heading/uncertainty

Key Features:
- Reduced-order covariance: four independent scalar variances (position and
  velocity on each axis) instead of a full 4x4 matrix
- State in degrees: latitude/longitude and degrees/second, with longitude
  scaled by cos(latitude) when converting to metres
- Pure functions (``initialize``, ``predict``, ``correct``, ``step``,
  ``output``) plus a caller-owned ``GpsKalmanFilter`` wrapper
- Batch replay of pandas/polars trajectories via ``kalman_filter_trajectory``
"""

import math
import warnings
from collections import deque
from dataclasses import dataclass, replace
from typing import NamedTuple, Optional, Tuple, Union

import numpy as np
import pandas as pd
import polars as pl
from tqdm import tqdm

from pyslk.utilities.frames import (
    from_pandas_preserve,
    optional_column,
    require_columns,
    timestamps_ms,
    to_pandas_preserve,
    value_or_none,
)
from pyslk.utilities.geodesy import (
    METERS_PER_DEG_LAT,
    MS_TO_KMH,
    deg_lat_per_meter,
    deg_lon_per_meter,
    meters_per_deg_lon,
)

# ========== Constants ==========
ACCURACY_THRESHOLD_M = 100.0        # Readings at or above this accuracy never correct position
VELOCITY_MEASUREMENT_NOISE_MS = 2.0 # Typical GPS-derived speed accuracy (m/s, 1 sigma)
MIN_VARIANCE = 1e-10                # Floor for every variance term

MAX_SPEED_KMH = 500.0
MAX_UNCERTAINTY_M = 1000.0
FALLBACK_UNCERTAINTY_M = 50.0

WARN_UNCERTAINTY_M = 50.0
WARN_OUTAGE_S = 10.0

HIGH_CONFIDENCE_M = 15.0
MEDIUM_CONFIDENCE_M = 50.0

VELOCITY_WINDOW_S = 30.0            # Horizon of the rolling velocity sample window

# Confidence labels
CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"
CONFIDENCE_PREDICTED = "predicted"


# ========== Data Types ==========

class GpsReading(NamedTuple):
    """
    One raw GPS sample.

    ``speed`` is ground speed in m/s, ``heading`` is degrees clockwise from
    North, ``accuracy`` is horizontal accuracy in metres (1 sigma) and
    ``timestamp_ms`` is a monotonic time in milliseconds. Optional fields may
    be None.
    """
    lat: float
    lon: float
    timestamp_ms: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    accuracy: Optional[float] = None


@dataclass(frozen=True)
class FilterConfig:
    """
    Filter tuning parameters.

    Parameters
    ----------
    process_noise_position : float, default=5.0
        Unmodelled acceleration (m/s^2) driving position uncertainty growth.
    process_noise_velocity : float, default=1.0
        Unmodelled jerk (m/s^3) driving velocity uncertainty growth.
    measurement_noise_scale : float, default=1.0
        Multiplier applied to the receiver's reported accuracy.
    max_prediction_time_s : float, default=30.0
        Outage length after which predictions should no longer be trusted.
    max_prediction_distance_m : float, default=500.0
        Position uncertainty after which predictions should no longer be trusted.
    max_velocity_age_s : float, default=60.0
        A velocity estimate older than this is no longer used to advance position.
    initial_position_variance : float, default=100.0
        Initial position variance (m^2).
    initial_velocity_variance : float, default=25.0
        Initial velocity variance ((m/s)^2).
    road_constraint_enabled : bool, default=True
        Whether predicted positions may be snapped onto road geometry.
    road_search_radius_m : float, default=500.0
        Maximum distance to a road for the road constraint to apply.

    Raises
    ------
    ValueError
        If any numeric parameter is not a finite positive number.
    """
    process_noise_position: float = 5.0
    process_noise_velocity: float = 1.0
    measurement_noise_scale: float = 1.0
    max_prediction_time_s: float = 30.0
    max_prediction_distance_m: float = 500.0
    max_velocity_age_s: float = 60.0
    initial_position_variance: float = 100.0
    initial_velocity_variance: float = 25.0
    road_constraint_enabled: bool = True
    road_search_radius_m: float = 500.0

    def __post_init__(self):
        for name in (
            "process_noise_position",
            "process_noise_velocity",
            "measurement_noise_scale",
            "max_prediction_time_s",
            "max_prediction_distance_m",
            "max_velocity_age_s",
            "initial_position_variance",
            "initial_velocity_variance",
            "road_search_radius_m",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not (math.isfinite(value) and value > 0):
                raise ValueError(f"{name} must be positive, got {value!r}")

    def replace(self, **changes) -> "FilterConfig":
        """Return a validated copy with ``changes`` applied."""
        return replace(self, **changes)


DEFAULT_FILTER_CONFIG = FilterConfig()


@dataclass(frozen=True)
class FilterState:
    """
    Filter estimate at one instant.

    Positions are degrees, velocities are degrees/second, variances are in the
    matching squared units. Off-diagonal covariance terms are not modelled.
    Timestamps are milliseconds.
    """
    lat: float
    lon: float
    v_lat: float
    v_lon: float
    p_lat: float
    p_lon: float
    p_v_lat: float
    p_v_lon: float
    last_update_ms: float                 # Last accepted measurement
    last_timestamp_ms: float              # Time the state was last propagated to
    last_velocity_ms: Optional[float]     # Last velocity measurement, None if never
    is_predicted: bool
    outage_duration_ms: float


class FilterOutput(NamedTuple):
    """Display-ready view of a FilterState."""
    lat: float
    lon: float
    speed_kmh: float
    heading: float
    uncertainty_m: float
    confidence: str
    is_predicted: bool
    outage_duration_s: float
    should_warn: bool


class PredictionInfo(NamedTuple):
    """Whether predictions are still trustworthy during an outage."""
    can_predict: bool
    remaining_time_s: int
    uncertainty_m: int


class VelocitySample(NamedTuple):
    v_north_ms: float
    v_east_ms: float
    timestamp_ms: float


# ========== Reading Checks ==========

def _finite(value) -> bool:
    return value is not None and math.isfinite(value)


def has_position(reading: GpsReading) -> bool:
    """True if the reading's latitude and longitude are finite."""
    return _finite(reading.lat) and _finite(reading.lon)


def has_velocity(reading: GpsReading) -> bool:
    """True if the reading carries a finite non-negative speed and a finite heading."""
    return _finite(reading.speed) and reading.speed >= 0 and _finite(reading.heading)


def is_acceptable(reading: GpsReading) -> bool:
    """
    True if the reading may correct the position estimate.

    Requires a finite position and a declared accuracy in (0, 100) metres.
    Anything else is an outage sample: it still advances the prediction and
    the outage clock.
    """
    return (
        has_position(reading)
        and _finite(reading.accuracy)
        and 0.0 < reading.accuracy < ACCURACY_THRESHOLD_M
    )


def _velocity_components_deg(reading: GpsReading) -> Tuple[float, float]:
    """Speed/heading as (north, east) velocity in degrees/second."""
    heading_rad = math.radians(reading.heading)
    v_north = reading.speed * math.cos(heading_rad)
    v_east = reading.speed * math.sin(heading_rad)
    return (v_north * deg_lat_per_meter(),
            v_east * float(deg_lon_per_meter(reading.lat)))


# ========== Filter Steps ==========

def initialize(reading: GpsReading, config: FilterConfig = DEFAULT_FILTER_CONFIG) -> FilterState:
    """
    Create a filter state from the first reading.

    Position comes straight from the reading; velocity from its speed and
    heading when both are present. The initial position variance is
    ``config.initial_position_variance`` whatever the reading's accuracy; the
    first correction brings the accuracy in. A first reading that is not
    acceptable for correction produces a predicted state.

    Raises
    ------
    ValueError
        If the reading's latitude, longitude or timestamp is not finite.
    """
    if not (has_position(reading) and _finite(reading.timestamp_ms)):
        raise ValueError("Cannot initialise the filter from a reading without a finite position and timestamp.")

    v_lat = v_lon = 0.0
    last_velocity_ms = None
    if has_velocity(reading):
        v_lat, v_lon = _velocity_components_deg(reading)
        last_velocity_ms = float(reading.timestamp_ms)

    d_lat = deg_lat_per_meter()
    d_lon = float(deg_lon_per_meter(reading.lat))

    return FilterState(
        lat=float(reading.lat),
        lon=float(reading.lon),
        v_lat=v_lat,
        v_lon=v_lon,
        p_lat=config.initial_position_variance * d_lat ** 2,
        p_lon=config.initial_position_variance * d_lon ** 2,
        p_v_lat=config.initial_velocity_variance * d_lat ** 2,
        p_v_lon=config.initial_velocity_variance * d_lon ** 2,
        last_update_ms=float(reading.timestamp_ms),
        last_timestamp_ms=float(reading.timestamp_ms),
        last_velocity_ms=last_velocity_ms,
        is_predicted=not is_acceptable(reading),
        outage_duration_ms=0.0,
    )


def predict(state: FilterState, dt_s: float, config: FilterConfig = DEFAULT_FILTER_CONFIG) -> FilterState:
    """
    Propagate the state ``dt_s`` seconds forward (time update).

    Notes
    -----
    Constant-velocity model on each axis independently:

    - position += velocity * dt
    - position variance += (q_pos * dt^2)^2 + velocity variance * dt^2
    - velocity variance += (q_vel * dt^3)^2

    where ``q_pos`` and ``q_vel`` are the configured process noise terms and the
    squared metre quantities are converted to degrees^2 on each axis. Every
    variance is floored at ``MIN_VARIANCE``.

    A velocity older than ``config.max_velocity_age_s`` is dropped to zero
    before propagating, so stale motion no longer carries the position.

    The filter never refuses to predict; outage limits are reported through
    :func:`prediction_info`.
    """
    dt = dt_s if (_finite(dt_s) and dt_s > 0) else 0.0
    now_ms = state.last_timestamp_ms + dt * 1000.0

    # ========== Velocity Age Check ==========
    v_lat, v_lon = state.v_lat, state.v_lon
    if state.last_velocity_ms is not None:
        velocity_age_s = (now_ms - state.last_velocity_ms) / 1000.0
        if velocity_age_s > config.max_velocity_age_s:
            v_lat = v_lon = 0.0

    # ========== Process Noise (metres -> degrees) ==========
    q_pos = config.process_noise_position * dt * dt          # metres
    q_vel = config.process_noise_velocity * dt * dt * dt     # metres/second

    d_lat = deg_lat_per_meter()
    d_lon = float(deg_lon_per_meter(state.lat))

    # float ** raises OverflowError on huge dt, multiplication saturates to inf
    q_pos_sq = q_pos * q_pos
    q_vel_sq = q_vel * q_vel
    q_lat_pos = q_pos_sq * d_lat * d_lat
    q_lon_pos = q_pos_sq * d_lon * d_lon
    q_lat_vel = q_vel_sq * d_lat * d_lat
    q_lon_vel = q_vel_sq * d_lon * d_lon

    # ========== State Transition ==========
    lat = state.lat + v_lat * dt
    lon = state.lon + v_lon * dt

    # ========== Covariance Propagation ==========
    p_lat = state.p_lat + q_lat_pos + state.p_v_lat * dt * dt
    p_lon = state.p_lon + q_lon_pos + state.p_v_lon * dt * dt
    p_v_lat = state.p_v_lat + q_lat_vel
    p_v_lon = state.p_v_lon + q_lon_vel

    return replace(
        state,
        lat=lat,
        lon=lon,
        v_lat=v_lat,
        v_lon=v_lon,
        p_lat=max(p_lat, MIN_VARIANCE),
        p_lon=max(p_lon, MIN_VARIANCE),
        p_v_lat=max(p_v_lat, MIN_VARIANCE),
        p_v_lon=max(p_v_lon, MIN_VARIANCE),
        last_timestamp_ms=now_ms,
    )


def correct(state: FilterState, reading: GpsReading, config: FilterConfig = DEFAULT_FILTER_CONFIG) -> FilterState:
    """
    Correct the state with an accepted reading (measurement update).

    Position is corrected per axis with gain ``K = P / (P + R)`` where ``R``
    is the reading's scaled accuracy squared. If the reading also carries
    speed and heading, velocity is corrected separately with its own gain and
    a fixed measurement noise of ``VELOCITY_MEASUREMENT_NOISE_MS``.

    The measurement is applied at the state's current time
    (``state.last_timestamp_ms``); the caller is responsible for checking
    :func:`is_acceptable` first.
    """
    d_lat = deg_lat_per_meter()
    d_lon = float(deg_lon_per_meter(reading.lat))

    # ========== Position Correction ==========
    r = reading.accuracy * config.measurement_noise_scale
    r_lat = (r * d_lat) ** 2
    r_lon = (r * d_lon) ** 2

    k_lat = state.p_lat / (state.p_lat + r_lat)
    k_lon = state.p_lon / (state.p_lon + r_lon)

    lat = state.lat + k_lat * (reading.lat - state.lat)
    lon = state.lon + k_lon * (reading.lon - state.lon)
    p_lat = max(state.p_lat * (1.0 - k_lat), MIN_VARIANCE)
    p_lon = max(state.p_lon * (1.0 - k_lon), MIN_VARIANCE)

    v_lat, v_lon = state.v_lat, state.v_lon
    p_v_lat, p_v_lon = state.p_v_lat, state.p_v_lon
    last_velocity_ms = state.last_velocity_ms

    # ========== Velocity Correction ==========
    if has_velocity(reading):
        measured_v_lat, measured_v_lon = _velocity_components_deg(reading)

        r_v_lat = (VELOCITY_MEASUREMENT_NOISE_MS * d_lat) ** 2
        r_v_lon = (VELOCITY_MEASUREMENT_NOISE_MS * d_lon) ** 2

        k_v_lat = p_v_lat / (p_v_lat + r_v_lat)
        k_v_lon = p_v_lon / (p_v_lon + r_v_lon)

        v_lat += k_v_lat * (measured_v_lat - v_lat)
        v_lon += k_v_lon * (measured_v_lon - v_lon)
        p_v_lat = max(p_v_lat * (1.0 - k_v_lat), MIN_VARIANCE)
        p_v_lon = max(p_v_lon * (1.0 - k_v_lon), MIN_VARIANCE)
        last_velocity_ms = state.last_timestamp_ms

    return replace(
        state,
        lat=lat,
        lon=lon,
        v_lat=v_lat,
        v_lon=v_lon,
        p_lat=p_lat,
        p_lon=p_lon,
        p_v_lat=p_v_lat,
        p_v_lon=p_v_lon,
        last_update_ms=state.last_timestamp_ms,
        last_velocity_ms=last_velocity_ms,
        is_predicted=False,
        outage_duration_ms=0.0,
    )


def step(
    state: FilterState,
    reading: GpsReading,
    config: FilterConfig = DEFAULT_FILTER_CONFIG,
    now_ms: Optional[float] = None,
) -> Tuple[FilterState, FilterOutput]:
    """
    Run one predict/update cycle.

    Parameters
    ----------
    state : FilterState
        Current estimate (not modified).
    reading : GpsReading
        New sample. Readings that are not acceptable (see
        :func:`is_acceptable`) only advance the prediction and the outage clock.
    config : FilterConfig
        Filter tuning.
    now_ms : float, optional
        Time to propagate to; defaults to ``reading.timestamp_ms``.

    Returns
    -------
    (FilterState, FilterOutput)
        The new state and its display view.

    Notes
    -----
    A time earlier than the state's last propagation time triggers a
    ``RuntimeWarning`` and is treated as ``dt = 0``.
    """
    now = float(reading.timestamp_ms if now_ms is None else now_ms)
    if not math.isfinite(now):
        now = state.last_timestamp_ms

    dt_ms = now - state.last_timestamp_ms
    if dt_ms < 0:
        warnings.warn(
            f"GPS reading at {now:.0f} ms is {-dt_ms:.0f} ms older than the filter state; "
            "skipping prediction for it.",
            RuntimeWarning,
        )
        dt_ms = 0.0

    # ========== Predict ==========
    new_state = predict(state, dt_ms / 1000.0, config)
    new_state = replace(new_state, last_timestamp_ms=max(now, state.last_timestamp_ms))

    # ========== Update or Outage ==========
    if is_acceptable(reading):
        new_state = correct(new_state, reading, config)
    else:
        new_state = replace(
            new_state,
            is_predicted=True,
            outage_duration_ms=max(0.0, now - new_state.last_update_ms),
        )

    return new_state, output(new_state)


def output(state: FilterState) -> FilterOutput:
    """
    Derive the display view of a state.

    Speed is clamped to [0, 500] km/h and any non-finite value becomes 0.
    Heading is normalised to [0, 360) and defaults to 0 when undefined.
    Uncertainty is the latitude standard deviation in metres, capped at 1000 m
    with a 50 m fallback when not finite.

    Confidence: ``predicted`` for a pure prediction, otherwise ``high`` below
    15 m, ``medium`` below 50 m and ``low`` from 50 m up.
    """
    # ========== Speed ==========
    v_north_ms = state.v_lat * METERS_PER_DEG_LAT
    v_east_ms = state.v_lon * float(meters_per_deg_lon(state.lat))
    speed_ms = math.hypot(v_north_ms, v_east_ms)
    speed_kmh = min(speed_ms * MS_TO_KMH, MAX_SPEED_KMH) if math.isfinite(speed_ms) else 0.0

    # ========== Heading (0 = North, clockwise) ==========
    heading = math.degrees(math.atan2(v_east_ms, v_north_ms)) % 360.0
    if not math.isfinite(heading) or heading >= 360.0:
        heading = 0.0

    # ========== Uncertainty ==========
    uncertainty_m = _uncertainty_m(state)
    if math.isfinite(uncertainty_m):
        uncertainty_m = min(uncertainty_m, MAX_UNCERTAINTY_M)
    else:
        uncertainty_m = FALLBACK_UNCERTAINTY_M

    # ========== Confidence ==========
    if state.is_predicted:
        confidence = CONFIDENCE_PREDICTED
    elif uncertainty_m < HIGH_CONFIDENCE_M:
        confidence = CONFIDENCE_HIGH
    elif uncertainty_m < MEDIUM_CONFIDENCE_M:
        confidence = CONFIDENCE_MEDIUM
    else:
        confidence = CONFIDENCE_LOW

    outage_s = state.outage_duration_ms / 1000.0

    return FilterOutput(
        lat=state.lat,
        lon=state.lon,
        speed_kmh=speed_kmh,
        heading=heading,
        uncertainty_m=uncertainty_m,
        confidence=confidence,
        is_predicted=state.is_predicted,
        outage_duration_s=outage_s,
        should_warn=uncertainty_m > WARN_UNCERTAINTY_M or outage_s > WARN_OUTAGE_S,
    )


def _uncertainty_m(state: FilterState) -> float:
    p = state.p_lat
    if not (p >= 0):
        return math.nan
    return math.sqrt(p) * METERS_PER_DEG_LAT


def prediction_info(state: FilterState, config: FilterConfig = DEFAULT_FILTER_CONFIG) -> PredictionInfo:
    """
    Report whether the current estimate can still be trusted.

    ``can_predict`` turns False once the outage reaches
    ``config.max_prediction_time_s`` or the position uncertainty reaches
    ``config.max_prediction_distance_m``. The filter itself keeps producing
    estimates either way.
    """
    outage_s = state.outage_duration_ms / 1000.0
    remaining_s = max(0.0, config.max_prediction_time_s - outage_s)

    uncertainty_m = _uncertainty_m(state)
    if math.isfinite(uncertainty_m):
        can_predict = (outage_s < config.max_prediction_time_s
                       and uncertainty_m < config.max_prediction_distance_m)
    else:
        uncertainty_m = FALLBACK_UNCERTAINTY_M
        can_predict = False

    return PredictionInfo(
        can_predict=can_predict,
        remaining_time_s=int(round(remaining_s)),
        uncertainty_m=int(round(uncertainty_m)),
    )


# ========== Caller-Owned Filter ==========

class GpsKalmanFilter:
    """
    Stateful wrapper around the filter functions for one tracking session.

    Each tracking session owns its own instance; instances share nothing.

    Parameters
    ----------
    config : FilterConfig, optional
        Filter tuning. Defaults to ``DEFAULT_FILTER_CONFIG``.

    Examples
    --------
    >>> from pyslk.filtering import GpsKalmanFilter, GpsReading
    >>> kf = GpsKalmanFilter()
    >>> out = kf.update(GpsReading(-31.95, 115.86, 0, speed=15.0, heading=0.0, accuracy=5.0))
    >>> out = kf.update(GpsReading(-31.9499, 115.86, 1000, speed=15.0, heading=0.0, accuracy=5.0))
    >>> print(f"{out.speed_kmh:.0f} km/h, +/-{out.uncertainty_m:.0f} m ({out.confidence})")
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config if config is not None else DEFAULT_FILTER_CONFIG
        self._state: Optional[FilterState] = None
        self._velocity_samples = deque()

    @property
    def state(self) -> Optional[FilterState]:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is not None

    @property
    def velocity_samples(self) -> Tuple[VelocitySample, ...]:
        """Velocity measurements from the last ``VELOCITY_WINDOW_S`` seconds."""
        return tuple(self._velocity_samples)

    def update_config(self, **changes) -> None:
        self.config = self.config.replace(**changes)

    def update(self, reading: GpsReading) -> Optional[FilterOutput]:
        """
        Process one reading and return the new estimate.

        The first reading with a finite position and timestamp initialises the
        filter. Until then, other readings return None.
        """
        if self._state is None:
            if not (has_position(reading) and _finite(reading.timestamp_ms)):
                return None
            self._state = initialize(reading, self.config)
        else:
            self._state, _ = step(self._state, reading, self.config)

        if is_acceptable(reading) and has_velocity(reading) and _finite(reading.timestamp_ms):
            self._store_velocity(reading)

        return output(self._state)

    def _store_velocity(self, reading: GpsReading) -> None:
        heading_rad = math.radians(reading.heading)
        self._velocity_samples.append(VelocitySample(
            v_north_ms=reading.speed * math.cos(heading_rad),
            v_east_ms=reading.speed * math.sin(heading_rad),
            timestamp_ms=float(reading.timestamp_ms),
        ))
        # Prune on every insertion
        cutoff = float(reading.timestamp_ms) - VELOCITY_WINDOW_S * 1000.0
        while self._velocity_samples and self._velocity_samples[0].timestamp_ms <= cutoff:
            self._velocity_samples.popleft()

    def output(self) -> Optional[FilterOutput]:
        return output(self._state) if self._state is not None else None

    def prediction_info(self) -> Optional[PredictionInfo]:
        return prediction_info(self._state, self.config) if self._state is not None else None

    def force_position(self, lat: float, lon: float) -> None:
        """Overwrite the position estimate, e.g. to snap it onto a road."""
        if self._state is None:
            return
        self._state = replace(self._state, lat=float(lat), lon=float(lon))

    def reset(self) -> None:
        """Forget everything; the next reading re-initialises from scratch."""
        self._state = None
        self._velocity_samples.clear()


# ========== Batch Replay ==========

def kalman_filter_trajectory(
    df: Union[pd.DataFrame, pl.DataFrame],
    lat_col: str = "lat",
    lon_col: str = "lon",
    time_col: Optional[str] = "time",
    speed_col: Optional[str] = None,
    heading_col: Optional[str] = None,
    accuracy_col: Optional[str] = None,
    default_accuracy_m: float = 10.0,
    config: Optional[FilterConfig] = None,
    verbose: bool = False,
) -> Union[pd.DataFrame, pl.DataFrame]:
    """
    Replay a recorded GPS trajectory through a fresh filter.

    Rows are processed in order, exactly as if they had arrived live.

    Parameters
    ----------
    df : pd.DataFrame or pl.DataFrame
        Recorded trajectory.
    lat_col, lon_col : str
        Coordinate columns (WGS84 decimal degrees).
    time_col : str or None, default="time"
        Numeric milliseconds or anything ``pandas.to_datetime`` can parse. If
        None or missing, rows are taken to be 1 second apart.
    speed_col, heading_col : str or None
        Optional GPS speed (m/s) and heading (degrees) columns.
    accuracy_col : str or None
        Optional horizontal accuracy column (metres). NaN accuracy marks a row
        as an outage sample.
    default_accuracy_m : float, default=10.0
        Accuracy assumed for every row when ``accuracy_col`` is None.
    config : FilterConfig, optional
        Filter tuning.
    verbose : bool, default=False
        Show a tqdm progress bar.

    Returns
    -------
    pd.DataFrame or pl.DataFrame
        Same type as the input, with ``lat_col``/``lon_col`` replaced by the
        filtered position and new columns ``speed_kmh``, ``heading``,
        ``uncertainty_m``, ``confidence`` and ``is_predicted``.

    Raises
    ------
    ValueError
        If a requested column is missing.
    """
    pdf, was_polars = to_pandas_preserve(df)
    require_columns(pdf, lat_col, lon_col, speed_col, heading_col, accuracy_col)

    n = len(pdf)
    lats = pdf[lat_col].to_numpy(dtype=float)
    lons = pdf[lon_col].to_numpy(dtype=float)
    times = timestamps_ms(pdf, time_col)
    speeds = optional_column(pdf, speed_col)
    headings = optional_column(pdf, heading_col)
    accuracies = optional_column(pdf, accuracy_col)

    out_lat = np.full(n, np.nan)
    out_lon = np.full(n, np.nan)
    out_speed = np.full(n, np.nan)
    out_heading = np.full(n, np.nan)
    out_uncertainty = np.full(n, np.nan)
    out_confidence = np.full(n, None, dtype=object)
    out_predicted = np.zeros(n, dtype=bool)

    kf = GpsKalmanFilter(config)

    rows = range(n)
    if verbose:
        rows = tqdm(rows, desc="kalman replay")

    for i in rows:
        reading = GpsReading(
            lat=float(lats[i]),
            lon=float(lons[i]),
            timestamp_ms=float(times[i]),
            speed=value_or_none(speeds, i),
            heading=value_or_none(headings, i),
            accuracy=value_or_none(accuracies, i) if accuracies is not None else default_accuracy_m,
        )
        result = kf.update(reading)
        if result is None:
            continue
        out_lat[i] = result.lat
        out_lon[i] = result.lon
        out_speed[i] = result.speed_kmh
        out_heading[i] = result.heading
        out_uncertainty[i] = result.uncertainty_m
        out_confidence[i] = result.confidence
        out_predicted[i] = result.is_predicted

    out_pdf = pdf.copy()
    out_pdf[lat_col] = out_lat
    out_pdf[lon_col] = out_lon
    out_pdf["speed_kmh"] = out_speed
    out_pdf["heading"] = out_heading
    out_pdf["uncertainty_m"] = out_uncertainty
    out_pdf["confidence"] = out_confidence
    out_pdf["is_predicted"] = out_predicted

    return from_pandas_preserve(out_pdf, was_polars)
