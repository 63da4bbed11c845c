"""
Geodesy helpers for pyslk.

Constant-factor conversions between degrees and metres, great-circle distances,
bearings and point-to-point speeds. Everything here is a pure function with no
state, so it can be shared freely between tracking sessions.

Two distance models are used on purpose throughout the package:

- **Equirectangular scale factors** (``METERS_PER_DEG_LAT`` and
  ``meters_per_deg_lon``) for the Kalman filter's local tangent plane, where a
  degree of latitude is taken as 111 km and a degree of longitude shrinks with
  cos(latitude).
- **Haversine great-circle distance** for perpendicular offsets and polyline arc
  lengths in the linear-referencing engine.
"""

import numpy as np
from pyproj import Geod

# ========== Constants ==========
METERS_PER_DEG_LAT = 111000.0   # Approximate metres per degree of latitude
EARTH_RADIUS_M = 6371000.0      # Mean Earth radius used by the haversine formula
MS_TO_KMH = 3.6

# cos(latitude) floor, keeps longitude scaling finite at the poles
_MIN_COS_LAT = 1e-12

# Single Geod instance for WGS84 ellipsoid calculations
geod = Geod(ellps="WGS84")


def meters_per_deg_lon(lat):
    """Metres per degree of longitude at latitude ``lat`` (degrees)."""
    cos_lat = np.maximum(np.cos(np.radians(lat)), _MIN_COS_LAT)
    return METERS_PER_DEG_LAT * cos_lat


def deg_lat_per_meter():
    """Degrees of latitude per metre."""
    return 1.0 / METERS_PER_DEG_LAT


def deg_lon_per_meter(lat):
    """Degrees of longitude per metre at latitude ``lat`` (degrees)."""
    return 1.0 / meters_per_deg_lon(lat)


def degrees_to_meters(degrees, latitude=0.0):
    """
    Convert a distance in degrees to approximate metres at a given latitude.

    The latitude and longitude scales are averaged, which is good enough for
    bounding-box buffers but not for precise distances.

    Parameters
    ----------
    degrees : float or np.ndarray
        Distance in degrees.
    latitude : float, default=0.0
        Latitude (degrees) at which the longitude scale is evaluated.

    Returns
    -------
    float or np.ndarray
        Approximate distance in metres.
    """
    avg_meters = (METERS_PER_DEG_LAT + meters_per_deg_lon(latitude)) / 2.0
    return degrees * avg_meters


def meters_to_degrees(meters, latitude=0.0):
    """Inverse of :func:`degrees_to_meters`."""
    avg_meters = (METERS_PER_DEG_LAT + meters_per_deg_lon(latitude)) / 2.0
    return meters / avg_meters


def haversine_distance(lat1, lon1, lat2, lon2):
    """
    Great-circle distance between two points using the haversine formula.

    Works element-wise on numpy arrays as well as on plain floats.

    Parameters
    ----------
    lat1, lon1 : float or np.ndarray
        First point in WGS84 decimal degrees.
    lat2, lon2 : float or np.ndarray
        Second point in WGS84 decimal degrees.

    Returns
    -------
    float or np.ndarray
        Distance in metres on a sphere of radius ``EARTH_RADIUS_M``.

    Examples
    --------
    >>> from pyslk.utilities.geodesy import haversine_distance
    >>> d = haversine_distance(-31.9505, 115.8605, -33.8688, 151.2093)
    >>> print(f"Perth to Sydney: {d / 1000:.0f} km")  # ~3290 km
    """
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    d_phi = np.radians(np.subtract(lat2, lat1))
    d_lambda = np.radians(np.subtract(lon2, lon1))

    a = (np.sin(d_phi / 2.0) ** 2
         + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2.0) ** 2)
    # Clip guards against a drifting a few ulps above 1 for antipodal points
    a = np.clip(a, 0.0, 1.0)
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))

    distance = EARTH_RADIUS_M * c
    return float(distance) if np.ndim(distance) == 0 else distance


def calculate_bearing(lat1, lon1, lat2, lon2):
    """
    Forward azimuth (bearing) from point 1 to point 2.

    Uses pyproj's geodesic inverse on the WGS84 ellipsoid.

    Returns
    -------
    float
        Bearing in degrees, normalised to [0, 360). 0 = North, 90 = East.
        Coincident points give 0.
    """
    # geod.inv takes (lon, lat) order and returns (fwd_az, back_az, distance)
    fwd_az, _, _ = geod.inv(lon1, lat1, lon2, lat2)

    bearing = (fwd_az + 360.0) % 360.0
    # (-tiny + 360) % 360 rounds to exactly 360.0
    if not np.isfinite(bearing) or bearing >= 360.0:
        return 0.0
    return float(bearing)


def calculate_speed_ms(lat1, lon1, lat2, lon2, dt_ms):
    """
    Average speed in m/s between two fixes taken ``dt_ms`` milliseconds apart.

    Returns 0.0 when ``dt_ms`` is zero or negative.
    """
    if dt_ms <= 0:
        return 0.0
    distance_m = haversine_distance(lat1, lon1, lat2, lon2)
    return distance_m / (dt_ms / 1000.0)
