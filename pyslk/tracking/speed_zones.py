"""
Speed-zone lookup for pyslk.

A speed zone is a stretch of one road, delimited by SLK, with a posted limit.
This module answers two questions for a vehicle at a known SLK: what is the
limit here, and is a lower limit coming up soon enough to warn the driver.
"""

import math
from typing import Iterable, NamedTuple, Optional, Sequence

from pyslk.utilities.geodesy import MS_TO_KMH

DEFAULT_SPEED_LIMIT = 100


class SpeedZone(NamedTuple):
    """
    A posted speed limit over an SLK range of one road.

    ``start_slk`` and ``end_slk`` use the same units as the road's SLK values.
    Use :func:`make_zone` to get validation.
    """
    road_id: str
    start_slk: float
    end_slk: float
    speed_limit: int
    road_name: str = ""
    carriageway: str = ""


class UpcomingZone(NamedTuple):
    zone: SpeedZone
    distance_m: float


def make_zone(road_id, start_slk, end_slk, speed_limit, road_name="", carriageway=""):
    """
    Validated :class:`SpeedZone` constructor.

    Raises
    ------
    ValueError
        If the SLK bounds are not finite or ``end_slk < start_slk``.
    """
    start_slk = float(start_slk)
    end_slk = float(end_slk)
    if not (math.isfinite(start_slk) and math.isfinite(end_slk)):
        raise ValueError("Speed zone SLK bounds must be finite.")
    if end_slk < start_slk:
        raise ValueError(
            f"Speed zone on road {road_id!r} ends ({end_slk}) before it starts ({start_slk})."
        )
    return SpeedZone(str(road_id), start_slk, end_slk, int(speed_limit),
                     road_name, carriageway)


def sort_zones(zones: Iterable[SpeedZone]):
    """Zones ordered by ``start_slk``; equal starts keep their input order."""
    return sorted(zones, key=lambda z: z.start_slk)


def zone_at(zones: Sequence[SpeedZone], slk: float) -> Optional[SpeedZone]:
    """First zone whose [start_slk, end_slk] range contains ``slk``."""
    if slk is None or not math.isfinite(slk):
        return None
    for zone in zones:
        if zone.start_slk <= slk <= zone.end_slk:
            return zone
    return None


def speed_limit_at(zones: Sequence[SpeedZone], slk: float, default: int = DEFAULT_SPEED_LIMIT) -> int:
    """Posted limit at ``slk``, or ``default`` when no zone covers it."""
    zone = zone_at(zones, slk)
    return zone.speed_limit if zone is not None else default


def upcoming_decrease(
    zones: Sequence[SpeedZone],
    current_slk: float,
    current_limit: int,
    speed_kmh: float,
    lookahead_s: float,
    slk_unit_m: float = 1000.0,
    lag_compensation_s: float = 0.0,
    min_speed_kmh: float = 5.0,
) -> Optional[UpcomingZone]:
    """
    Find the next lower speed limit inside the lookahead window.

    Parameters
    ----------
    zones : sequence of SpeedZone
        Zones of the current road, sorted by ``start_slk``.
    current_slk : float
        Vehicle position in SLK units.
    current_limit : int
        Limit of the zone the vehicle is in.
    speed_kmh : float
        Current speed.
    lookahead_s : float
        How far ahead to look, in seconds of travel at ``speed_kmh``.
    slk_unit_m : float, default=1000.0
        Metres per SLK unit (1000 for SLK in kilometres).
    lag_compensation_s : float, default=0.0
        Extra seconds added to the window to cover GPS latency.
    min_speed_kmh : float, default=5.0
        Below this speed nothing is looked up.

    Returns
    -------
    UpcomingZone or None
        The first zone (in start order) starting in
        ``(current_slk, current_slk + window]`` whose limit is strictly lower
        than ``current_limit``. Zones with an equal or higher limit are never
        returned; a higher limit ahead is not a warning.

    Examples
    --------
    >>> zones = [SpeedZone("H005", 0.0, 1.0, 110), SpeedZone("H005", 1.08, 3.0, 50)]
    >>> hit = upcoming_decrease(zones, 1.0, 110, speed_kmh=100, lookahead_s=5)
    >>> print(f"{hit.zone.speed_limit} km/h in {hit.distance_m:.0f} m")
    """
    if not (math.isfinite(current_slk) and math.isfinite(speed_kmh)):
        return None
    if speed_kmh < min_speed_kmh:
        return None

    speed_ms = speed_kmh / MS_TO_KMH
    window_m = speed_ms * (lookahead_s + lag_compensation_s)
    window_slk = window_m / slk_unit_m
    horizon = current_slk + window_slk

    for zone in zones:
        if zone.start_slk <= current_slk:
            continue
        if zone.start_slk > horizon:
            # Zones are sorted, nothing further can be in the window
            break
        if zone.speed_limit < current_limit:
            return UpcomingZone(
                zone=zone,
                distance_m=(zone.start_slk - current_slk) * slk_unit_m,
            )
    return None
