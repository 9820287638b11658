"""
tracking/services/geometry.py

Pure distance and speed helpers. No state, no I/O.
"""

import math

from tracking.constants import (
    EARTH_RADIUS_M,
    FAST_JUMP_SPEED_MPH,
    FAST_JUMP_WINDOW_MS,
    MAX_PLAUSIBLE_SPEED_MPH,
    MPS_TO_MPH,
)
from tracking.schemas import RawFix


def distance_meters(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """
    Calculate the great-circle distance between two points in meters.

    Uses the Haversine formula with Earth radius = 6,371,000 meters.
    The haversine term is clamped to [0, 1] so antipodal points stay finite.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def derived_speed_mph(first: RawFix, second: RawFix) -> float:
    """
    Speed implied by travelling from `first` to `second`, in mph.

    Returns 0.0 when the fixes are not in increasing time order.
    Plausibility is the caller's concern (see is_implausible_speed).
    """
    elapsed_ms = second.timestamp_ms - first.timestamp_ms
    if elapsed_ms <= 0:
        return 0.0
    meters = distance_meters(
        first.latitude, first.longitude, second.latitude, second.longitude
    )
    return meters / (elapsed_ms / 1000) * MPS_TO_MPH


def is_implausible_speed(speed_mph: float, elapsed_ms: int) -> bool:
    """True for readings that can only be GPS jumps."""
    if speed_mph > MAX_PLAUSIBLE_SPEED_MPH:
        return True
    return speed_mph > FAST_JUMP_SPEED_MPH and elapsed_ms < FAST_JUMP_WINDOW_MS


def round_half_up(value: float) -> int:
    """Round non-negative readings the way the devices display them (2.5 -> 3)."""
    return int(math.floor(value + 0.5))
