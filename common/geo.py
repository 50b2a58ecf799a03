"""Great-circle distance helpers."""

import math
from typing import Mapping

from common.constants import EARTH_RADIUS_KM


def distance_km(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """
    Haversine distance between two points.

    Args:
        a: Mapping with ``latitude`` and ``longitude`` in degrees
        b: Mapping with ``latitude`` and ``longitude`` in degrees

    Returns:
        Distance in kilometres. NaN inputs yield NaN.
    """
    lat1 = math.radians(a["latitude"])
    lat2 = math.radians(b["latitude"])
    d_lat = lat2 - lat1
    d_lon = math.radians(b["longitude"] - a["longitude"])

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    if h > 1.0:
        # rounding near antipodal points
        h = 1.0
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
