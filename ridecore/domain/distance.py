"""
Distance calculation using the Haversine formula.

Assumption
----------
We use great-circle (Haversine) distance instead of a real routing engine
(OSRM / Google Maps) to keep the core self-contained.  Actual trip distance,
when known, is reported by the driver app at completion and replaces this
estimate in the final fare.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def trip_distance_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Haversine distance rounded to 2 decimals, as quoted to riders."""
    return round(haversine_km(lat1, lng1, lat2, lng2), 2)


def in_range(
    lat1: float, lng1: float, lat2: float, lng2: float, max_km: float = 10.0
) -> bool:
    """Is a candidate at (lat2, lng2) within *max_km* of the pickup?"""
    return haversine_km(lat1, lng1, lat2, lng2) <= max_km
