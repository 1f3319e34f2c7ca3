"""Coordinate validity and great-circle distance helpers."""

import math

EARTH_RADIUS_KM = 6371.0


def are_valid_coordinates(lat: float, lon: float) -> bool:
    """True if (lat, lon) is in range and neither component is exactly zero.

    A zero component is treated as missing data (null island), not as a
    real location on the equator or prime meridian.
    """
    return (
        lat != 0 and lon != 0
        and -90 <= lat <= 90
        and -180 <= lon <= 180
    )


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometers, rounded to 2 decimal places."""
    rlat1, rlon1 = math.radians(lat1), math.radians(lon1)
    rlat2, rlon2 = math.radians(lat2), math.radians(lon2)

    dlat = rlat2 - rlat1
    dlon = rlon2 - rlon1

    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(math.sqrt(a))

    return round(EARTH_RADIUS_KM * c, 2)
