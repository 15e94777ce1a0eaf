"""
Great-circle distance with memoization.
"""
import math
from functools import lru_cache

# Earth's mean radius in kilometers
EARTH_RADIUS_KM = 6371.0


@lru_cache(maxsize=10000)
def haversine_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth using the Haversine formula.

    Memoized with an LRU cache so repeated incident/route comparisons with the
    same coordinate pairs are cheap.

    Args:
        lat1: Latitude of the first point in decimal degrees (-90 to 90)
        lon1: Longitude of the first point in decimal degrees (-180 to 180)
        lat2: Latitude of the second point in decimal degrees (-90 to 90)
        lon2: Longitude of the second point in decimal degrees (-180 to 180)

    Returns:
        Distance between the two points in kilometers

    Examples:
        >>> # Miami to West Palm Beach
        >>> round(haversine_distance_km(25.7617, -80.1918, 26.7153, -80.0534))
        107

        >>> # Same point (should be 0)
        >>> haversine_distance_km(26.1224, -80.1373, 26.1224, -80.1373)
        0.0

    Note:
        Does NOT validate coordinates - caller is responsible for validation.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c

