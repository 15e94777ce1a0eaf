"""
Geospatial utilities for the hazard map.
Includes route corridor bounds, grid bucketing and radius filtering.
"""
import math
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from utils.distance import haversine_distance_km

# 1 degree of latitude is roughly 111 km; used for buffer conversion
KM_PER_DEGREE = 111.0

# Grid scale for bucket keys: 1000 cells per degree (~111 m per cell)
BUCKET_SCALE = 1000


@dataclass(frozen=True)
class SpatialBounds:
    """Axis-aligned rectangle in degrees."""
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lng: float) -> bool:
        """Inclusive point-in-rectangle check. No antimeridian wraparound."""
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def to_dict(self) -> dict:
        return {
            'north': self.north,
            'south': self.south,
            'east': self.east,
            'west': self.west
        }


def route_bounds(
    start_lat: float,
    start_lon: float,
    end_lat: float,
    end_lon: float,
    buffer_km: float = 2
) -> SpatialBounds:
    """
    Calculate the bounding box around a route corridor, expanded by a buffer.

    The buffer is converted from kilometers to degrees with the flat
    1° ≈ 111 km approximation, on both axes.

    Args:
        start_lat: Route start latitude
        start_lon: Route start longitude
        end_lat: Route end latitude
        end_lon: Route end longitude
        buffer_km: Corridor buffer in kilometers (default: 2)

    Returns:
        SpatialBounds covering both endpoints plus the buffer

    Examples:
        >>> b = route_bounds(26.0, -80.2, 26.2, -80.1, buffer_km=11.1)
        >>> round(b.north, 4), round(b.south, 4), round(b.east, 4), round(b.west, 4)
        (26.3, 25.9, -80.0, -80.3)
    """
    buffer_degrees = buffer_km / KM_PER_DEGREE

    return SpatialBounds(
        north=max(start_lat, end_lat) + buffer_degrees,
        south=min(start_lat, end_lat) - buffer_degrees,
        east=max(start_lon, end_lon) + buffer_degrees,
        west=min(start_lon, end_lon) - buffer_degrees
    )


def bucket_cell(lat: float, lng: float) -> Tuple[int, int]:
    """Grid cell indices for a coordinate."""
    return (
        math.floor((lat + 90) * BUCKET_SCALE),
        math.floor((lng + 180) * BUCKET_SCALE)
    )


def bucket_key(lat: float, lng: float) -> str:
    """
    Deterministic grid bucket key for a coordinate.

    Points in the same ~111 m grid cell share a key. The key is only used to
    narrow candidates; callers must re-check true coordinates against bounds.

    Examples:
        >>> bucket_key(26.1224, -80.1373)
        '116122_99862'
    """
    lat_cell, lng_cell = bucket_cell(lat, lng)
    return f"{lat_cell}_{lng_cell}"


def parse_bucket_key(key: str) -> Tuple[int, int]:
    """Inverse of bucket_key: returns the (lat_cell, lng_cell) pair."""
    lat_part, lng_part = key.split('_', 1)
    return int(lat_part), int(lng_part)


def bucket_range(bounds: SpatialBounds) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """
    Inclusive range of grid cells covering a bounds rectangle.

    Returns:
        ((min_lat_cell, max_lat_cell), (min_lng_cell, max_lng_cell))
    """
    south_cell, west_cell = bucket_cell(bounds.south, bounds.west)
    north_cell, east_cell = bucket_cell(bounds.north, bounds.east)
    return (south_cell, north_cell), (west_cell, east_cell)


def bucket_in_bounds(key: str, bounds: SpatialBounds) -> bool:
    """True if the bucket's cell intersects the bounds rectangle."""
    (lat_lo, lat_hi), (lng_lo, lng_hi) = bucket_range(bounds)
    lat_cell, lng_cell = parse_bucket_key(key)
    return lat_lo <= lat_cell <= lat_hi and lng_lo <= lng_cell <= lng_hi


def filter_by_distance(incidents: Iterable, center_lat: float, center_lng: float, max_distance_km: float) -> List:
    """Keep incidents whose (lat, lng) lies within max_distance_km of the center."""
    return [
        incident for incident in incidents
        if haversine_distance_km(center_lat, center_lng, incident.lat, incident.lng) <= max_distance_km
    ]

