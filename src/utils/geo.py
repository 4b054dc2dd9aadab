import math
from typing import Optional

from geopy.distance import geodesic  # type: ignore

from src.models.discovery import BoundingBox

# Kilometers per degree of latitude (and of longitude at the equator)
KM_PER_DEGREE = 111.0

# Keeps the longitude span finite near the poles
MIN_COS_LAT = 1e-6


def bounding_box(lat: float, lon: float, radius_km: float) -> BoundingBox:
    """Compute the coarse rectangle around a center point for a radius search.

    The box is ``radius / 111`` degrees tall and
    ``radius / (111 * cos(lat))`` degrees wide. It over-covers the circle,
    so candidates near the corners are false positives.

    Args:
        lat: Latitude of the center in decimal degrees.
        lon: Longitude of the center in decimal degrees.
        radius_km: Search radius in kilometers.

    Returns:
        The bounding box.
    """
    if radius_km < 0:
        raise ValueError("radius_km must not be negative")

    lat_range = radius_km / KM_PER_DEGREE
    cos_lat = max(MIN_COS_LAT, abs(math.cos(math.radians(lat))))
    lon_range = radius_km / (KM_PER_DEGREE * cos_lat)

    return BoundingBox(
        min_lat=lat - lat_range,
        max_lat=lat + lat_range,
        min_lon=lon - lon_range,
        max_lon=lon + lon_range,
    )


def distance_km(lat1: float, lon1: float, lat2: Optional[float], lon2: Optional[float]) -> Optional[float]:
    """Geodesic distance in kilometers, or None when the second point has no coordinates."""
    if lat2 is None or lon2 is None:
        return None
    return float(geodesic((lat1, lon1), (lat2, lon2)).kilometers)
