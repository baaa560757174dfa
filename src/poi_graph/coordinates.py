"""
Coordinate handling: WKT POINT parsing, great-circle distance and the
bounding box used as a cheap server-side pre-filter.
"""

import logging
import math
import re
from typing import Optional, Tuple

import numpy as np

from poi_graph.errors import MalformedCoordinate
from poi_graph.models import BoundingBox

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0
# Floor for cos(lat) so the longitude delta stays finite at the poles
MIN_COS_LAT = 1e-5

_WKT_POINT = re.compile(r'^\s*POINT\s*\(\s*([^\s()]+)\s+([^\s()]+)\s*\)\s*$', re.IGNORECASE)


def parse_wkt(wkt: Optional[str]) -> Tuple[float, float]:
    """
    Parse a WKT point literal.

    Args:
        wkt: Literal of the form "POINT(lon lat)", case-insensitive, optional whitespace

    Returns:
        (lat, lon) tuple

    Raises:
        MalformedCoordinate: pattern mismatch, non-numeric token, or out-of-range value
    """
    if not wkt or not isinstance(wkt, str):
        raise MalformedCoordinate(f"Invalid or missing WKT: {wkt!r}")

    match = _WKT_POINT.match(wkt)
    if not match:
        raise MalformedCoordinate(f"Invalid WKT format: {wkt}")

    try:
        lon = float(match.group(1))
        lat = float(match.group(2))
    except ValueError:
        raise MalformedCoordinate(f"Invalid coordinates in WKT: {wkt}")

    if math.isnan(lat) or math.isnan(lon) or math.isinf(lat) or math.isinf(lon):
        raise MalformedCoordinate(f"Invalid coordinates in WKT: {wkt}")

    if lat < -90 or lat > 90 or lon < -180 or lon > 180:
        raise MalformedCoordinate(f"Coordinates out of range: lat={lat}, lon={lon}")

    return lat, lon


def try_parse_wkt(wkt: Optional[str]) -> Optional[Tuple[float, float]]:
    """Like parse_wkt, but returns None for malformed input."""
    try:
        return parse_wkt(wkt)
    except MalformedCoordinate as e:
        logger.debug(f"Dropping coordinate: {e}")
        return None


def haversine_km(lat1, lon1, lat2, lon2):
    """
    Great-circle distance in kilometers.

    Arguments may be floats or numpy arrays; arrays broadcast, so one center
    against arrays of points gives an array of distances.
    """
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    dlat = phi2 - phi1
    dlon = np.radians(lon2) - np.radians(lon1)
    a = np.sin(dlat / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def bounding_box(lat: float, lon: float, radius_km: float) -> BoundingBox:
    """
    Axis-aligned box that contains the circle of radius_km around (lat, lon).

    Over-approximates the circle; exact filtering happens after distance ranking.
    """
    delta_lat = radius_km / KM_PER_DEGREE
    cos_lat = max(abs(math.cos(math.radians(lat))), MIN_COS_LAT)
    delta_lon = radius_km / (KM_PER_DEGREE * cos_lat)
    return BoundingBox(
        min_lat=lat - delta_lat,
        max_lat=lat + delta_lat,
        min_lon=lon - delta_lon,
        max_lon=lon + delta_lon,
    )
