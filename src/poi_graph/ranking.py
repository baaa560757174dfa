"""
Distance ranking over deduplicated candidates.

Distances are computed in one vectorised haversine pass with numpy; the
bounding-box over-approximation is corrected here by dropping everything
beyond the true radius.
"""

import logging
from typing import List, Optional

import numpy as np

from poi_graph.coordinates import haversine_km
from poi_graph.models import Poi

logger = logging.getLogger(__name__)

RADIUS_TOLERANCE_KM = 1e-9


def rank(center_lat: float, center_lon: float, pois: List[Poi], radius_km: float,
         limit: Optional[int] = None) -> List[Poi]:
    """
    Set distance_km on each POI, keep those within radius_km, sort by
    (distance, uri) and truncate to limit.
    """
    located = [poi for poi in pois if poi.has_coordinates]
    if not located:
        return []

    lats = np.array([poi.lat for poi in located], dtype=float)
    lons = np.array([poi.lon for poi in located], dtype=float)
    distances = haversine_km(center_lat, center_lon, lats, lons)

    within = []
    for poi, distance in zip(located, distances):
        poi.distance_km = float(distance)
        if poi.distance_km <= radius_km + RADIUS_TOLERANCE_KM:
            within.append(poi)

    within.sort(key=lambda p: (p.distance_km, p.uri))
    if limit is not None:
        within = within[:max(0, int(limit))]
    logger.debug(f"Ranked {len(within)} of {len(located)} candidates within {radius_km} km")
    return within
