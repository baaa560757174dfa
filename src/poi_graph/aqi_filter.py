"""
Air-quality post-filter. Runs after sensor fusion since AQI is not stored
in the graph.
"""

import logging
from typing import List, Optional

from poi_graph.models import Poi

logger = logging.getLogger(__name__)

LIMIT_INFLATION = 3


def has_bounds(min_aqi: Optional[float], max_aqi: Optional[float]) -> bool:
    return min_aqi is not None or max_aqi is not None


def inflate_limit(limit: int, has_filter: bool) -> int:
    return limit * LIMIT_INFLATION if has_filter else limit


def apply(pois: List[Poi], min_aqi: Optional[float] = None, max_aqi: Optional[float] = None) -> List[Poi]:
    """Keep POIs whose AQI is within the bounds. Unknown AQI never passes."""
    if not has_bounds(min_aqi, max_aqi):
        return pois

    kept = []
    for poi in pois:
        aqi = poi.sensor_data.aqi if poi.sensor_data is not None else None
        if aqi is None:
            continue
        if min_aqi is not None and aqi < min_aqi:
            continue
        if max_aqi is not None and aqi > max_aqi:
            continue
        kept.append(poi)
    logger.info(f"AQI filter [{min_aqi}, {max_aqi}]: {len(kept)} of {len(pois)} POIs kept")
    return kept
