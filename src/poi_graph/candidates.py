"""
Bounding-box candidate retrieval across the per-type graphs.
"""

import logging
import math
from typing import List, Optional, Sequence

from poi_graph.coordinates import bounding_box
from poi_graph.errors import GraphStoreUnavailable, InvalidSearchRequest
from poi_graph.graph_catalog import GraphCatalog
from poi_graph.models import RawRow
from poi_graph.query_builder import NearbyCandidateQuery

logger = logging.getLogger(__name__)


def validate_center(lat, lon, radius_km) -> None:
    """Raise InvalidSearchRequest for a missing/NaN center or non-positive radius."""
    for label, value in (("lat", lat), ("lon", lon), ("radiusKm", radius_km)):
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidSearchRequest(f"{label} must be a number")
        if math.isnan(value) or math.isinf(value):
            raise InvalidSearchRequest(f"{label} must be a finite number")
    if not -90 <= lat <= 90:
        raise InvalidSearchRequest(f"lat out of range: {lat}")
    if not -180 <= lon <= 180:
        raise InvalidSearchRequest(f"lon out of range: {lon}")
    if radius_km <= 0:
        raise InvalidSearchRequest("radiusKm must be > 0")


class CandidateFetcher:
    """Runs the federated nearby query and returns raw rows."""

    def __init__(self, store, catalog: GraphCatalog, iot_graph: Optional[str] = None):
        self.store = store
        self.catalog = catalog
        self.iot_graph = iot_graph

    def fetch(self, lat: float, lon: float, radius_km: float,
              type_keys: Optional[Sequence[str]] = None, limit: int = 100,
              include_iot: bool = False) -> List[RawRow]:
        """
        Args:
            lat, lon: Search center
            radius_km: Search radius, > 0
            type_keys: Type keys to search; None or empty searches every graph
            limit: Requested result count; the raw row cap is derived from it
            include_iot: Join IoT coverage stations into each row

        Returns:
            Raw rows, one per (POI, name variant)

        Raises:
            InvalidSearchRequest: bad center or radius
            GraphStoreUnavailable: the graph store failed
        """
        validate_center(lat, lon, radius_km)

        graphs = self.catalog.resolve_graphs(type_keys)
        if not graphs:
            logger.warning(f"No graphs resolved for types {list(type_keys or [])}")
            return []

        query = NearbyCandidateQuery(
            graphs=graphs,
            bbox=bounding_box(lat, lon, radius_km),
            limit=limit,
            iot_graph=self.iot_graph if include_iot else None,
        )
        logger.info(f"Querying {len(graphs)} graphs within {radius_km} km of ({lat}, {lon})")
        try:
            rows = self.store.select(query.build())
        except GraphStoreUnavailable as e:
            logger.error(f"Candidate fetch failed: {e}")
            raise
        logger.info(f"Candidate query returned {len(rows)} rows")
        return rows
