"""
POI -> sensing device coverage from the IoT coverage graph.
"""

import logging
from collections import OrderedDict
from typing import Dict, Optional, Sequence

from poi_graph.errors import GraphStoreUnavailable
from poi_graph.query_builder import CoverageQuery
from poi_graph.sparql_client import SparqlGraphStore, batched

logger = logging.getLogger(__name__)


class DeviceCoverageResolver:
    def __init__(self, store: SparqlGraphStore, iot_graph: Optional[str],
                 batch_size: int = SparqlGraphStore.DEFAULT_BATCH_SIZE):
        self.store = store
        self.iot_graph = iot_graph
        self.batch_size = batch_size

    def resolve(self, poi_uris: Sequence[str]) -> Dict[str, str]:
        """
        Map each covered POI URI to its device URI.

        A POI without an entry has no coverage. When the coverage graph is not
        configured or the query fails, the map is empty.
        """
        uris = list(OrderedDict.fromkeys(u for u in poi_uris if u))
        if not uris or not self.iot_graph:
            return {}

        coverage: Dict[str, str] = {}
        try:
            for batch in batched(uris, self.batch_size):
                rows = self.store.select(CoverageQuery(self.iot_graph, batch).build())
                for row in rows:
                    poi_uri, device = row.get("poi"), row.get("device")
                    if poi_uri and device:
                        coverage.setdefault(poi_uri, device)
        except GraphStoreUnavailable as e:
            logger.warning(f"Device coverage unavailable: {e}")
            return {}

        logger.info(f"Device coverage: {len(coverage)} of {len(uris)} POIs covered")
        return coverage
