"""
Topology enrichment from the topology named graph.

Edges are stored in one direction only (A isNextTo B) but are read in both,
so a POI sees its relationship whichever side of the triple it sits on.
The same logical edge reached from both directions collapses to one.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from poi_graph.coordinates import try_parse_wkt
from poi_graph.dedup import DEFAULT_LANGUAGE, choose_name, promote_category
from poi_graph.errors import GraphStoreUnavailable
from poi_graph.models import Poi, TopologyEdge
from poi_graph.query_builder import TopologyLinkQuery, TopologyQuery
from poi_graph.sparql_client import SparqlGraphStore, batched
from poi_graph.vocabulary import DEFAULT_RELATIONSHIP_EXPANSION, RELATIONSHIP_EXPANSIONS

logger = logging.getLogger(__name__)

DEFAULT_TOPOLOGY_GRAPH = "http://localhost:3030/graph/topology"

_RELATED_FIELDS = {
    "relatedWkt": "wkt",
    "relatedAmenity": "amenity",
    "relatedHighway": "highway",
    "relatedLeisure": "leisure",
    "relatedBrand": "brand",
    "relatedOperator": "operator",
    "relatedDevice": "device",
}


def expand_relationship(relationship: Optional[str]) -> List[str]:
    """
    Predicates covered by a caller-facing relationship name.

    Only isNextTo, containedInPlace and amenityFeature have their own
    expansion. Any other name, including healthcareNetwork and campusAmenity,
    falls back to isNextTo + containedInPlace + amenityFeature and so does
    not match its own predicate.
    """
    return list(RELATIONSHIP_EXPANSIONS.get(relationship or "", DEFAULT_RELATIONSHIP_EXPANSION))


class _EdgeAccumulator:
    """Collects the (possibly many) rows describing one related entity."""

    def __init__(self, related_uri: str):
        self.related_uri = related_uri
        self.names: List[str] = []
        self.fields: Dict[str, str] = {}
        self.types: List[str] = []

    def add(self, row: Dict[str, str]) -> None:
        name = row.get("relatedName")
        if name and name not in self.names:
            self.names.append(name)
        for var, attr in _RELATED_FIELDS.items():
            value = row.get(var)
            if value and attr not in self.fields:
                self.fields[attr] = value
        related_type = row.get("relatedType")
        if related_type and related_type not in self.types:
            self.types.append(related_type)

    def to_poi(self, language: str) -> Poi:
        related = Poi(
            uri=self.related_uri,
            name=choose_name(self.names, language),
            amenity=self.fields.get("amenity"),
            highway=self.fields.get("highway"),
            leisure=self.fields.get("leisure"),
            brand=self.fields.get("brand"),
            operator=self.fields.get("operator"),
            device=self.fields.get("device"),
            types=list(self.types),
        )
        wkt = self.fields.get("wkt")
        if wkt:
            related.wkt = wkt
            coords = try_parse_wkt(wkt)
            if coords is not None:
                related.lat, related.lon = coords
        promote_category(related)
        return related


class TopologyEnricher:
    def __init__(self, store: SparqlGraphStore, topology_graph: str = DEFAULT_TOPOLOGY_GRAPH,
                 iot_graph: Optional[str] = None, batch_size: int = SparqlGraphStore.DEFAULT_BATCH_SIZE):
        self.store = store
        self.topology_graph = topology_graph
        self.iot_graph = iot_graph
        self.batch_size = batch_size

    def fetch_edges(self, poi_uris: Sequence[str], language: str = DEFAULT_LANGUAGE) -> Dict[str, List[TopologyEdge]]:
        """
        All edges touching the given POIs, keyed by POI URI.

        Raises:
            GraphStoreUnavailable: the topology query failed
        """
        uris = list(OrderedDict.fromkeys(u for u in poi_uris if u))
        accumulators: "OrderedDict[Tuple[str, str, str], _EdgeAccumulator]" = OrderedDict()

        for batch in batched(uris, self.batch_size):
            query = TopologyQuery(self.topology_graph, batch, iot_graph=self.iot_graph).build()
            for row in self.store.select(query):
                poi_uri, predicate, related_uri = row.get("poi"), row.get("predicate"), row.get("related")
                if not (poi_uri and predicate and related_uri) or poi_uri == related_uri:
                    continue
                key = (poi_uri, predicate, related_uri)
                if key not in accumulators:
                    accumulators[key] = _EdgeAccumulator(related_uri)
                accumulators[key].add(row)

        edges: Dict[str, List[TopologyEdge]] = {}
        for (poi_uri, predicate, _), acc in accumulators.items():
            edges.setdefault(poi_uri, []).append(TopologyEdge(predicate, acc.to_poi(language)))
        logger.info(f"Topology: {len(accumulators)} edges for {len(edges)} of {len(uris)} POIs")
        return edges

    def fetch_topology(self, pois: List[Poi], language: str = DEFAULT_LANGUAGE) -> List[Poi]:
        """
        Attach topology edges to each POI in place.

        A failed topology query leaves every POI with an empty edge list.
        """
        if not pois:
            return pois
        try:
            edges = self.fetch_edges([poi.uri for poi in pois], language)
        except GraphStoreUnavailable as e:
            logger.warning(f"Topology enrichment unavailable: {e}")
            edges = {}
        for poi in pois:
            poi.topology = edges.get(poi.uri, [])
        return pois

    def link_sets(self, targets: Sequence[Poi], related: Sequence[Poi],
                  relationship: Optional[str] = "isNextTo") -> List[Tuple[str, str]]:
        """
        (target_uri, related_uri) pairs connected by the relationship in
        either storage direction, deduplicated in first-seen order.
        """
        if not targets or not related:
            return []
        predicates = expand_relationship(relationship)
        target_uris = list(OrderedDict.fromkeys(p.uri for p in targets))
        related_uris = list(OrderedDict.fromkeys(p.uri for p in related))
        query = TopologyLinkQuery(self.topology_graph, target_uris, related_uris, predicates).build()
        try:
            rows = self.store.select(query)
        except GraphStoreUnavailable as e:
            logger.warning(f"Topology link query failed: {e}")
            return []

        links = OrderedDict()
        for row in rows:
            target_uri, related_uri = row.get("targetPoi"), row.get("relatedPoi")
            if target_uri and related_uri and target_uri != related_uri:
                links[(target_uri, related_uri)] = None
        logger.info(f"Found {len(links)} {relationship} links between "
                    f"{len(target_uris)} targets and {len(related_uris)} related POIs")
        return list(links)
