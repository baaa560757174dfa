"""
Caller-facing search operations.

NearbySearchService wires the pipeline stages together:
candidates -> dedup -> ranking -> topology -> device coverage -> sensors -> AQI filter.
Only the candidate fetch is fatal; every later stage degrades to "no
enrichment" on failure or when the request deadline has passed.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence

from poi_graph import aqi_filter, ranking
from poi_graph.candidates import CandidateFetcher, validate_center
from poi_graph.coordinates import try_parse_wkt
from poi_graph.deadline import Deadline
from poi_graph.dedup import DEFAULT_LANGUAGE, deduplicate, merge_variants, normalize_language
from poi_graph.devices import DeviceCoverageResolver
from poi_graph.errors import InvalidSearchRequest
from poi_graph.graph_catalog import GraphCatalog, classify_poi_type, normalize_type_key
from poi_graph.models import NearbyResult, Poi, TopologySearchResult
from poi_graph.schema_cache import TtlLruPredicateCache
from poi_graph.schema_introspector import SchemaIntrospector
from poi_graph.sensor_fusion import DEFAULT_MAX_CONCURRENT, SensorFusion
from poi_graph.sparql_client import LANG_SUFFIX, SparqlGraphStore
from poi_graph.timeseries import InfluxTimeSeriesClient
from poi_graph.topology import DEFAULT_TOPOLOGY_GRAPH, TopologyEnricher
from poi_graph.vocabulary import EXT, SCHEMA, RDFS

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_TOPOLOGY_LIMIT = 50
MAX_RESULT_LIMIT = 200
RELATED_SET_LIMIT = 100
TARGET_LIMIT_FACTOR = 2
DEFAULT_DEADLINE_SECONDS = 20.0

# Predicate URI -> Poi attribute for the type-browsing listing
_BROWSE_FIELDS = {
    str(SCHEMA["name"]): "name",
    str(RDFS.label): "name",
    str(EXT.amenity): "amenity",
    str(EXT.highway): "highway",
    str(EXT.leisure): "leisure",
    str(SCHEMA.brand): "brand",
    str(SCHEMA.operator): "operator",
}


def clamp_limit(limit: Optional[int], default: int, maximum: int = MAX_RESULT_LIMIT) -> int:
    if limit is None:
        return default
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise InvalidSearchRequest(f"limit must be an integer: {limit!r}")
    return min(max(value, 1), maximum)


class NearbySearchService:
    def __init__(self, store: SparqlGraphStore, catalog: GraphCatalog,
                 topology: TopologyEnricher, devices: DeviceCoverageResolver,
                 sensors: Optional[SensorFusion] = None,
                 introspector: Optional[SchemaIntrospector] = None,
                 iot_graph: Optional[str] = None,
                 max_result_limit: int = MAX_RESULT_LIMIT,
                 deadline_seconds: Optional[float] = DEFAULT_DEADLINE_SECONDS):
        self.store = store
        self.catalog = catalog
        self.candidates = CandidateFetcher(store, catalog, iot_graph=iot_graph)
        self.topology = topology
        self.devices = devices
        self.sensors = sensors
        self.introspector = introspector or SchemaIntrospector(store)
        self.max_result_limit = max_result_limit
        self.deadline_seconds = deadline_seconds

    @classmethod
    def from_config(cls, config: Dict, graphs_config: Optional[Dict] = None) -> "NearbySearchService":
        store = SparqlGraphStore.from_config(config)
        catalog = GraphCatalog.from_config(config, graphs_config)
        iot_graph = config.get("iot_coverage_graph")
        topology_graph = config.get("topology_graph") or DEFAULT_TOPOLOGY_GRAPH
        cache = TtlLruPredicateCache(
            max_entries=config.get("schema_cache_size", 256),
            ttl_seconds=config.get("schema_cache_ttl", 600),
        )
        return cls(
            store=store,
            catalog=catalog,
            topology=TopologyEnricher(store, topology_graph, iot_graph=iot_graph),
            devices=DeviceCoverageResolver(store, iot_graph),
            sensors=SensorFusion(
                InfluxTimeSeriesClient.from_config(config),
                max_concurrent=config.get("sensor_max_concurrent", DEFAULT_MAX_CONCURRENT),
            ),
            introspector=SchemaIntrospector(store, cache),
            iot_graph=iot_graph,
            max_result_limit=config.get("max_result_limit", MAX_RESULT_LIMIT),
            deadline_seconds=config.get("request_deadline_seconds", DEFAULT_DEADLINE_SECONDS),
        )

    def _ranked(self, lat: float, lon: float, radius_km: float, types: Optional[Sequence[str]],
                limit: int, language: str, include_iot: bool = False) -> List[Poi]:
        rows = self.candidates.fetch(lat, lon, radius_km, type_keys=types, limit=limit, include_iot=include_iot)
        pois = deduplicate(rows, language)
        return ranking.rank(lat, lon, pois, radius_km, limit)

    def _enrich_sensors(self, pois: List[Poi], deadline: Deadline) -> None:
        if deadline.expired():
            logger.warning("Deadline reached before device coverage, skipping sensor enrichment")
            return
        coverage = self.devices.resolve([poi.uri for poi in pois])
        if not coverage:
            return
        if self.sensors is None or deadline.expired():
            SensorFusion.attach(pois, coverage, {})
            return
        snapshots = self.sensors.fuse(coverage.values(), deadline=deadline)
        SensorFusion.attach(pois, coverage, snapshots)

    def search_nearby(self, lat: float, lon: float, radius_km: float,
                      types: Optional[Sequence[str]] = None, language: str = DEFAULT_LANGUAGE,
                      include_topology: bool = True, include_iot: bool = False,
                      include_sensors: Optional[bool] = None,
                      min_aqi: Optional[float] = None, max_aqi: Optional[float] = None,
                      limit: Optional[int] = None) -> NearbyResult:
        """
        POIs within radius_km of (lat, lon), nearest first.

        include_sensors defaults to include_iot; an AQI bound always turns
        sensor enrichment on.

        Raises:
            InvalidSearchRequest: bad center, radius or limit
            GraphStoreUnavailable: the candidate query failed
        """
        validate_center(lat, lon, radius_km)
        language = normalize_language(language)
        limit = clamp_limit(limit, DEFAULT_LIMIT, self.max_result_limit)
        deadline = Deadline(self.deadline_seconds)

        filtering = aqi_filter.has_bounds(min_aqi, max_aqi)
        upstream_limit = aqi_filter.inflate_limit(limit, filtering)
        pois = self._ranked(lat, lon, radius_km, types, upstream_limit, language, include_iot)
        logger.info(f"searchNearby: {len(pois)} POIs within {radius_km} km")

        if include_topology and pois:
            if deadline.expired():
                logger.warning("Deadline reached, skipping topology enrichment")
            else:
                self.topology.fetch_topology(pois, language)

        if include_sensors is None:
            include_sensors = include_iot
        if (include_sensors or filtering) and pois:
            self._enrich_sensors(pois, deadline)

        if filtering:
            pois = aqi_filter.apply(pois, min_aqi, max_aqi)
        return NearbyResult(lat, lon, radius_km, pois[:limit])

    def search_nearby_with_topology(self, lat: float, lon: float, radius_km: float,
                                    target_type: str, related_types: Sequence[str],
                                    relationship: Optional[str] = "isNextTo",
                                    limit: Optional[int] = None,
                                    language: str = DEFAULT_LANGUAGE) -> TopologySearchResult:
        """
        target_type POIs near (lat, lon) that are related to a POI of one of
        related_types.

        When no relationship connects the two sets, the unfiltered target
        list is returned with no_topology_found set.
        """
        validate_center(lat, lon, radius_km)
        if not target_type or not target_type.strip():
            raise InvalidSearchRequest("targetType is required")
        related_types = [t for t in (related_types or []) if t and t.strip()]
        if not related_types:
            raise InvalidSearchRequest("relatedTypes must contain at least one type")
        relationship = relationship or "isNextTo"
        language = normalize_language(language)
        limit = clamp_limit(limit, DEFAULT_TOPOLOGY_LIMIT, self.max_result_limit)
        deadline = Deadline(self.deadline_seconds)

        result = TopologySearchResult(lat, lon, radius_km, target_type, list(related_types), relationship)

        with ThreadPoolExecutor(max_workers=2) as executor:
            targets_future = executor.submit(
                self._ranked, lat, lon, radius_km, [target_type], limit * TARGET_LIMIT_FACTOR, language)
            related_future = executor.submit(
                self._ranked, lat, lon, radius_km, related_types, RELATED_SET_LIMIT, language)
            targets = targets_future.result()
            related = related_future.result()

        if not targets:
            logger.warning(f"No {target_type} found in radius")
            return result

        links = []
        if related and not deadline.expired():
            links = self.topology.link_sets(targets, related, relationship)

        if not links:
            logger.warning(f"No topology relationships between {target_type} and {related_types}, "
                           f"returning all {target_type} without filtering")
            items = targets[:limit]
            for item in items:
                item.related_entities = []
            result.items = items
            result.no_topology_found = True
            result.message = (f"No {relationship} relationship found between {target_type} and "
                              f"{', '.join(related_types)} in this area; showing all {target_type} results.")
            return result

        related_by_uri = {poi.uri: poi for poi in related}
        linked: Dict[str, List[str]] = {}
        for target_uri, related_uri in links:
            linked.setdefault(target_uri, []).append(related_uri)

        items = [poi for poi in targets if poi.uri in linked][:limit]
        for item in items:
            item.related_entities = [related_by_uri.get(uri) or Poi(uri=uri) for uri in linked[item.uri]]
        logger.info(f"Filtered down to {len(items)} {target_type} with topology relationships")

        if deadline.expired():
            logger.warning("Deadline reached, skipping topology enrichment")
        else:
            self.topology.fetch_topology(items, language)
        result.items = items
        return result

    def browse_by_type(self, type_key: str, limit: Optional[int] = None,
                       language: str = DEFAULT_LANGUAGE) -> Dict[str, Any]:
        """
        List POIs of one type using the predicates its graph actually holds.
        """
        canonical = normalize_type_key(type_key)
        if canonical is None:
            raise InvalidSearchRequest(f"Unknown POI type: {type_key}")
        graph_uri = self.catalog.graph_for(canonical)
        limit = clamp_limit(limit, DEFAULT_LIMIT, self.max_result_limit)
        language = normalize_language(language)

        predicates = self.introspector.list_predicates(graph_uri)
        query = self.introspector.build_selective_query(graph_uri, predicates, limit)
        variables = query.variables()
        rows = self.store.select(query.build())

        pois = []
        for row in rows:
            coords = try_parse_wkt(row.get("wkt"))
            if not row.get("s") or coords is None:
                continue
            poi = Poi(uri=row["s"], wkt=row.get("wkt"), lat=coords[0], lon=coords[1])
            for var, predicate in variables.items():
                attr = _BROWSE_FIELDS.get(predicate)
                if attr and row.get(var) and getattr(poi, attr) is None:
                    setattr(poi, attr, row[var])
                    if attr == "name":
                        poi.name_lang = row.get(f"{var}{LANG_SUFFIX}")
            if not poi.category:
                fields = classify_poi_type(canonical)
                poi.amenity, poi.highway, poi.leisure = fields["amenity"], fields["highway"], fields["leisure"]
            pois.append(poi)

        pois = merge_variants(pois, language)
        logger.info(f"Listed {len(pois)} {canonical} POIs from {graph_uri}")
        return {
            "type": canonical,
            "graph": graph_uri,
            "count": len(pois),
            "results": [poi.to_dict(include_enrichment=False) for poi in pois],
        }

    def list_graphs(self) -> List[Dict[str, Any]]:
        return self.store.list_graphs()
