from unittest.mock import MagicMock

import pytest

from poi_graph.devices import DeviceCoverageResolver
from poi_graph.errors import GraphStoreUnavailable, InvalidSearchRequest
from poi_graph.graph_catalog import GraphCatalog
from poi_graph.search import NearbySearchService, clamp_limit
from poi_graph.sensor_fusion import SensorFusion
from poi_graph.topology import TopologyEnricher

from conftest import (
    CANDIDATES,
    CENTER_LAT,
    CENTER_LON,
    COVERAGE,
    LINKS,
    PREDICATES,
    SELECTIVE,
    TOPOLOGY,
    FakeGraphStore,
    candidate_row,
    coverage_handler,
    links_handler,
    topology_handler,
)

TOPO = "http://localhost:3030/graph/topology"
IOT = "http://localhost:3030/graph/iot-coverage"


def _service(store, sensors=None, deadline_seconds=20.0):
    return NearbySearchService(
        store=store,
        catalog=GraphCatalog("http://localhost:3030/graph"),
        topology=TopologyEnricher(store, TOPO, iot_graph=IOT),
        devices=DeviceCoverageResolver(store, IOT),
        sensors=sensors,
        iot_graph=IOT,
        deadline_seconds=deadline_seconds,
    )


def _atm_rows():
    return [
        candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:atm:1", "ATM Vietcombank", CENTER_LAT + 0.002, CENTER_LON),
        candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:atm:1", "Cây ATM Vietcombank", CENTER_LAT + 0.002, CENTER_LON),
        candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:atm:2", "ATM BIDV", CENTER_LAT, CENTER_LON + 0.004),
        candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:atm:3", "ATM Techcombank", CENTER_LAT - 0.006, CENTER_LON),
        # Inside the bounding box, outside the circle
        candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:atm:4", "ATM Corner", CENTER_LAT + 0.008, CENTER_LON + 0.009),
        candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:atm:5", "ATM Broken", 0, 0, wkt="POINT(200 21)"),
    ]


def test_atm_scenario_counts_distinct_uris_within_radius():
    store = FakeGraphStore().route(CANDIDATES, _atm_rows())
    result = _service(store).search_nearby(CENTER_LAT, CENTER_LON, 1.0, types=["atm"], include_topology=False)

    assert result.count == 3
    assert [p.uri.rsplit(":", 1)[-1] for p in result.items] == ["1", "2", "3"]
    assert all(p.distance_km <= 1.0 for p in result.items)
    assert result.items[0].name == "Cây ATM Vietcombank"

    data = result.to_dict()
    assert data["center"] == {"lon": CENTER_LON, "lat": CENTER_LAT}
    assert data["radiusKm"] == 1.0
    assert data["count"] == 3
    assert data["items"][0]["amenity"] == "atm"


def test_search_attaches_topology_by_default():
    atm1 = "urn:ngsi-ld:PointOfInterest:Hanoi:atm:1"
    bank = "urn:ngsi-ld:PointOfInterest:Hanoi:bank:9"
    store = (FakeGraphStore()
             .route(CANDIDATES, _atm_rows())
             .route(TOPOLOGY, topology_handler([(bank, "amenityFeature", atm1)], names={bank: "Ngân hàng"})))
    result = _service(store).search_nearby(CENTER_LAT, CENTER_LON, 1.0, types=["atm"])

    first = result.items[0].to_dict()
    assert first["topology"] == [{
        "predicate": "amenityFeature",
        "related": bank,
        "relatedName": "Ngân hàng",
        "relatedEntity": result.items[0].topology[0].related.to_dict(include_enrichment=False),
    }]
    assert result.items[1].topology == []


def test_topology_failure_does_not_fail_search():
    store = FakeGraphStore(fail_on=[TOPOLOGY]).route(CANDIDATES, _atm_rows())
    result = _service(store).search_nearby(CENTER_LAT, CENTER_LON, 1.0, types=["atm"])
    assert result.count == 3
    assert all(p.topology == [] for p in result.items)


def test_candidate_failure_is_fatal():
    store = FakeGraphStore(fail_on=[CANDIDATES])
    with pytest.raises(GraphStoreUnavailable):
        _service(store).search_nearby(CENTER_LAT, CENTER_LON, 1.0)


def test_invalid_center_rejected():
    with pytest.raises(InvalidSearchRequest):
        _service(FakeGraphStore()).search_nearby(float("nan"), CENTER_LON, 1.0)


def test_limit_is_clamped():
    assert clamp_limit(None, 100) == 100
    assert clamp_limit(0, 100) == 1
    assert clamp_limit(1000, 100) == 200
    with pytest.raises(InvalidSearchRequest):
        clamp_limit("many", 100)


def _sensor_client(aqi_by_station):
    client = MagicMock()

    def latest(station, measurement, fields=None):
        if measurement != "air_quality" or aqi_by_station.get(station) is None:
            return None
        return {"stationId": station, "measurement": measurement,
                "data": {"aqi": aqi_by_station[station]}, "timestamp": "2025-01-01T10:00:00Z"}

    client.get_latest_by_station.side_effect = latest
    return client


def test_aqi_bound_forces_sensors_and_fails_closed():
    coverage = {
        "urn:ngsi-ld:PointOfInterest:Hanoi:atm:1": "urn:ngsi-ld:Device:Hanoi:station:Clean",
        "urn:ngsi-ld:PointOfInterest:Hanoi:atm:2": "urn:ngsi-ld:Device:Hanoi:station:Dirty",
        "urn:ngsi-ld:PointOfInterest:Hanoi:atm:3": "urn:ngsi-ld:Device:Hanoi:station:Silent",
    }
    store = FakeGraphStore().route(CANDIDATES, _atm_rows()).route(COVERAGE, coverage_handler(coverage))
    sensors = SensorFusion(_sensor_client({"Clean": 30.0, "Dirty": 120.0}))

    result = _service(store, sensors=sensors).search_nearby(
        CENTER_LAT, CENTER_LON, 1.0, types=["atm"], include_topology=False, max_aqi=50, limit=1)

    assert [p.uri for p in result.items] == ["urn:ngsi-ld:PointOfInterest:Hanoi:atm:1"]
    assert result.items[0].sensor_data.aqi == 30.0
    # limit 1 inflated x3 for the filter, then x3 raw rows for the single graph
    assert "LIMIT 9" in store.queries_with(CANDIDATES)[0]


def test_include_iot_attaches_null_snapshot_for_silent_device():
    coverage = {"urn:ngsi-ld:PointOfInterest:Hanoi:atm:3": "urn:ngsi-ld:Device:Hanoi:station:Silent"}
    store = FakeGraphStore().route(CANDIDATES, _atm_rows()).route(COVERAGE, coverage_handler(coverage))
    sensors = SensorFusion(_sensor_client({}))
    result = _service(store, sensors=sensors).search_nearby(
        CENTER_LAT, CENTER_LON, 1.0, types=["atm"], include_topology=False, include_iot=True)

    by_uri = {p.uri: p for p in result.items}
    silent = by_uri["urn:ngsi-ld:PointOfInterest:Hanoi:atm:3"].to_dict()
    assert silent["device"] == "urn:ngsi-ld:Device:Hanoi:station:Silent"
    assert silent["sensorData"] == {"aqi": None, "temperature": None, "noise_level": None, "timestamp": None}
    assert by_uri["urn:ngsi-ld:PointOfInterest:Hanoi:atm:1"].to_dict()["sensorData"] is None


def test_include_sensors_false_keeps_iot_join_only():
    store = FakeGraphStore().route(CANDIDATES, _atm_rows())
    result = _service(store).search_nearby(
        CENTER_LAT, CENTER_LON, 1.0, types=["atm"], include_topology=False,
        include_iot=True, include_sensors=False)
    assert result.count == 3
    assert store.queries_with(COVERAGE) == []


def test_expired_deadline_skips_enrichment():
    store = FakeGraphStore().route(CANDIDATES, _atm_rows())
    result = _service(store, deadline_seconds=0).search_nearby(
        CENTER_LAT, CENTER_LON, 1.0, types=["atm"], include_iot=True)
    assert result.count == 3
    assert store.queries_with(TOPOLOGY) == []
    assert store.queries_with(COVERAGE) == []


RESTAURANTS = [
    candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:restaurant:R1", "Nhà hàng Một", CENTER_LAT + 0.001, CENTER_LON),
    candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:restaurant:R2", "Nhà hàng Hai", CENTER_LAT + 0.002, CENTER_LON),
    candidate_row("urn:ngsi-ld:PointOfInterest:Hanoi:restaurant:R3", "Nhà hàng Ba", CENTER_LAT + 0.003, CENTER_LON),
]
STATION = "urn:ngsi-ld:PointOfInterest:Hanoi:charging_station:S1"


def _by_graph(rows_by_graph):
    def handle(query):
        rows = []
        for graph_key, graph_rows in rows_by_graph.items():
            if f"/graph/{graph_key}>" in query:
                rows.extend(graph_rows)
        return rows

    return handle


def test_topology_search_without_related_pois_returns_targets():
    store = FakeGraphStore().route(CANDIDATES, _by_graph({"restaurant": RESTAURANTS}))
    result = _service(store).search_nearby_with_topology(
        CENTER_LAT, CENTER_LON, 1.0, target_type="restaurant",
        related_types=["charging_station"], relationship="isNextTo")

    assert result.no_topology_found is True
    assert result.message
    assert [p.uri for p in result.items] == [r["poi"] for r in RESTAURANTS]
    data = result.to_dict()
    assert data["noTopologyFound"] is True
    assert all(item["relatedEntities"] == [] for item in data["items"])
    assert store.queries_with(LINKS) == []


def test_topology_search_without_edges_returns_targets():
    store = (FakeGraphStore()
             .route(CANDIDATES, _by_graph({
                 "restaurant": RESTAURANTS,
                 "charging-station": [candidate_row(STATION, "Trạm sạc", CENTER_LAT, CENTER_LON + 0.001)],
             }))
             .route(LINKS, links_handler([])))
    result = _service(store).search_nearby_with_topology(
        CENTER_LAT, CENTER_LON, 1.0, "restaurant", ["charging_station"], limit=2)

    assert result.no_topology_found is True
    assert [p.uri for p in result.items] == [r["poi"] for r in RESTAURANTS[:2]]


def test_topology_search_filters_to_linked_targets():
    r1, r2, r3 = (r["poi"] for r in RESTAURANTS)
    triples = [(STATION, "isNextTo", r2), (r3, "amenityFeature", STATION)]
    store = (FakeGraphStore()
             .route(CANDIDATES, _by_graph({
                 "restaurant": RESTAURANTS,
                 "charging-station": [candidate_row(STATION, "Trạm sạc", CENTER_LAT, CENTER_LON + 0.001)],
             }))
             .route(LINKS, links_handler(triples))
             .route(TOPOLOGY, topology_handler(triples)))
    result = _service(store).search_nearby_with_topology(
        CENTER_LAT, CENTER_LON, 1.0, "restaurant", ["charging_station"], relationship="isNextTo")

    assert result.no_topology_found is False
    assert [p.uri for p in result.items] == [r2]
    related = result.items[0].related_entities
    assert [p.uri for p in related] == [STATION]
    assert related[0].name == "Trạm sạc"
    assert related[0].amenity == "charging_station"
    assert [(e.predicate, e.related.uri) for e in result.items[0].topology] == [("isNextTo", STATION)]
    assert "noTopologyFound" not in result.to_dict()


def test_topology_search_with_no_targets():
    store = FakeGraphStore()
    result = _service(store).search_nearby_with_topology(
        CENTER_LAT, CENTER_LON, 1.0, "restaurant", ["charging_station"])
    assert result.count == 0
    assert result.no_topology_found is False


def test_topology_search_requires_types():
    service = _service(FakeGraphStore())
    with pytest.raises(InvalidSearchRequest):
        service.search_nearby_with_topology(CENTER_LAT, CENTER_LON, 1.0, "", ["park"])
    with pytest.raises(InvalidSearchRequest):
        service.search_nearby_with_topology(CENTER_LAT, CENTER_LON, 1.0, "restaurant", [])


def test_browse_by_type_uses_discovered_predicates():
    store = (FakeGraphStore()
             .route(PREDICATES, [
                 {"predicate": "http://schema.org/name"},
                 {"predicate": "http://www.opengis.net/ont/geosparql#asWKT"},
                 {"predicate": "http://schema.org/brand"},
             ])
             .route(SELECTIVE, [
                 {"s": "urn:atm:1", "wkt": "POINT(105.85 21.03)", "p0": "ATM Agribank", "p1": "Agribank"},
                 {"s": "urn:atm:1", "wkt": "POINT(105.85 21.03)", "p0": "Cây ATM Agribank", "p1": "Agribank"},
                 {"s": "urn:atm:2", "wkt": "POINT(200 21)", "p0": "Broken"},
             ]))
    service = _service(store)

    listing = service.browse_by_type("ATMs", limit=10)
    assert listing["type"] == "atm"
    assert listing["graph"] == "http://localhost:3030/graph/atm"
    assert listing["count"] == 1
    item = listing["results"][0]
    assert item["name"] == "Cây ATM Agribank"
    assert item["brand"] == "Agribank"
    assert item["amenity"] == "atm"

    service.browse_by_type("atm")
    assert len(store.queries_with(PREDICATES)) == 1


def test_browse_unknown_type():
    with pytest.raises(InvalidSearchRequest):
        _service(FakeGraphStore()).browse_by_type("casino")


def test_list_graphs():
    graphs = [{"graph": "http://localhost:3030/graph/atm", "count": 120}]
    assert _service(FakeGraphStore(graphs=graphs)).list_graphs() == graphs
