from poi_graph.models import Poi
from poi_graph.topology import TopologyEnricher, expand_relationship

from conftest import LINKS, TOPOLOGY, FakeGraphStore, links_handler, topology_handler

TOPO = "http://localhost:3030/graph/topology"
A = "urn:ngsi-ld:PointOfInterest:Hanoi:park:A"
B = "urn:ngsi-ld:PointOfInterest:Hanoi:bus_stop:B"
C = "urn:ngsi-ld:PointOfInterest:Hanoi:cafe:C"


def _enricher(store):
    return TopologyEnricher(store, TOPO)


def test_edges_are_visible_from_both_ends():
    store = FakeGraphStore().route(TOPOLOGY, topology_handler([(A, "isNextTo", B)]))
    enricher = _enricher(store)

    a, = enricher.fetch_topology([Poi(uri=A)])
    b, = enricher.fetch_topology([Poi(uri=B)])

    assert [(e.predicate, e.related.uri) for e in a.topology] == [("isNextTo", B)]
    assert [(e.predicate, e.related.uri) for e in b.topology] == [("isNextTo", A)]


def test_edges_stored_both_ways_collapse_to_one():
    triples = [(A, "isNextTo", B), (B, "isNextTo", A)]
    store = FakeGraphStore().route(TOPOLOGY, topology_handler(triples))
    a, b = _enricher(store).fetch_topology([Poi(uri=A), Poi(uri=B)])
    assert len(a.topology) == 1
    assert len(b.topology) == 1


def test_distinct_predicates_are_separate_edges():
    triples = [(A, "isNextTo", B), (A, "containedInPlace", B), (C, "amenityFeature", A)]
    store = FakeGraphStore().route(TOPOLOGY, topology_handler(triples))
    a, = _enricher(store).fetch_topology([Poi(uri=A)])
    assert sorted((e.predicate, e.related.uri) for e in a.topology) == [
        ("amenityFeature", C), ("containedInPlace", B), ("isNextTo", B),
    ]


def test_related_entity_details():
    def handler(query):
        return [
            {"poi": A, "predicate": "isNextTo", "related": B, "relatedName": "Bus stop 12",
             "relatedWkt": "POINT(105.85 21.03)", "relatedDevice": "urn:dev:1"},
            {"poi": A, "predicate": "isNextTo", "related": B, "relatedName": "Điểm dừng xe buýt 12",
             "relatedWkt": "POINT(105.85 21.03)", "relatedDevice": "urn:dev:1"},
        ]

    store = FakeGraphStore().route(TOPOLOGY, handler)
    a, = _enricher(store).fetch_topology([Poi(uri=A)], language="vi")
    related = a.topology[0].related
    assert related.name == "Điểm dừng xe buýt 12"
    assert (related.lat, related.lon) == (21.03, 105.85)
    assert related.device == "urn:dev:1"
    # Category inferred from the URI
    assert related.highway == "bus_stop"


def test_failure_leaves_empty_topology():
    store = FakeGraphStore(fail_on=[TOPOLOGY])
    a, = _enricher(store).fetch_topology([Poi(uri=A)])
    assert a.topology == []


def test_poi_without_edges_gets_empty_list():
    store = FakeGraphStore().route(TOPOLOGY, topology_handler([]))
    a, = _enricher(store).fetch_topology([Poi(uri=A)])
    assert a.topology == []


def test_expand_relationship():
    assert expand_relationship("isNextTo") == ["isNextTo", "containedInPlace"]
    assert expand_relationship("containedInPlace") == ["containedInPlace"]
    assert expand_relationship("amenityFeature") == ["amenityFeature"]
    assert expand_relationship("nearby") == ["isNextTo", "containedInPlace", "amenityFeature"]
    assert expand_relationship(None) == ["isNextTo", "containedInPlace", "amenityFeature"]
    assert expand_relationship("healthcareNetwork") == ["isNextTo", "containedInPlace", "amenityFeature"]


def test_link_sets_both_directions_and_expansion():
    triples = [
        (B, "isNextTo", A),
        (A, "containedInPlace", C),
        (A, "amenityFeature", C),
    ]
    store = FakeGraphStore().route(LINKS, links_handler(triples))
    links = _enricher(store).link_sets([Poi(uri=A)], [Poi(uri=B), Poi(uri=C)], "isNextTo")
    assert links == [(A, B), (A, C)]


def test_link_sets_amenity_feature_only():
    triples = [(A, "isNextTo", B), (A, "amenityFeature", C)]
    store = FakeGraphStore().route(LINKS, links_handler(triples))
    links = _enricher(store).link_sets([Poi(uri=A)], [Poi(uri=B), Poi(uri=C)], "amenityFeature")
    assert links == [(A, C)]


def test_link_sets_empty_inputs_skip_query():
    store = FakeGraphStore()
    assert _enricher(store).link_sets([], [Poi(uri=B)]) == []
    assert store.queries == []
