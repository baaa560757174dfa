import re

import pytest

from poi_graph.errors import GraphStoreUnavailable
from poi_graph.graph_catalog import GraphCatalog

CENTER_LAT = 21.0285
CENTER_LON = 105.8542

_VALUES = r'VALUES \?{var} \{{([^}}]*)\}}'
_URI = re.compile(r'<([^>]+)>')
_BOUND_PREDICATE = re.compile(r'BIND\("(\w+)" AS \?predicate\)')


def values_of(query, var):
    match = re.search(_VALUES.format(var=var), query)
    return _URI.findall(match.group(1)) if match else []


def point(lat, lon):
    return f"POINT({lon} {lat})"


def candidate_row(uri, name, lat, lon, **extra):
    row = {"poi": uri, "name": name, "wkt": point(lat, lon), "lat": str(lat), "lon": str(lon)}
    row.update(extra)
    return row


class FakeGraphStore:
    """
    Stands in for SparqlGraphStore.

    Queries are routed by the first matching marker; a handler is either a
    list of rows or a callable taking the query text. Markers in fail_on
    raise GraphStoreUnavailable.
    """

    def __init__(self, routes=None, fail_on=(), graphs=None):
        self.routes = list(routes or [])
        self.fail_on = list(fail_on)
        self.graphs = graphs or []
        self.queries = []

    def route(self, marker, handler):
        self.routes.append((marker, handler))
        return self

    def select(self, query):
        self.queries.append(query)
        for marker in self.fail_on:
            if marker in query:
                raise GraphStoreUnavailable(f"simulated failure for {marker}")
        for marker, handler in self.routes:
            if marker in query:
                rows = handler(query) if callable(handler) else handler
                return [dict(row) for row in rows]
        return []

    def list_graphs(self, limit=100):
        return list(self.graphs)

    def queries_with(self, marker):
        return [q for q in self.queries if marker in q]


# Route markers for the generated queries
CANDIDATES = "GROUP_CONCAT"
TOPOLOGY = "?relatedName"
LINKS = "?targetPoi"
COVERAGE = "SELECT ?poi ?device"
PREDICATES = "SELECT DISTINCT ?predicate"
SELECTIVE = "SELECT DISTINCT ?s ?wkt"


def topology_handler(triples, names=None):
    """Answer topology queries from stored (subject, predicate, object) triples, read both ways."""
    names = names or {}

    def handle(query):
        rows = []
        predicates = set(_BOUND_PREDICATE.findall(query))
        for poi in values_of(query, "poi"):
            for subject, predicate, obj in triples:
                if predicate not in predicates:
                    continue
                if subject == poi:
                    related = obj
                elif obj == poi:
                    related = subject
                else:
                    continue
                row = {"poi": poi, "predicate": predicate, "related": related}
                if related in names:
                    row["relatedName"] = names[related]
                rows.append(row)
        return rows

    return handle


def links_handler(triples):
    def handle(query):
        targets = set(values_of(query, "targetPoi"))
        related = set(values_of(query, "relatedPoi"))
        predicates = set(_BOUND_PREDICATE.findall(query))
        rows = []
        for subject, predicate, obj in triples:
            if predicate not in predicates:
                continue
            for target, other in ((subject, obj), (obj, subject)):
                if target in targets and other in related:
                    rows.append({"targetPoi": target, "relatedPoi": other, "predicate": predicate})
        return rows

    return handle


def coverage_handler(coverage):
    def handle(query):
        return [{"poi": uri, "device": coverage[uri]} for uri in values_of(query, "poi") if uri in coverage]

    return handle


@pytest.fixture
def catalog():
    return GraphCatalog("http://localhost:3030/graph")


@pytest.fixture
def store():
    return FakeGraphStore()
