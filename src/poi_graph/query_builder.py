"""
Typed SPARQL query builders.

Each builder is a small dataclass holding the inputs of one query (graphs,
URIs, bounding box, limits); build() renders the query text. URIs go through
escape_uri_for_values and numbers through float()/int(), so no caller string
reaches the query unescaped.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from poi_graph.models import BoundingBox
from poi_graph.sparql_client import escape_uri_for_values, values_clause
from poi_graph.vocabulary import GEO, TOPOLOGY_PREDICATES, prefix_block

# Raw rows per requested result and per selected graph: multilingual names
# produce several rows for one POI
ROW_MULTIPLIER = 3
MAX_RAW_ROWS = 10000

# Extracts lon ($1) and lat ($2) from a WKT POINT literal inside SPARQL
_WKT_REGEX = r'^\\s*[Pp][Oo][Ii][Nn][Tt]\\s*\\(\\s*([0-9.eE+\\-]+)\\s+([0-9.eE+\\-]+)\\s*\\)\\s*$'


def _graph_term(graph_uri: str) -> str:
    term = escape_uri_for_values(graph_uri)
    if term is None:
        raise ValueError(f"Unsafe graph URI: {graph_uri!r}")
    return term


def _fmt(number: float) -> str:
    return repr(float(number))


@dataclass
class NearbyCandidateQuery:
    """Federated bounding-box candidate query across per-type graphs."""
    graphs: Sequence[str]
    bbox: BoundingBox
    limit: int
    iot_graph: Optional[str] = None

    @property
    def row_limit(self) -> int:
        return max(1, min(int(self.limit) * ROW_MULTIPLIER * max(1, len(self.graphs)), MAX_RAW_ROWS))

    def _graph_clause(self, graph_uri: str) -> str:
        return f"""{{
            GRAPH {_graph_term(graph_uri)} {{
              ?poi geo:asWKT ?wkt .
              OPTIONAL {{ ?poi ext:amenity ?amenity . }}
              OPTIONAL {{ ?poi ext:highway ?highway . }}
              OPTIONAL {{ ?poi ext:leisure ?leisure . }}
              OPTIONAL {{ ?poi a ?type . }}
              OPTIONAL {{ ?poi rdfs:label ?label . }}
              OPTIONAL {{ ?poi schema:name ?schemaName . }}
              OPTIONAL {{ ?poi schema:brand ?brand . }}
              OPTIONAL {{ ?poi schema:operator ?operator . }}
            }}
          }}"""

    def build(self) -> str:
        if not self.graphs:
            raise ValueError("At least one graph is required")
        union = "\n          UNION\n          ".join(self._graph_clause(g) for g in self.graphs)

        iot_join = ""
        if self.iot_graph:
            iot_join = f"""
          OPTIONAL {{
            GRAPH {_graph_term(self.iot_graph)} {{ ?poi sosa:isSampledBy ?iotStation . }}
          }}"""

        b = self.bbox
        return f"""{prefix_block(['rdfs', 'schema', 'geo', 'ext', 'sosa', 'xsd'])}

SELECT ?poi ?name ?amenity ?highway ?leisure ?brand ?operator ?wkt ?lon ?lat
       (GROUP_CONCAT(DISTINCT STR(?type); separator=",") AS ?types)
       (GROUP_CONCAT(DISTINCT STR(?iotStation); separator=",") AS ?iotStations)
WHERE {{
  {{
    SELECT DISTINCT ?poi ?name ?amenity ?highway ?leisure ?brand ?operator ?wkt ?lon ?lat ?type
    WHERE {{
          {union}

      BIND(xsd:double(REPLACE(STR(?wkt), "{_WKT_REGEX}", "$1")) AS ?lon)
      BIND(xsd:double(REPLACE(STR(?wkt), "{_WKT_REGEX}", "$2")) AS ?lat)
      BIND(COALESCE(?schemaName, ?label) AS ?name)

      FILTER(?lon >= {_fmt(b.min_lon)} && ?lon <= {_fmt(b.max_lon)} && ?lat >= {_fmt(b.min_lat)} && ?lat <= {_fmt(b.max_lat)})
    }}
  }}{iot_join}
}}
GROUP BY ?poi ?name ?amenity ?highway ?leisure ?brand ?operator ?wkt ?lon ?lat
LIMIT {self.row_limit}
"""


def _bidirectional_union(subject_var: str, object_var: str, predicates: Sequence[str],
                         bind_predicate: bool = True) -> str:
    """UNION of both storage directions for each predicate short name."""
    branches = []
    for short_name in predicates:
        predicate_uri = TOPOLOGY_PREDICATES[short_name]
        bind = f' BIND("{short_name}" AS ?predicate)' if bind_predicate else ""
        branches.append(f"{{ ?{subject_var} <{predicate_uri}> ?{object_var} .{bind} }}")
        branches.append(f"{{ ?{object_var} <{predicate_uri}> ?{subject_var} .{bind} }}")
    return "\n      UNION ".join(branches)


@dataclass
class TopologyQuery:
    """Every topology edge touching the given POIs, in either direction."""
    topology_graph: str
    poi_uris: Sequence[str]
    iot_graph: Optional[str] = None
    predicates: Sequence[str] = field(default_factory=lambda: list(TOPOLOGY_PREDICATES))

    def build(self) -> str:
        device_join = ""
        if self.iot_graph:
            device_join = f"""
  OPTIONAL {{ GRAPH {_graph_term(self.iot_graph)} {{ ?related sosa:isSampledBy ?relatedDevice . }} }}"""

        return f"""{prefix_block(['rdf', 'rdfs', 'schema', 'geo', 'ext', 'sosa'])}

SELECT DISTINCT ?poi ?predicate ?related ?relatedName ?relatedWkt ?relatedAmenity
       ?relatedHighway ?relatedLeisure ?relatedBrand ?relatedOperator ?relatedType ?relatedDevice
WHERE {{
  GRAPH {_graph_term(self.topology_graph)} {{
    VALUES ?poi {{ {values_clause(self.poi_uris)} }}
    {_bidirectional_union('poi', 'related', self.predicates)}
  }}
  OPTIONAL {{ GRAPH ?gName {{ {{ ?related schema:name ?relatedName . }} UNION {{ ?related rdfs:label ?relatedName . }} }} }}
  OPTIONAL {{ GRAPH ?gWkt {{ ?related geo:asWKT ?relatedWkt . }} }}
  OPTIONAL {{ GRAPH ?gAmenity {{ ?related ext:amenity ?relatedAmenity . }} }}
  OPTIONAL {{ GRAPH ?gHighway {{ ?related ext:highway ?relatedHighway . }} }}
  OPTIONAL {{ GRAPH ?gLeisure {{ ?related ext:leisure ?relatedLeisure . }} }}
  OPTIONAL {{ GRAPH ?gBrand {{ ?related schema:brand ?relatedBrand . }} }}
  OPTIONAL {{ GRAPH ?gOperator {{ ?related schema:operator ?relatedOperator . }} }}
  OPTIONAL {{ GRAPH ?gType {{ ?related rdf:type ?relatedType . FILTER(STRSTARTS(STR(?relatedType), "http://schema.org/")) }} }}{device_join}
  FILTER(?related != ?poi)
}}
"""


@dataclass
class TopologyLinkQuery:
    """Edges connecting members of a target set to members of a related set."""
    topology_graph: str
    target_uris: Sequence[str]
    related_uris: Sequence[str]
    predicates: Sequence[str]

    def build(self) -> str:
        return f"""{prefix_block(['schema', 'ext'])}

SELECT DISTINCT ?targetPoi ?relatedPoi ?predicate
WHERE {{
  GRAPH {_graph_term(self.topology_graph)} {{
    VALUES ?targetPoi {{ {values_clause(self.target_uris)} }}
    VALUES ?relatedPoi {{ {values_clause(self.related_uris)} }}
    {_bidirectional_union('targetPoi', 'relatedPoi', self.predicates)}
  }}
  FILTER(?targetPoi != ?relatedPoi)
}}
"""


@dataclass
class CoverageQuery:
    """POI -> sensing device coverage edges."""
    iot_graph: str
    poi_uris: Sequence[str]

    def build(self) -> str:
        return f"""{prefix_block(['sosa'])}

SELECT ?poi ?device
WHERE {{
  GRAPH {_graph_term(self.iot_graph)} {{
    VALUES ?poi {{ {values_clause(self.poi_uris)} }}
    ?poi sosa:isSampledBy ?device .
  }}
}}
"""


@dataclass
class PredicateListQuery:
    """Distinct non-system predicates observed in a graph."""
    graph: str
    limit: int = 100

    def build(self) -> str:
        return f"""{prefix_block(['rdf'])}

SELECT DISTINCT ?predicate
WHERE {{
  GRAPH {_graph_term(self.graph)} {{
    ?s ?predicate ?o .
    FILTER(?predicate != rdf:type)
    FILTER(!STRSTARTS(STR(?predicate), "http://www.w3.org/2000/01/rdf-schema#"))
  }}
}}
ORDER BY ?predicate
LIMIT {int(self.limit)}
"""


@dataclass
class SelectiveQuery:
    """
    Per-graph listing query selecting exactly the given predicates.

    Each predicate gets a positional variable ?p0, ?p1, ...; variables()
    returns the variable -> predicate mapping for reading rows back.
    """
    graph: str
    predicates: Sequence[str]
    limit: int = 100

    def variables(self) -> Dict[str, str]:
        # Coordinates are always selected as ?wkt
        selected = [p for p in self.predicates if p != str(GEO.asWKT)]
        return {f"p{i}": predicate for i, predicate in enumerate(selected)}

    def build(self) -> str:
        pairs: List[Tuple[str, str]] = []
        for var, predicate in self.variables().items():
            term = escape_uri_for_values(predicate)
            if term is not None:
                pairs.append((var, term))
        select_vars = " ".join(f"?{var}" for var, _ in pairs)
        optionals = "\n    ".join(f"OPTIONAL {{ ?s {term} ?{var} . }}" for var, term in pairs)
        return f"""{prefix_block(['geo'])}

SELECT DISTINCT ?s ?wkt {select_vars}
WHERE {{
  GRAPH {_graph_term(self.graph)} {{
    ?s geo:asWKT ?wkt .
    {optionals}
  }}
}}
LIMIT {int(self.limit)}
"""
