"""
SPARQL graph-store client.

Wraps SPARQLWrapper for read-only SELECT queries against a Fuseki dataset.
Results are flattened to one dict per solution, mapping variable name to
the binding's string value; a language-tagged literal also gets a
"<var>__lang" entry so callers can apply their own language policy.
"""

import logging
from typing import Dict, Iterator, List, Optional

from SPARQLWrapper import SPARQLWrapper, JSON, POST

from poi_graph.errors import GraphStoreUnavailable

logger = logging.getLogger(__name__)

LANG_SUFFIX = "__lang"


def escape_uri_for_values(uri: str) -> Optional[str]:
    """Escape a URI for use in a SPARQL VALUES clause (None if unsafe)."""
    if not uri or any(c in uri for c in '<>"{}|\\^`') or any(c.isspace() for c in uri):
        logger.warning(f"URI contains special characters, skipping: {uri[:100]}")
        return None
    return f"<{uri}>"


def values_clause(uris) -> str:
    """Space-separated <uri> terms for a VALUES block, unsafe URIs dropped."""
    escaped = [escape_uri_for_values(u) for u in uris]
    return " ".join(e for e in escaped if e is not None)


def batched(items: List[str], batch_size: int) -> Iterator[List[str]]:
    for i in range(0, len(items), batch_size):
        yield items[i:i + batch_size]


class SparqlGraphStore:
    """Executes SELECT queries against a SPARQL endpoint."""

    DEFAULT_TIMEOUT = 30
    DEFAULT_BATCH_SIZE = 500

    def __init__(self, endpoint_url: str, user: Optional[str] = None,
                 password: Optional[str] = None, timeout: int = DEFAULT_TIMEOUT):
        """
        Args:
            endpoint_url: SPARQL query endpoint (e.g. http://localhost:3030/hanoi/sparql)
            user: Optional HTTP Basic user
            password: Optional HTTP Basic password
            timeout: Per-query timeout in seconds
        """
        if not endpoint_url:
            raise ValueError("SPARQL query endpoint is not configured")
        self.endpoint_url = endpoint_url
        self.user = user
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Dict) -> "SparqlGraphStore":
        return cls(
            config.get("fuseki_query_endpoint"),
            user=config.get("fuseki_user"),
            password=config.get("fuseki_pass"),
            timeout=config.get("sparql_timeout", cls.DEFAULT_TIMEOUT),
        )

    def _make_wrapper(self) -> SPARQLWrapper:
        # SPARQLWrapper keeps per-query state, so each call gets its own instance
        sparql = SPARQLWrapper(self.endpoint_url)
        sparql.setReturnFormat(JSON)
        sparql.setMethod(POST)
        sparql.setTimeout(self.timeout)
        if self.user and self.password:
            sparql.setCredentials(self.user, self.password)
        return sparql

    def select(self, query: str) -> List[Dict[str, str]]:
        """
        Run a SELECT query.

        Returns:
            List of rows, each mapping variable name -> string value.
            Unbound variables are absent from the row.

        Raises:
            GraphStoreUnavailable: transport error, HTTP error or unparseable response
        """
        logger.debug(f"SPARQL SELECT:\n{query}")
        sparql = self._make_wrapper()
        sparql.setQuery(query)
        try:
            raw = sparql.query().convert()
        except Exception as e:
            raise GraphStoreUnavailable(f"SPARQL query failed against {self.endpoint_url}: {e}") from e

        try:
            bindings = raw["results"]["bindings"]
        except (TypeError, KeyError) as e:
            raise GraphStoreUnavailable(f"Unexpected SPARQL response from {self.endpoint_url}") from e

        rows = []
        for binding in bindings:
            row = {}
            for var, term in binding.items():
                row[var] = term.get("value")
                lang = term.get("xml:lang")
                if lang:
                    row[f"{var}{LANG_SUFFIX}"] = lang
            rows.append(row)
        return rows

    def list_graphs(self, limit: int = 100) -> List[Dict[str, object]]:
        """Named graphs in the dataset with their triple counts."""
        query = f"""
        SELECT ?g (COUNT(*) AS ?count) WHERE {{
            GRAPH ?g {{ ?s ?p ?o }}
        }}
        GROUP BY ?g
        ORDER BY ?g
        LIMIT {int(limit)}
        """
        rows = self.select(query)
        graphs = []
        for row in rows:
            try:
                count = int(row.get("count", "0"))
            except ValueError:
                count = 0
            graphs.append({"graph": row.get("g"), "count": count})
        logger.info(f"Graphs detected: {len(graphs)}")
        return graphs
