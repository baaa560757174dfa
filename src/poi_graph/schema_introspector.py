"""
Two-phase predicate discovery for listing POIs of one type.

Phase one lists the predicates a graph actually uses (cached); phase two
builds a query selecting exactly those predicates.
"""

import logging
from typing import List, Optional

from poi_graph.query_builder import PredicateListQuery, SelectiveQuery
from poi_graph.schema_cache import PredicateCache, TtlLruPredicateCache

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    def __init__(self, store, cache: Optional[PredicateCache] = None, max_predicates: int = 100):
        self.store = store
        self.cache = cache if cache is not None else TtlLruPredicateCache()
        self.max_predicates = max_predicates

    def list_predicates(self, graph_uri: str) -> List[str]:
        cached = self.cache.get(graph_uri)
        if cached is not None:
            return cached

        query = PredicateListQuery(graph_uri, limit=self.max_predicates).build()
        rows = self.store.select(query)
        predicates = [row["predicate"] for row in rows if row.get("predicate")]
        logger.info(f"Discovered {len(predicates)} predicates in {graph_uri}")
        self.cache.put(graph_uri, predicates)
        return predicates

    def build_selective_query(self, graph_uri: str, predicates: List[str], limit: int = 100) -> SelectiveQuery:
        return SelectiveQuery(graph_uri, list(predicates), limit=limit)
