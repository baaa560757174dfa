"""
Cache of per-graph predicate lists for the type-browsing path.

The cache is injected into SchemaIntrospector so tests can swap the policy
or drive expiry with a fake clock.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class PredicateCache:
    """Interface: graph URI -> list of predicate URIs."""

    def get(self, graph_uri: str) -> Optional[List[str]]:
        raise NotImplementedError

    def put(self, graph_uri: str, predicates: List[str]) -> None:
        raise NotImplementedError

    def invalidate(self, graph_uri: Optional[str] = None) -> None:
        raise NotImplementedError


class TtlLruPredicateCache(PredicateCache):
    """
    Bounded LRU map whose entries expire after a fixed time-to-live.

    Thread-safe: one lock guards the ordered dict.
    """

    def __init__(self, max_entries: int = 256, ttl_seconds: float = 600.0,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, List[str]]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, graph_uri: str) -> Optional[List[str]]:
        with self._lock:
            entry = self._entries.get(graph_uri)
            if entry is None:
                return None
            stored_at, predicates = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[graph_uri]
                logger.debug(f"Predicate cache entry expired: {graph_uri}")
                return None
            self._entries.move_to_end(graph_uri)
            return list(predicates)

    def put(self, graph_uri: str, predicates: List[str]) -> None:
        with self._lock:
            self._entries[graph_uri] = (self._clock(), list(predicates))
            self._entries.move_to_end(graph_uri)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Predicate cache evicted: {evicted}")

    def invalidate(self, graph_uri: Optional[str] = None) -> None:
        with self._lock:
            if graph_uri is None:
                self._entries.clear()
            else:
                self._entries.pop(graph_uri, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
