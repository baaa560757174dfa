"""
Exception types raised by the search engine.

Caller errors are raised before any I/O. Data-shape errors are per-record and
never escape the record loops. Collaborator errors are fatal only for the
primary candidate fetch; enrichment stages catch and log them.
"""


class PoiGraphError(Exception):
    """Base class for all errors raised by poi_graph."""


class InvalidSearchRequest(PoiGraphError, ValueError):
    """Missing or invalid center, non-positive radius, unknown type key."""


class MalformedCoordinate(PoiGraphError, ValueError):
    """A WKT literal that is not a valid POINT(lon lat)."""


class GraphStoreUnavailable(PoiGraphError, RuntimeError):
    """The SPARQL endpoint could not be reached or returned garbage."""


class TimeSeriesUnavailable(PoiGraphError, RuntimeError):
    """The time-series store could not be reached or returned garbage."""
