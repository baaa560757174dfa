"""
Catalog of POI types and the named graphs that hold them.

Each POI category lives in its own named graph. This module maps the type
keys callers use ("atm", "bus-stops", "Hospitals") to graph URIs, and maps
raw rdf:type URIs and POI URIs back to type keys so categories can be
derived when the explicit amenity/highway/leisure predicates are missing.
Pure lookups, no I/O.
"""

import logging
import os
import re
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_BASE = "http://localhost:3030/graph"

AMENITY_TYPES = (
    'atm', 'bank', 'cafe', 'restaurant', 'convenience_store', 'supermarket',
    'marketplace', 'warehouse', 'hospital', 'clinic', 'pharmacy', 'school',
    'university', 'kindergarten', 'charging_station', 'fuel_station', 'parking',
    'post_office', 'library', 'community_centre', 'police', 'fire_station',
    'drinking_water', 'toilets', 'waste_basket',
)
HIGHWAY_TYPES = ('bus_stop',)
LEISURE_TYPES = ('park', 'playground')

TYPE_KEYS = AMENITY_TYPES + HIGHWAY_TYPES + LEISURE_TYPES

# Spellings that plural/hyphen normalization cannot reach
_ALIASES = {
    'community_center': 'community_centre',
    'toilet': 'toilets',
    'public_toilet': 'toilets',
    'public_toilets': 'toilets',
    'fuel': 'fuel_station',
    'gas_station': 'fuel_station',
    'play_ground': 'playground',
    'play_grounds': 'playground',
}

# schema.org class local name -> type key
SCHEMA_TYPE_KEYS = {
    'Park': 'park',
    'Playground': 'playground',
    'BusStop': 'bus_stop',
    'Hospital': 'hospital',
    'MedicalClinic': 'clinic',
    'FinancialService': 'atm',
    'BankOrCreditUnion': 'bank',
    'School': 'school',
    'Preschool': 'kindergarten',
    'CollegeOrUniversity': 'university',
    'Library': 'library',
    'PublicToilet': 'toilets',
    'Restaurant': 'restaurant',
    'CafeOrCoffeeShop': 'cafe',
    'Pharmacy': 'pharmacy',
    'PoliceStation': 'police',
    'FireStation': 'fire_station',
    'PostOffice': 'post_office',
    'ParkingFacility': 'parking',
    'GasStation': 'fuel_station',
    'AutomotiveBusiness': 'charging_station',
    'GroceryStore': 'supermarket',
    'ConvenienceStore': 'convenience_store',
    'Market': 'marketplace',
    'DrinkingWaterDispenser': 'drinking_water',
    'WasteContainer': 'waste_basket',
    'CommunityCenter': 'community_centre',
    'Warehouse': 'warehouse',
}

# Graph names that are not the hyphenated type key
_GRAPH_NAMES = {
    'toilets': 'toilet',
    'community_centre': 'community-center',
}

_URN_TYPE_PATTERN = re.compile(r'PointOfInterest:[^:]+:([^:]+):', re.IGNORECASE)
_GRAPH_TYPE_PATTERN = re.compile(r'/graph/([^/]+)/?$')


def normalize_type_key(key: Optional[str]) -> Optional[str]:
    """
    Normalize a caller-supplied type key to its canonical form.

    Handles case, surrounding whitespace, hyphen/underscore and singular/plural
    variants. Returns None for keys outside the catalog.
    """
    if not key:
        return None
    k = key.strip().lower().replace('-', '_').replace(' ', '_')
    if k in TYPE_KEYS:
        return k
    if k in _ALIASES:
        return _ALIASES[k]
    if k.endswith('ies') and k[:-3] + 'y' in TYPE_KEYS:
        return k[:-3] + 'y'
    if k.endswith('s'):
        singular = k[:-1]
        if singular in TYPE_KEYS:
            return singular
        if singular in _ALIASES:
            return _ALIASES[singular]
    return None


def graph_name(type_key: str) -> str:
    """Last path segment of a type's default graph URI."""
    return _GRAPH_NAMES.get(type_key, type_key.replace('_', '-'))


def graph_env_var(type_key: str) -> str:
    """Environment variable overriding a type's graph, e.g. FUSEKI_GRAPH_BUS_STOP."""
    return f"FUSEKI_GRAPH_{graph_name(type_key).replace('-', '_').upper()}"


def classify_poi_type(type_key: str) -> Dict[str, Optional[str]]:
    """Split a type key into the amenity/highway/leisure category fields."""
    key = normalize_type_key(type_key) or type_key.strip().lower()
    if key in HIGHWAY_TYPES:
        return {"amenity": None, "highway": key, "leisure": None}
    if key in LEISURE_TYPES:
        return {"amenity": None, "highway": None, "leisure": key}
    # Unknown keys default to amenity
    return {"amenity": key, "highway": None, "leisure": None}


def parse_type_from_uri(uri: Optional[str]) -> Optional[Dict[str, Optional[str]]]:
    """
    Derive category fields from a POI or graph URI.

    Recognizes urn:ngsi-ld:PointOfInterest:<city>:<type>:<id> and .../graph/<type>.
    """
    if not uri:
        return None
    match = _URN_TYPE_PATTERN.search(uri) or _GRAPH_TYPE_PATTERN.search(uri)
    if not match:
        return None
    return classify_poi_type(match.group(1))


def type_key_for(type_uri: Optional[str]) -> Optional[str]:
    """Map a raw rdf:type URI (schema.org or a catalog key) to a type key."""
    if not type_uri:
        return None
    local = type_uri.rstrip('/').split('/')[-1].split('#')[-1]
    if 'schema.org' in type_uri and local in SCHEMA_TYPE_KEYS:
        return SCHEMA_TYPE_KEYS[local]
    return normalize_type_key(local)


class GraphCatalog:
    """Type key -> named graph lookups."""

    def __init__(self, graph_base: str = DEFAULT_GRAPH_BASE,
                 overrides: Optional[Dict[str, str]] = None):
        """
        Args:
            graph_base: Base URI; a type's default graph is <base>/<graph_name(key)>
            overrides: Explicit type key -> graph URI entries (any alias accepted)
        """
        self.graph_base = graph_base.rstrip('/')
        self._graphs: Dict[str, str] = {
            key: f"{self.graph_base}/{graph_name(key)}" for key in TYPE_KEYS
        }
        for key, graph_uri in (overrides or {}).items():
            canonical = normalize_type_key(key)
            if canonical is None:
                logger.warning(f"Ignoring graph override for unknown type '{key}'")
                continue
            self._graphs[canonical] = graph_uri

    @classmethod
    def from_config(cls, config: Dict, graphs_config: Optional[Dict] = None) -> "GraphCatalog":
        """
        Build a catalog from the loaded configuration.

        Overrides are read from FUSEKI_GRAPH_<NAME> environment variables first,
        then from the 'graphs' section of config/graphs.yaml (which wins).
        """
        overrides = {}
        for key in TYPE_KEYS:
            env_value = os.environ.get(graph_env_var(key))
            if env_value:
                overrides[key] = env_value
        overrides.update((graphs_config or {}).get('graphs', {}) or {})
        return cls(config.get('graph_base', DEFAULT_GRAPH_BASE), overrides)

    def graph_for(self, type_key: str) -> Optional[str]:
        canonical = normalize_type_key(type_key)
        if canonical is None:
            return None
        return self._graphs[canonical]

    def resolve_graphs(self, type_keys: Optional[Iterable[str]] = None) -> List[str]:
        """
        Graph URIs for the given keys, deduplicated in request order.

        An empty or missing list selects every graph. Unknown keys are skipped.
        """
        keys = [k for k in (type_keys or []) if k and k.strip()]
        if not keys:
            return self.all_graphs()
        graphs = []
        for key in keys:
            graph_uri = self.graph_for(key)
            if graph_uri is None:
                logger.debug(f"No graph for type key '{key}'")
                continue
            if graph_uri not in graphs:
                graphs.append(graph_uri)
        return graphs

    def all_graphs(self) -> List[str]:
        seen = []
        for graph_uri in self._graphs.values():
            if graph_uri not in seen:
                seen.append(graph_uri)
        return seen
