"""
RDF vocabulary used by the POI graphs.

Namespaces are rdflib Namespace objects so predicates can be referenced as
attributes (SCHEMA.isNextTo) and rendered with .n3() inside query text.
"""

from rdflib import Namespace, RDF, RDFS

SCHEMA = Namespace("http://schema.org/")
GEO = Namespace("http://www.opengis.net/ont/geosparql#")
EXT = Namespace("http://opendatafithou.org/def/extension/")
SOSA = Namespace("http://www.w3.org/ns/sosa/")
XSD = Namespace("http://www.w3.org/2001/XMLSchema#")

PREFIXES = {
    "rdf": RDF,
    "rdfs": RDFS,
    "schema": SCHEMA,
    "geo": GEO,
    "ext": EXT,
    "sosa": SOSA,
    "xsd": XSD,
}

# Topology predicates, keyed by the short name surfaced to callers
TOPOLOGY_PREDICATES = {
    "isNextTo": SCHEMA.isNextTo,
    "containedInPlace": SCHEMA.containedInPlace,
    "amenityFeature": SCHEMA.amenityFeature,
    "healthcareNetwork": EXT.healthcareNetwork,
    "campusAmenity": SCHEMA.campusAmenity,
}

# Relationship requested by a caller -> predicates it covers.
# "isNextTo" means "near", which includes containment.
RELATIONSHIP_EXPANSIONS = {
    "isNextTo": ["isNextTo", "containedInPlace"],
    "containedInPlace": ["containedInPlace"],
    "amenityFeature": ["amenityFeature"],
}
DEFAULT_RELATIONSHIP_EXPANSION = ["isNextTo", "containedInPlace", "amenityFeature"]


def prefix_block(names=None) -> str:
    """Render PREFIX declarations for the given prefix names (all by default)."""
    names = names or list(PREFIXES.keys())
    return "\n".join(f"PREFIX {name}: <{PREFIXES[name]}>" for name in names)
