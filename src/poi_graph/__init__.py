"""poi_graph: geospatial POI search over per-category RDF named graphs."""
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent  # src/poi_graph → src → repo root

__version__ = "0.3.0"
