"""
Multilingual name resolution and per-URI deduplication.

The candidate query returns one row per (POI, name variant). This module
turns those rows into Poi records, drops rows with unusable coordinates,
fills in missing categories from rdf:type, and collapses the variants of
each POI to the one whose name best matches the requested language.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from poi_graph.coordinates import try_parse_wkt
from poi_graph.graph_catalog import classify_poi_type, parse_type_from_uri, type_key_for
from poi_graph.models import Poi, RawRow
from poi_graph.sparql_client import LANG_SUFFIX

logger = logging.getLogger(__name__)

LANGUAGES = ('vi', 'en', 'all')
DEFAULT_LANGUAGE = 'vi'

_VIETNAMESE_CHARS = re.compile(
    '[àáạảãâầấậẩẫăằắặẳẵèéẹẻẽêềếệểễìíịỉĩòóọỏõôồốộổỗơờớợởỡùúụủũưừứựửữỳýỵỷỹđ]',
    re.IGNORECASE,
)
_ASCII_LETTERS = re.compile('[A-Za-z]')


@dataclass(frozen=True)
class LanguageClass:
    has_target_script: bool
    has_ascii_letters: bool

    @property
    def indeterminate(self) -> bool:
        return not self.has_target_script and not self.has_ascii_letters


def classify_language(text: Optional[str]) -> LanguageClass:
    """
    Classify a name by script.

    ASCII letters only count when the text has no Vietnamese diacritics, so
    "Nhà hàng Pho 24" is Vietnamese, not mixed.
    """
    if not text:
        return LanguageClass(False, False)
    has_vi = bool(_VIETNAMESE_CHARS.search(text))
    has_ascii = not has_vi and bool(_ASCII_LETTERS.search(text))
    return LanguageClass(has_vi, has_ascii)


def poi_language(poi: Poi) -> LanguageClass:
    """Language of a POI's name; a vi or en language tag wins over the script."""
    tag = (poi.name_lang or '').lower().split('-')[0]
    if poi.name and tag == 'vi':
        return LanguageClass(True, False)
    if poi.name and tag == 'en':
        return LanguageClass(False, True)
    return classify_language(poi.name)


def normalize_language(language: Optional[str]) -> str:
    if language is None:
        return DEFAULT_LANGUAGE
    lang = language.strip().lower()
    if lang not in LANGUAGES:
        logger.warning(f"Unknown language '{language}', falling back to '{DEFAULT_LANGUAGE}'")
        return DEFAULT_LANGUAGE
    return lang


def matches_language(cls: LanguageClass, language: str) -> bool:
    if language == 'vi':
        return cls.has_target_script
    if language == 'en':
        return cls.has_ascii_letters
    return True


def choose_name(names: Iterable[Optional[str]], language: str = DEFAULT_LANGUAGE) -> Optional[str]:
    """Pick one name from variants using the same rule as merge_variants."""
    language = normalize_language(language)
    chosen = None
    for name in names:
        if not name:
            continue
        if chosen is None:
            chosen = name
            continue
        newcomer = classify_language(name)
        if (matches_language(newcomer, language) or newcomer.indeterminate) \
                and not matches_language(classify_language(chosen), language):
            chosen = name
    return chosen


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(',') if part.strip()]


def promote_category(poi: Poi) -> None:
    """Fill amenity/highway/leisure from rdf:type, then from the URI, when all are missing."""
    if poi.category:
        return
    for type_uri in poi.types:
        key = type_key_for(type_uri)
        if key:
            fields = classify_poi_type(key)
            break
    else:
        fields = parse_type_from_uri(poi.uri)
    if fields:
        poi.amenity = fields["amenity"]
        poi.highway = fields["highway"]
        poi.leisure = fields["leisure"]


def row_to_poi(row: RawRow) -> Optional[Poi]:
    """Build a Poi from one candidate row; None when the row has no usable point."""
    uri = row.get("poi")
    if not uri:
        return None
    coords = try_parse_wkt(row.get("wkt"))
    if coords is None:
        logger.debug(f"Dropping {uri}: unusable WKT {row.get('wkt')!r}")
        return None
    lat, lon = coords
    poi = Poi(
        uri=uri,
        name=row.get("name") or None,
        name_lang=row.get(f"name{LANG_SUFFIX}"),
        amenity=row.get("amenity") or None,
        highway=row.get("highway") or None,
        leisure=row.get("leisure") or None,
        brand=row.get("brand") or None,
        operator=row.get("operator") or None,
        lat=lat,
        lon=lon,
        wkt=row.get("wkt"),
        types=_split_csv(row.get("types")),
        iot_stations=_split_csv(row.get("iotStations")),
    )
    promote_category(poi)
    return poi


def merge_variants(pois: Iterable[Poi], language: str = DEFAULT_LANGUAGE) -> List[Poi]:
    """
    Collapse name variants to one Poi per URI.

    'all' keeps every (uri, name) pair. Otherwise the first variant seen
    wins, and is only replaced by a later one that matches the language
    (or whose name is indeterminate) when the incumbent does not match.
    Output order follows first appearance of each key.
    """
    language = normalize_language(language)
    kept: Dict[str, Poi] = {}

    for poi in pois:
        if language == 'all':
            kept[f"{poi.uri}_{poi.name or ''}"] = poi
            continue

        existing = kept.get(poi.uri)
        if existing is None:
            kept[poi.uri] = poi
            continue

        newcomer = poi_language(poi)
        if not (matches_language(newcomer, language) or newcomer.indeterminate):
            continue
        if not matches_language(poi_language(existing), language):
            kept[poi.uri] = poi

    return list(kept.values())


def deduplicate(rows: Iterable[RawRow], language: str = DEFAULT_LANGUAGE) -> List[Poi]:
    """Raw candidate rows -> one Poi per URI (or per URI+name for 'all')."""
    rows = list(rows)
    pois = [poi for poi in (row_to_poi(row) for row in rows) if poi is not None]
    dropped = len(rows) - len(pois)
    if dropped:
        logger.debug(f"Dropped {dropped} rows without usable coordinates")
    merged = merge_variants(pois, language)
    logger.debug(f"After deduplication: {len(merged)} unique POIs from {len(rows)} rows")
    return merged
