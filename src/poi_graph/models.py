"""
Data model for search results.

None of these are persisted: they are materialized per request from the
graph store and the time-series store and discarded after the response.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

RawRow = Dict[str, str]


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


@dataclass
class SensorSnapshot:
    """Latest readings of one sensing device."""
    aqi: Optional[float] = None
    temperature: Optional[float] = None
    noise_level: Optional[float] = None
    timestamp: Optional[str] = None

    def is_empty(self) -> bool:
        return self.aqi is None and self.temperature is None and self.noise_level is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aqi": self.aqi,
            "temperature": self.temperature,
            "noise_level": self.noise_level,
            "timestamp": self.timestamp,
        }


@dataclass
class TopologyEdge:
    predicate: str  # short name, e.g. "isNextTo"
    related: "Poi"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predicate": self.predicate,
            "related": self.related.uri,
            "relatedName": self.related.name,
            "relatedEntity": self.related.to_dict(include_enrichment=False),
        }


@dataclass
class Poi:
    """A point of interest, possibly only partially populated."""
    uri: str
    name: Optional[str] = None
    amenity: Optional[str] = None
    highway: Optional[str] = None
    leisure: Optional[str] = None
    brand: Optional[str] = None
    operator: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    wkt: Optional[str] = None
    distance_km: Optional[float] = None
    types: List[str] = field(default_factory=list)
    iot_stations: List[str] = field(default_factory=list)
    topology: Optional[List[TopologyEdge]] = None
    device: Optional[str] = None
    sensor_data: Optional[SensorSnapshot] = None
    related_entities: Optional[List["Poi"]] = None
    # xml:lang of the name literal, when the store has one
    name_lang: Optional[str] = field(default=None, repr=False)

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def category(self) -> Optional[str]:
        return self.amenity or self.highway or self.leisure

    def to_dict(self, include_enrichment: bool = True) -> Dict[str, Any]:
        """Render the caller-facing JSON shape."""
        data: Dict[str, Any] = {
            "poi": self.uri,
            "name": self.name,
            "amenity": self.amenity,
            "highway": self.highway,
            "leisure": self.leisure,
            "brand": self.brand,
            "operator": self.operator,
            "wkt": self.wkt,
            "lon": self.lon,
            "lat": self.lat,
            "distanceKm": self.distance_km,
        }
        if not include_enrichment:
            if self.device:
                data["device"] = self.device
            return data

        data["iotStations"] = self.iot_stations or None
        data["topology"] = [edge.to_dict() for edge in self.topology] if self.topology is not None else None
        data["device"] = self.device
        data["sensorData"] = self.sensor_data.to_dict() if self.sensor_data is not None else None
        if self.related_entities is not None:
            data["relatedEntities"] = [
                related.to_dict(include_enrichment=False) for related in self.related_entities
            ]
        return data


@dataclass
class NearbyResult:
    center_lat: float
    center_lon: float
    radius_km: float
    items: List[Poi] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "center": {"lon": self.center_lon, "lat": self.center_lat},
            "radiusKm": self.radius_km,
            "count": self.count,
            "items": [poi.to_dict() for poi in self.items],
        }


@dataclass
class TopologySearchResult:
    center_lat: float
    center_lon: float
    radius_km: float
    target_type: str
    related_types: List[str]
    relationship: str
    items: List[Poi] = field(default_factory=list)
    no_topology_found: bool = False
    message: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "center": {"lon": self.center_lon, "lat": self.center_lat},
            "radiusKm": self.radius_km,
            "targetType": self.target_type,
            "relatedTypes": list(self.related_types),
            "relationship": self.relationship,
            "count": self.count,
            "items": [poi.to_dict() for poi in self.items],
        }
        if self.no_topology_found:
            data["noTopologyFound"] = True
            data["message"] = self.message
        return data
