import numpy as np
import pytest

from poi_graph.coordinates import haversine_km
from poi_graph.models import Poi
from poi_graph.ranking import rank

from conftest import CENTER_LAT, CENTER_LON


def _poi(uri, lat, lon):
    return Poi(uri=uri, lat=lat, lon=lon)


def test_vectorised_distance_matches_scalar():
    lats = np.array([21.0, 21.5, -33.9])
    lons = np.array([105.8, 106.0, 151.2])
    distances = haversine_km(CENTER_LAT, CENTER_LON, lats, lons)
    assert distances.shape == (3,)
    for lat, lon, d in zip(lats, lons, distances):
        assert d == pytest.approx(haversine_km(CENTER_LAT, CENTER_LON, lat, lon))


def test_rank_filters_sorts_and_truncates():
    pois = [
        _poi("urn:far", CENTER_LAT + 0.0095, CENTER_LON),
        _poi("urn:mid", CENTER_LAT + 0.005, CENTER_LON),
        _poi("urn:near", CENTER_LAT + 0.001, CENTER_LON),
        _poi("urn:corner", CENTER_LAT + 0.008, CENTER_LON + 0.009),
    ]
    ranked = rank(CENTER_LAT, CENTER_LON, pois, 1.0, limit=10)
    assert [p.uri for p in ranked] == ["urn:near", "urn:mid"]
    assert all(p.distance_km <= 1.0 for p in ranked)

    assert [p.uri for p in rank(CENTER_LAT, CENTER_LON, pois, 1.0, limit=1)] == ["urn:near"]


def test_equal_distances_break_ties_by_uri():
    pois = [
        _poi("urn:b", CENTER_LAT + 0.002, CENTER_LON),
        _poi("urn:a", CENTER_LAT + 0.002, CENTER_LON),
        _poi("urn:c", CENTER_LAT + 0.002, CENTER_LON),
        _poi("urn:0", CENTER_LAT + 0.003, CENTER_LON),
    ]
    ranked = rank(CENTER_LAT, CENTER_LON, pois, 1.0)
    assert [p.uri for p in ranked] == ["urn:a", "urn:b", "urn:c", "urn:0"]


def test_pois_without_coordinates_are_ignored():
    assert rank(CENTER_LAT, CENTER_LON, [Poi(uri="urn:nowhere")], 5.0) == []
