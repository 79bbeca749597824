"""
tests/test_geo.py -- Unit tests for tours/geo.py.
"""

from __future__ import annotations

import pytest

from core.errors import ValidationFailure
from tours.geo import distance_in_unit, haversine_km, parse_latlng, parse_unit, point_latlng, within_radius

LOS_ANGELES = (34.052235, -118.243683)
ASPEN = {"type": "Point", "coordinates": [-106.822318, 39.190872]}


def test_parse_latlng():
    assert parse_latlng("34.111745,-118.113491") == (34.111745, -118.113491)


@pytest.mark.parametrize("raw", ["", "34.1", "a,b", "95,10", "10,200"])
def test_parse_latlng_rejects(raw):
    with pytest.raises(ValidationFailure):
        parse_latlng(raw)


def test_parse_unit():
    assert parse_unit("mi") == "mi"
    with pytest.raises(ValidationFailure):
        parse_unit("furlong")


def test_point_latlng_swaps_geojson_order():
    assert point_latlng(ASPEN) == (39.190872, -106.822318)
    assert point_latlng(None) is None
    assert point_latlng({"type": "Point", "coordinates": []}) is None


def test_haversine_zero_and_symmetry():
    assert haversine_km(*LOS_ANGELES, *LOS_ANGELES) == 0
    there = haversine_km(*LOS_ANGELES, 39.190872, -106.822318)
    back = haversine_km(39.190872, -106.822318, *LOS_ANGELES)
    assert there == pytest.approx(back)
    assert 1100 < there < 1250


def test_within_radius_units():
    assert within_radius(LOS_ANGELES, ASPEN, 1300, "km")
    assert not within_radius(LOS_ANGELES, ASPEN, 500, "mi")
    assert within_radius(LOS_ANGELES, ASPEN, 800, "mi")


def test_distance_in_unit():
    km = distance_in_unit(LOS_ANGELES, ASPEN, "km")
    mi = distance_in_unit(LOS_ANGELES, ASPEN, "mi")
    assert mi == pytest.approx(km * 0.621371, rel=1e-6)
    assert distance_in_unit(LOS_ANGELES, None, "km") is None
