"""
tours/geo.py -- Great-circle helpers for the geospatial tour routes.

Coordinates follow GeoJSON order in storage ([lng, lat]) but every function
here takes (lat, lng) explicitly to avoid mix-ups at call sites.
"""

from __future__ import annotations

import math

from core.errors import ValidationFailure

EARTH_RADIUS_KM = 6378.1
EARTH_RADIUS_MI = 3963.2

# Metres -> unit
DISTANCE_MULTIPLIERS = {"km": 0.001, "mi": 0.000621371}


def parse_latlng(latlng: str) -> tuple[float, float]:
    """'34.11,-118.11' -> (34.11, -118.11). Raises ValidationFailure."""
    lat_raw, sep, lng_raw = latlng.partition(",")
    try:
        if not sep:
            raise ValueError(latlng)
        lat, lng = float(lat_raw), float(lng_raw)
    except ValueError:
        raise ValidationFailure("Please provide latitude and longitude in the format lat,lng.") from None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValidationFailure("Latitude must be within [-90, 90] and longitude within [-180, 180].")
    return lat, lng


def parse_unit(unit: str) -> str:
    if unit not in DISTANCE_MULTIPLIERS:
        raise ValidationFailure("Unit must be either 'mi' or 'km'.")
    return unit


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def point_latlng(point: dict | None) -> tuple[float, float] | None:
    """Return (lat, lng) from a GeoJSON point, or None when absent."""
    if not point:
        return None
    coordinates = point.get("coordinates") or []
    if len(coordinates) != 2:
        return None
    lng, lat = coordinates
    return float(lat), float(lng)


def within_radius(center: tuple[float, float], point: dict | None, distance: float, unit: str) -> bool:
    """True when point lies within distance (in unit) of center."""
    where = point_latlng(point)
    if where is None:
        return False
    radius_km = distance * EARTH_RADIUS_KM / (EARTH_RADIUS_MI if unit == "mi" else EARTH_RADIUS_KM)
    return haversine_km(*center, *where) <= radius_km


def distance_in_unit(center: tuple[float, float], point: dict | None, unit: str) -> float | None:
    where = point_latlng(point)
    if where is None:
        return None
    metres = haversine_km(*center, *where) * 1000
    return metres * DISTANCE_MULTIPLIERS[unit]
