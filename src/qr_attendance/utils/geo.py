from __future__ import annotations

import math

EARTH_RADIUS_METERS = 6_371_000


class InvalidCoordinates(ValueError):
    pass


def parse_coordinates(latitude: str | float, longitude: str | float) -> tuple[float, float]:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinates("Latitude and longitude must be numbers.") from exc

    if math.isnan(lat) or math.isnan(lon):
        raise InvalidCoordinates("Latitude and longitude must be numbers.")

    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise InvalidCoordinates("Invalid latitude (-90 to 90) or longitude (-180 to 180).")

    return lat, lon


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points (haversine)."""

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c
