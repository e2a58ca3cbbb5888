"""Great-circle distance and the warehouse origin."""

from __future__ import annotations

import math
from dataclasses import dataclass

from core.config import get_settings

EARTH_RADIUS_KM = 6371


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance in kilometers between two (lat, lon) points."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def get_warehouse_location() -> Coordinate:
    settings = get_settings()
    return Coordinate(settings.warehouse_latitude, settings.warehouse_longitude)
