"""
Delivery Zones — distance-from-warehouse bands with fee and lead time.

Zones partition [0, ∞) km: each zone's max is the next zone's min, the last
zone is unbounded, and fees / lead times never decrease outward.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from db.models import utcnow
from delivery.geo import Coordinate, get_warehouse_location, haversine_km


@dataclass(frozen=True)
class DeliveryZone:
    name: str
    min_distance: float  # km, inclusive
    max_distance: float  # km, exclusive
    delivery_fee: int  # Toman
    estimated_days: int


DELIVERY_ZONES: tuple[DeliveryZone, ...] = (
    DeliveryZone("Zone 1 - Nearby", 0, 10, 0, 1),
    DeliveryZone("Zone 2 - Intermediate", 10, 25, 50_000, 1),
    DeliveryZone("Zone 3 - Far", 25, 50, 100_000, 2),
    DeliveryZone("Zone 4 - Out of city", 50, math.inf, 200_000, 3),
)


def zone_for_distance(distance_km: float) -> DeliveryZone:
    for zone in DELIVERY_ZONES:
        if zone.min_distance <= distance_km < zone.max_distance:
            return zone
    # inf/nan distances fall through the half-open bands
    return DELIVERY_ZONES[-1]


def get_delivery_zone(latitude: float, longitude: float, warehouse: Coordinate | None = None) -> DeliveryZone:
    warehouse = warehouse or get_warehouse_location()
    distance = haversine_km(warehouse.latitude, warehouse.longitude, latitude, longitude)
    return zone_for_distance(distance)


def estimate_delivery_date(
    latitude: float,
    longitude: float,
    now: datetime | None = None,
    warehouse: Coordinate | None = None,
) -> datetime:
    """Now plus the zone's lead time in whole days."""
    now = now or utcnow()
    zone = get_delivery_zone(latitude, longitude, warehouse=warehouse)
    return now + timedelta(days=zone.estimated_days)
