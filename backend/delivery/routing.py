"""
Delivery Route Optimizer — Greedy nearest-neighbor tours from the warehouse.

Algorithm:
1. Start at the warehouse with every location unvisited
2. Repeatedly travel to the closest unvisited location (haversine km);
   ties go to the location listed first
3. Return to the warehouse (the return leg counts toward total distance)
4. Duration = total km / 30 km/h + 5 min per stop
5. Arrival per stop = start time + cumulative (leg travel + 5 min stop)

Nearest neighbor is a heuristic, not an exact TSP solution. Each tour is
capped at 15 stops, so a day's pending orders are split into independent
routes that one driver can cover.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

import structlog

from core.config import get_settings
from core.rounding import round_half_up
from db.models import utcnow
from db.store import CommerceStore
from delivery.geo import Coordinate, get_warehouse_location, haversine_km

logger = structlog.get_logger()


@dataclass(frozen=True)
class Location:
    order_id: uuid.UUID
    latitude: float
    longitude: float
    shop_name: str | None = None
    delivery_date: datetime | None = None


@dataclass
class RouteStop:
    sequence_number: int  # 1-based stop position
    order_id: uuid.UUID
    latitude: float
    longitude: float
    distance_from_previous: float  # km
    shop_name: str | None = None
    estimated_arrival: datetime | None = None


@dataclass
class OptimizedRoute:
    total_distance: float  # km, 1 decimal
    total_duration: int  # minutes
    stops: list[RouteStop] = field(default_factory=list)


def _travel_minutes(distance_km: float, speed_kmh: float) -> float:
    return distance_km / speed_kmh * 60


def optimize_route(
    locations: list[Location],
    now: datetime | None = None,
    warehouse: Coordinate | None = None,
) -> OptimizedRoute:
    """Build a nearest-neighbor tour over ``locations`` starting and ending at the warehouse."""
    if not locations:
        return OptimizedRoute(total_distance=0, total_duration=0, stops=[])

    settings = get_settings()
    speed_kmh = settings.route_average_speed_kmh
    stop_minutes = settings.route_stop_minutes
    warehouse = warehouse or get_warehouse_location()
    start_time = now or utcnow()

    # Track by position so duplicate order ids still each get a stop
    unvisited = list(range(len(locations)))
    current = warehouse
    total_distance = 0.0
    stops: list[RouteStop] = []

    while unvisited:
        nearest_pos = None
        nearest_distance = math.inf
        for pos in unvisited:
            location = locations[pos]
            distance = haversine_km(current.latitude, current.longitude, location.latitude, location.longitude)
            if distance < nearest_distance:
                nearest_distance = distance
                nearest_pos = pos

        nearest = locations[nearest_pos]
        stops.append(
            RouteStop(
                sequence_number=len(stops) + 1,
                order_id=nearest.order_id,
                shop_name=nearest.shop_name,
                latitude=nearest.latitude,
                longitude=nearest.longitude,
                distance_from_previous=nearest_distance,
            )
        )
        total_distance += nearest_distance
        current = Coordinate(nearest.latitude, nearest.longitude)
        unvisited.remove(nearest_pos)

    total_distance += haversine_km(current.latitude, current.longitude, warehouse.latitude, warehouse.longitude)
    total_duration = _travel_minutes(total_distance, speed_kmh) + stop_minutes * len(stops)

    elapsed = 0.0
    for stop in stops:
        elapsed += _travel_minutes(stop.distance_from_previous, speed_kmh) + stop_minutes
        stop.estimated_arrival = start_time + timedelta(minutes=elapsed)

    return OptimizedRoute(
        total_distance=round(total_distance, 1),
        total_duration=round_half_up(total_duration),
        stops=stops,
    )


def chunk_locations(locations: list[Location], max_stops: int) -> list[list[Location]]:
    return [locations[i : i + max_stops] for i in range(0, len(locations), max_stops)]


async def get_optimized_routes_for_date(
    store: CommerceStore,
    day: date,
    now: datetime | None = None,
) -> list[OptimizedRoute]:
    """Split the day's pending geocoded orders into ≤15-stop routes and optimize each."""
    start = datetime.combine(day, time.min)
    candidates = await store.get_pending_deliveries(start, start + timedelta(days=1))
    if not candidates:
        return []

    locations = [
        Location(
            order_id=c.order_id,
            latitude=c.latitude,
            longitude=c.longitude,
            shop_name=c.shop_name,
            delivery_date=c.delivery_date,
        )
        for c in candidates
    ]

    max_stops = get_settings().route_max_stops
    routes = [optimize_route(batch, now=now) for batch in chunk_locations(locations, max_stops)]

    logger.info(
        "routing.routes_built",
        day=day.isoformat(),
        orders=len(locations),
        routes=len(routes),
        total_km=round(sum(r.total_distance for r in routes), 1),
    )
    return routes


async def get_worker_route(
    store: CommerceStore,
    worker_id: uuid.UUID,
    day: date,
    now: datetime | None = None,
) -> OptimizedRoute | None:
    """
    Route for a delivery worker on ``day``.

    Orders aren't assigned to workers yet, so every worker gets the first route.
    """
    routes = await get_optimized_routes_for_date(store, day, now=now)
    if not routes:
        logger.debug("routing.no_route_for_worker", worker_id=str(worker_id), day=day.isoformat())
        return None
    return routes[0]
