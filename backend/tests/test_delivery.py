"""
Tests for delivery zones and route optimization.

Covers:
  - Haversine distance
  - Zone bands, boundaries, and delivery date estimates
  - Nearest-neighbor ordering, distance/duration totals, arrival times
  - Splitting a day's orders into capped routes
"""

import math
import uuid
from datetime import datetime, time, timedelta

import pytest

from core.rounding import round_half_up
from delivery.geo import Coordinate, haversine_km
from delivery.routing import (
    Location,
    chunk_locations,
    get_optimized_routes_for_date,
    get_worker_route,
    optimize_route,
)
from delivery.zones import DELIVERY_ZONES, estimate_delivery_date, get_delivery_zone, zone_for_distance

WAREHOUSE = Coordinate(35.6892, 51.3890)
ISFAHAN = (32.6546, 51.6680)
NOW = datetime(2026, 3, 15, 8, 0)


# ── Geo ────────────────────────────────────────────────────────────────


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(35.0, 51.0, 35.0, 51.0) == 0.0

    def test_tehran_to_isfahan(self):
        assert haversine_km(WAREHOUSE.latitude, WAREHOUSE.longitude, *ISFAHAN) == pytest.approx(338, abs=5)

    def test_symmetric(self):
        forward = haversine_km(35.7, 51.4, 35.8, 51.5)
        backward = haversine_km(35.8, 51.5, 35.7, 51.4)
        assert forward == pytest.approx(backward)


# ── Zones ──────────────────────────────────────────────────────────────


class TestDeliveryZones:
    def test_zones_partition_distance(self):
        """Contiguous bands from 0 to ∞ with non-decreasing fee and lead time."""
        assert DELIVERY_ZONES[0].min_distance == 0
        assert math.isinf(DELIVERY_ZONES[-1].max_distance)
        for inner, outer in zip(DELIVERY_ZONES, DELIVERY_ZONES[1:]):
            assert inner.max_distance == outer.min_distance
            assert inner.delivery_fee <= outer.delivery_fee
            assert inner.estimated_days <= outer.estimated_days

    def test_band_boundaries(self):
        assert zone_for_distance(0).name == "Zone 1 - Nearby"
        assert zone_for_distance(9.99).name == "Zone 1 - Nearby"
        assert zone_for_distance(10).name == "Zone 2 - Intermediate"
        assert zone_for_distance(25).name == "Zone 3 - Far"
        assert zone_for_distance(50).name == "Zone 4 - Out of city"
        assert zone_for_distance(math.inf).name == "Zone 4 - Out of city"

    def test_warehouse_is_nearby(self):
        zone = get_delivery_zone(WAREHOUSE.latitude, WAREHOUSE.longitude, warehouse=WAREHOUSE)
        assert zone.name == "Zone 1 - Nearby"
        assert zone.delivery_fee == 0

    def test_isfahan_is_out_of_city(self):
        zone = get_delivery_zone(*ISFAHAN, warehouse=WAREHOUSE)
        assert zone.name == "Zone 4 - Out of city"
        assert zone.delivery_fee == 200_000
        assert zone.estimated_days == 3

    def test_estimate_delivery_date(self):
        assert estimate_delivery_date(*ISFAHAN, now=NOW, warehouse=WAREHOUSE) == NOW + timedelta(days=3)
        assert estimate_delivery_date(35.70, 51.40, now=NOW, warehouse=WAREHOUSE) == NOW + timedelta(days=1)


# ── Route optimization ─────────────────────────────────────────────────


def _location(lat, lon, order_id=None):
    return Location(order_id=order_id or uuid.uuid4(), latitude=lat, longitude=lon)


class TestOptimizeRoute:
    def test_empty_route(self):
        route = optimize_route([], now=NOW, warehouse=WAREHOUSE)
        assert route.total_distance == 0
        assert route.total_duration == 0
        assert route.stops == []

    def test_visits_nearest_first(self):
        far = _location(35.80, 51.50)
        near = _location(35.70, 51.40)
        mid = _location(35.75, 51.45)

        route = optimize_route([far, near, mid], now=NOW, warehouse=WAREHOUSE)

        assert [s.order_id for s in route.stops] == [near.order_id, mid.order_id, far.order_id]
        assert [s.sequence_number for s in route.stops] == [1, 2, 3]

    def test_totals_include_return_leg(self):
        locations = [_location(35.70, 51.40), _location(35.75, 51.45)]

        route = optimize_route(locations, now=NOW, warehouse=WAREHOUSE)

        legs = sum(s.distance_from_previous for s in route.stops)
        last = route.stops[-1]
        unrounded = legs + haversine_km(last.latitude, last.longitude, WAREHOUSE.latitude, WAREHOUSE.longitude)
        assert route.total_distance == round(unrounded, 1)
        assert route.total_duration == round_half_up(unrounded / 30 * 60 + 5 * 2)

    def test_arrivals_accumulate_travel_and_stop_time(self):
        locations = [_location(35.70, 51.40), _location(35.75, 51.45)]

        route = optimize_route(locations, now=NOW, warehouse=WAREHOUSE)

        first, second = route.stops
        expected_first = first.distance_from_previous / 30 * 60 + 5
        expected_second = expected_first + (second.distance_from_previous / 30 * 60 + 5)
        assert first.estimated_arrival == NOW + timedelta(minutes=expected_first)
        assert second.estimated_arrival == NOW + timedelta(minutes=expected_second)

    def test_duplicate_order_ids_each_get_a_stop(self):
        order_id = uuid.uuid4()
        route = optimize_route(
            [_location(35.70, 51.40, order_id), _location(35.71, 51.41, order_id)],
            now=NOW,
            warehouse=WAREHOUSE,
        )
        assert len(route.stops) == 2

    def test_ties_go_to_first_listed(self):
        first = _location(35.70, 51.40)
        twin = _location(35.70, 51.40)
        route = optimize_route([first, twin], now=NOW, warehouse=WAREHOUSE)
        assert route.stops[0].order_id == first.order_id
        assert route.stops[1].distance_from_previous == 0


class TestChunkLocations:
    def test_caps_each_chunk(self):
        locations = [_location(35.7, 51.4) for _ in range(32)]
        assert [len(chunk) for chunk in chunk_locations(locations, 15)] == [15, 15, 2]

    def test_preserves_order(self):
        locations = [_location(35.7, 51.4) for _ in range(4)]
        chunks = chunk_locations(locations, 3)
        assert chunks[0] + chunks[1] == locations


# ── Store-backed ───────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestRoutesFromStore:
    async def test_routes_for_delivery_day(self, store, seeded_db, now):
        routes = await get_optimized_routes_for_date(store, seeded_db["delivery_day"], now=now)

        assert len(routes) == 1
        [stop] = routes[0].stops
        assert stop.order_id == seeded_db["pending_order"].order_id
        assert stop.shop_name == "Ahmadi Grocery"

    async def test_no_routes_on_empty_day(self, store, seeded_db, now):
        assert await get_optimized_routes_for_date(store, now.date() + timedelta(days=30), now=now) == []

    async def test_routes_split_at_stop_cap(self, store, seeded_db, test_db, now):
        from db.models import Order

        customer = seeded_db["customer_a"]
        for i in range(16):
            test_db.add(
                Order(
                    user_id=customer.user_id,
                    status="PENDING",
                    created_at=now - timedelta(minutes=i),
                    delivery_date=datetime.combine(seeded_db["delivery_day"], time(9, 0)),
                )
            )
        await test_db.commit()

        routes = await get_optimized_routes_for_date(store, seeded_db["delivery_day"], now=now)

        assert [len(r.stops) for r in routes] == [15, 2]

    async def test_worker_route(self, store, seeded_db, now):
        worker_id = seeded_db["worker"].user_id

        route = await get_worker_route(store, worker_id, seeded_db["delivery_day"], now=now)
        assert route is not None
        assert len(route.stops) == 1

        assert await get_worker_route(store, worker_id, now.date() + timedelta(days=30), now=now) is None
