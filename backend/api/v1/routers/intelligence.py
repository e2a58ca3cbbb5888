"""
Intelligence Router — forecasts, pricing, recommendations, and delivery routes.

Thin HTTP layer over the analytics entry points. Population-wide batch
results (inventory recommendations, RFM segments, pricing batches) are
cached through the injected cache port; per-entity lookups are not.
"""

import math
from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from analytics.forecasting import forecast_product_demand, get_inventory_recommendations
from analytics.sales import get_sales_analytics
from analytics.segmentation import calculate_rfm_segments
from api.deps import get_cache, get_store
from core.cache import CachePort
from core.config import get_settings
from db.store import CommerceStore
from delivery.routing import get_optimized_routes_for_date, get_worker_route
from delivery.zones import estimate_delivery_date, get_delivery_zone
from pricing.engine import (
    apply_pricing_recommendation,
    calculate_optimal_discount,
    get_pricing_recommendations,
)
from recommendations.engine import get_cart_recommendations, get_personalized_recommendations

router = APIRouter(prefix="/api/v1/intelligence", tags=["intelligence"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ProductForecastResponse(BaseModel):
    product_id: UUID
    days_ahead: int
    forecasted_demand: int


class DemandForecastResponse(BaseModel):
    product_id: UUID
    product_name: str
    current_stock: int
    average_daily_sales: float
    forecasted_demand: int
    days_of_stock_remaining: int
    recommended_reorder: int
    urgency: str


class RFMSegmentResponse(BaseModel):
    user_id: UUID
    user_name: str | None
    shop_name: str | None
    recency_score: int
    frequency_score: int
    monetary_score: int
    total_score: int
    segment: str
    last_order_date: datetime
    total_orders: int
    total_spent: float


class PriceRecommendationResponse(BaseModel):
    product_id: UUID
    product_name: str
    current_price: float
    current_discount: int
    recommended_price: float
    recommended_discount: int
    expected_impact: str
    reasoning: list[str]
    confidence: float


class ApplyDiscountRequest(BaseModel):
    discount_percentage: float = Field(ge=0, le=100)


class ApplyDiscountResponse(BaseModel):
    product_id: UUID
    discount_percentage: int


class RecommendationResponse(BaseModel):
    product_id: UUID
    score: float
    reason: str


class CartRecommendationRequest(BaseModel):
    product_ids: list[UUID] = Field(default_factory=list)
    limit: int = Field(default=5, ge=1, le=50)


class RouteStopResponse(BaseModel):
    sequence_number: int
    order_id: UUID
    shop_name: str | None
    latitude: float
    longitude: float
    distance_from_previous: float
    estimated_arrival: datetime | None


class RouteResponse(BaseModel):
    total_distance: float
    total_duration: int
    stops: list[RouteStopResponse]


class DeliveryZoneResponse(BaseModel):
    name: str
    min_distance: float
    max_distance: float | None  # None = unbounded
    delivery_fee: int
    estimated_days: int
    estimated_delivery_date: datetime


class ProductSalesResponse(BaseModel):
    product_id: UUID
    name: str
    total_sales: int
    revenue: float


class CategoryRevenueResponse(BaseModel):
    category_name: str
    revenue: float


class SalesAnalyticsResponse(BaseModel):
    total_revenue: float
    total_orders: int
    average_order_value: float
    top_products: list[ProductSalesResponse]
    revenue_by_category: list[CategoryRevenueResponse]
    orders_by_status: dict[str, int]


# ─── Helpers ─────────────────────────────────────────────────────────────────


async def _cached(cache: CachePort, key: str, compute):
    cached = await cache.get(key)
    if cached is not None:
        return cached
    value = jsonable_encoder(await compute())
    await cache.set(key, value, get_settings().cache_ttl_seconds)
    return value


# ─── Forecasting ─────────────────────────────────────────────────────────────


@router.get("/forecasts/{product_id}", response_model=ProductForecastResponse)
async def get_product_forecast(
    product_id: UUID,
    days_ahead: int = Query(7, ge=1, le=90),
    store: CommerceStore = Depends(get_store),
):
    """Forecast units demanded over the next ``days_ahead`` days."""
    demand = await forecast_product_demand(store, product_id, days_ahead=days_ahead)
    return ProductForecastResponse(product_id=product_id, days_ahead=days_ahead, forecasted_demand=demand)


@router.get("/inventory-recommendations", response_model=list[DemandForecastResponse])
async def list_inventory_recommendations(
    store: CommerceStore = Depends(get_store),
    cache: CachePort = Depends(get_cache),
):
    """Products running low or forecast to outsell stock, most urgent first."""
    return await _cached(cache, "inventory-recommendations", lambda: get_inventory_recommendations(store))


@router.get("/sales-analytics", response_model=SalesAnalyticsResponse)
async def get_sales_summary(
    days: int = Query(30, ge=1, le=365),
    store: CommerceStore = Depends(get_store),
):
    return await get_sales_analytics(store, days=days)


# ─── Segmentation ────────────────────────────────────────────────────────────


@router.get("/customer-segments", response_model=list[RFMSegmentResponse])
async def list_customer_segments(
    store: CommerceStore = Depends(get_store),
    cache: CachePort = Depends(get_cache),
):
    """RFM segments for customers with delivered orders, best first."""
    return await _cached(cache, "rfm-segments", lambda: calculate_rfm_segments(store))


# ─── Pricing ─────────────────────────────────────────────────────────────────


@router.get("/pricing", response_model=list[PriceRecommendationResponse])
async def list_pricing_recommendations(
    category_id: str | None = Query(None, description="Category UUID or 'all'"),
    min_impact: int = Query(10, ge=0, le=100),
    store: CommerceStore = Depends(get_store),
    cache: CachePort = Depends(get_cache),
):
    scope: UUID | None = None
    if category_id is not None and category_id != "all":
        try:
            scope = UUID(category_id)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail="category_id must be a UUID or 'all'") from exc

    key = f"pricing:{scope or 'all'}:{min_impact}"
    return await _cached(
        cache,
        key,
        lambda: get_pricing_recommendations(store, category_id=scope, min_impact=min_impact),
    )


@router.get("/pricing/{product_id}", response_model=PriceRecommendationResponse)
async def get_price_recommendation(
    product_id: UUID,
    store: CommerceStore = Depends(get_store),
):
    recommendation = await calculate_optimal_discount(store, product_id)
    if recommendation is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return recommendation


@router.post("/pricing/{product_id}/apply", response_model=ApplyDiscountResponse)
async def apply_price_recommendation(
    product_id: UUID,
    body: ApplyDiscountRequest,
    store: CommerceStore = Depends(get_store),
):
    """Write a discount back to the catalog. Never triggered by the read endpoints."""
    applied = await apply_pricing_recommendation(store, product_id, body.discount_percentage)
    if applied is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return ApplyDiscountResponse(product_id=product_id, discount_percentage=applied)


# ─── Recommendations ─────────────────────────────────────────────────────────


@router.get("/recommendations/users/{user_id}", response_model=list[RecommendationResponse])
async def list_personalized_recommendations(
    user_id: UUID,
    limit: int = Query(10, ge=1, le=50),
    store: CommerceStore = Depends(get_store),
):
    return await get_personalized_recommendations(store, user_id, limit=limit)


@router.post("/recommendations/cart", response_model=list[RecommendationResponse])
async def list_cart_recommendations(
    body: CartRecommendationRequest,
    store: CommerceStore = Depends(get_store),
):
    return await get_cart_recommendations(store, body.product_ids, limit=body.limit)


# ─── Delivery ────────────────────────────────────────────────────────────────


@router.get("/routes", response_model=list[RouteResponse])
async def list_routes(
    day: date = Query(..., alias="date"),
    store: CommerceStore = Depends(get_store),
):
    """Optimized delivery routes for a day's pending orders."""
    return await get_optimized_routes_for_date(store, day)


@router.get("/routes/workers/{worker_id}", response_model=RouteResponse)
async def get_route_for_worker(
    worker_id: UUID,
    day: date = Query(..., alias="date"),
    store: CommerceStore = Depends(get_store),
):
    route = await get_worker_route(store, worker_id, day)
    if route is None:
        raise HTTPException(status_code=404, detail="No deliveries scheduled")
    return route


@router.get("/delivery-zone", response_model=DeliveryZoneResponse)
async def get_zone(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
):
    zone = get_delivery_zone(latitude, longitude)
    return DeliveryZoneResponse(
        name=zone.name,
        min_distance=zone.min_distance,
        max_distance=zone.max_distance if math.isfinite(zone.max_distance) else None,
        delivery_fee=zone.delivery_fee,
        estimated_days=zone.estimated_days,
        estimated_delivery_date=estimate_delivery_date(latitude, longitude),
    )
