"""
Demand Forecaster — Exponential smoothing with dampened trend.

Turns the realized-sales history of a product into a forward-looking unit
estimate, and flags products whose stock won't cover near-term demand.

Algorithm (per product):
  1. 90-day trailing daily series, zero-filled
  2. Average daily sales = mean of the most recent 30 days
  3. Single exponential smoothing over all 90 days:
       F = α·observed + (1 − α)·F, α = 0.3, F seeded at the 90-day mean
  4. Dampened trend: F *= 1 + 0.3 × (mean(last 7) − mean(first 7)) / mean(first 7)
     (skipped when the first-week mean is zero)
  5. Demand = ⌈F × days_ahead⌉, never negative

Inventory urgency from days of stock remaining:
  < 3 critical · < 7 high · < 14 medium · otherwise low
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

import pandas as pd
import structlog

from analytics.sales import build_daily_series, get_product_sales_history
from core.concurrency import map_with_concurrency
from core.config import get_settings
from core.rounding import round_half_up
from db.models import utcnow
from db.store import CommerceStore, ProductSnapshot

logger = structlog.get_logger()

Urgency = Literal["low", "medium", "high", "critical"]

HISTORY_WINDOW_DAYS = 90
AVERAGE_WINDOW_DAYS = 30
TREND_WINDOW_DAYS = 7
SMOOTHING_ALPHA = 0.3
TREND_DAMPENING = 0.3
DEFAULT_FORECAST_DAYS = 7

# Stock coverage reported when a product has no recent sales
NO_SALES_DAYS_SENTINEL = 999

# Upper bounds (exclusive) on days of stock, checked in order
URGENCY_THRESHOLDS: tuple[tuple[float, Urgency], ...] = (
    (3, "critical"),
    (7, "high"),
    (14, "medium"),
)
URGENCY_ORDER: dict[Urgency, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}


@dataclass
class DemandForecast:
    product_id: uuid.UUID
    product_name: str
    current_stock: int
    average_daily_sales: float
    forecasted_demand: int
    days_of_stock_remaining: int
    recommended_reorder: int
    urgency: Urgency


def exponential_smoothing_forecast(series: pd.Series, days_ahead: int) -> int:
    """Forecast total units over ``days_ahead`` from a zero-filled daily series."""
    values = series.astype(float)
    if values.empty:
        return 0

    forecast = float(values.mean())
    for observed in values:
        forecast = SMOOTHING_ALPHA * observed + (1 - SMOOTHING_ALPHA) * forecast

    older_avg = float(values.iloc[:TREND_WINDOW_DAYS].mean())
    recent_avg = float(values.iloc[-TREND_WINDOW_DAYS:].mean())
    if older_avg > 0:
        trend = (recent_avg - older_avg) / older_avg
        forecast *= 1 + trend * TREND_DAMPENING

    # Strip float residue so a flat series of k doesn't ceil to k×days + 1
    demand = math.ceil(round(forecast * days_ahead, 6))
    return max(0, demand)


def classify_urgency(days_of_stock: float) -> Urgency:
    for upper_bound, urgency in URGENCY_THRESHOLDS:
        if days_of_stock < upper_bound:
            return urgency
    return "low"


def average_daily_sales(series: pd.Series) -> float:
    """Mean of the most recent 30 days of a zero-filled series."""
    recent = series.iloc[-AVERAGE_WINDOW_DAYS:]
    return float(recent.mean()) if not recent.empty else 0.0


async def _load_series(store: CommerceStore, product_id: uuid.UUID, now: datetime) -> pd.Series:
    history = await get_product_sales_history(store, product_id, days=HISTORY_WINDOW_DAYS, now=now)
    return build_daily_series(history, HISTORY_WINDOW_DAYS, now.date())


async def forecast_product_demand(
    store: CommerceStore,
    product_id: uuid.UUID,
    days_ahead: int = DEFAULT_FORECAST_DAYS,
    now: datetime | None = None,
) -> int:
    """Forecast units demanded over the next ``days_ahead`` days. 0 with no history."""
    now = now or utcnow()
    series = await _load_series(store, product_id, now)
    return exponential_smoothing_forecast(series, days_ahead)


def days_of_stock(stock: int, avg_sales: float) -> float:
    return stock / avg_sales if avg_sales > 0 else NO_SALES_DAYS_SENTINEL


def needs_reorder_attention(stock_days: float, recommended_reorder: int) -> bool:
    return stock_days < 14 or recommended_reorder > 0


def build_demand_forecast(product: ProductSnapshot, series: pd.Series, days_ahead: int) -> DemandForecast:
    avg_sales = average_daily_sales(series)
    forecasted = exponential_smoothing_forecast(series, days_ahead)
    stock_days = days_of_stock(product.stock, avg_sales)

    return DemandForecast(
        product_id=product.product_id,
        product_name=product.name,
        current_stock=product.stock,
        average_daily_sales=avg_sales,
        forecasted_demand=forecasted,
        days_of_stock_remaining=round_half_up(stock_days),
        recommended_reorder=max(0, forecasted - product.stock),
        urgency=classify_urgency(stock_days),
    )


async def get_inventory_recommendations(
    store: CommerceStore,
    days_ahead: int = DEFAULT_FORECAST_DAYS,
    now: datetime | None = None,
    concurrency: int | None = None,
) -> list[DemandForecast]:
    """
    Forecast every available product and return those running low, most urgent first.

    A product is included when it has under 14 days of stock or its forecast
    exceeds current stock.
    """
    now = now or utcnow()
    if concurrency is None:
        concurrency = get_settings().analytics_fanout_concurrency
    products = await store.list_available_products()

    async def evaluate(product: ProductSnapshot, _index: int) -> DemandForecast:
        series = await _load_series(store, product.product_id, now)
        return build_demand_forecast(product, series, days_ahead)

    evaluated = await map_with_concurrency(products, concurrency, evaluate)

    recommendations = [
        forecast
        for forecast in evaluated
        if needs_reorder_attention(
            days_of_stock(forecast.current_stock, forecast.average_daily_sales),
            forecast.recommended_reorder,
        )
    ]
    recommendations.sort(key=lambda f: URGENCY_ORDER[f.urgency])

    logger.info(
        "forecast.inventory_recommendations",
        products_evaluated=len(products),
        flagged=len(recommendations),
        critical=sum(1 for f in recommendations if f.urgency == "critical"),
    )
    return recommendations
