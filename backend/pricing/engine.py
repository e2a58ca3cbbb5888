"""
Dynamic Pricing Engine — Discount recommendations from stock, age, and market.

Scores each product on five factors and converts the score into a bounded
discount percentage with human-readable reasoning and a confidence value.

Scoring (points ≈ discount %):
  stock pressure × 40  +  age × 20  +  category elasticity × 15
  + market position × 15 (only when priced above the category average)

Margin protection overrides every other factor:
  margin < 10% → at most 5% discount
  margin < 20% → at most 15% discount
Final discount is rounded and clamped to [0, 50].

Recommendations are never applied automatically. Writing a discount back to
the catalog is the separate ``apply_pricing_recommendation`` call.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from analytics.sales import get_product_sales_history
from core.concurrency import map_with_concurrency
from core.config import get_settings
from core.rounding import round_half_up
from db.models import utcnow
from db.store import CommerceStore, ProductSnapshot

logger = structlog.get_logger()

STOCK_WINDOW_DAYS = 30
MAX_DISCOUNT = 50
BATCH_PRODUCT_LIMIT = 50
DEFAULT_PROFIT_MARGIN = 20.0
DEFAULT_ELASTICITY = 0.6

# Category → price sensitivity (0-1, higher = discounts move more volume)
CATEGORY_ELASTICITY: dict[str, float] = {
    "dairy": 0.7,
    "beverages": 0.8,
    "snacks": 0.6,
    "oils": 0.5,
    "cleaning & hygiene": 0.6,
    "canned goods": 0.5,
}

# Days of stock at the current sale rate → pressure, checked in order
STOCK_PRESSURE_TIERS = ((60, 1.0), (30, 0.7), (14, 0.4))
LOW_STOCK_PRESSURE = 0.1
# No recent sales but a meaningful pile of stock
IDLE_STOCK_THRESHOLD = 50
IDLE_STOCK_PRESSURE = 0.8

# Product age in days → multiplier, checked in order
AGE_TIERS = ((90, 1.0), (60, 0.7), (30, 0.4))
NEW_PRODUCT_MULTIPLIER = 0.1

REASON_HIGH_STOCK = "High stock level - inventory needs clearing"
REASON_AGED_PRODUCT = "Aging product - needs to sell quickly"
REASON_PRICE_SENSITIVE = "Price-sensitive product - discount will lift sales"
REASON_ABOVE_MARKET = "Priced above category average - weak competitiveness"
REASON_THIN_MARGIN = "Thin profit margin - discount limited"


@dataclass
class PricingFactors:
    stock_pressure: float  # 0-1: higher = more urgent to sell
    age_multiplier: float  # 0-1: older products tolerate deeper discounts
    demand_elasticity: float  # 0-1: category price sensitivity
    market_position: float  # relative to category average; >0 = above market
    profit_margin: float  # percent, may be negative


@dataclass
class DynamicPriceRecommendation:
    product_id: uuid.UUID
    product_name: str
    current_price: float
    current_discount: int
    recommended_price: float
    recommended_discount: int
    expected_impact: str
    reasoning: list[str] = field(default_factory=list)
    confidence: float = 0.5


# ─── Factor derivation ──────────────────────────────────────────────────────


def get_category_elasticity(category_name: str | None) -> float:
    if not category_name:
        return DEFAULT_ELASTICITY
    return CATEGORY_ELASTICITY.get(category_name.strip().lower(), DEFAULT_ELASTICITY)


def get_stock_pressure(stock: int, avg_daily_sales: float) -> float:
    if avg_daily_sales > 0:
        days_of_stock = stock / avg_daily_sales
        for min_days, pressure in STOCK_PRESSURE_TIERS:
            if days_of_stock > min_days:
                return pressure
        return LOW_STOCK_PRESSURE
    if stock > IDLE_STOCK_THRESHOLD:
        return IDLE_STOCK_PRESSURE
    return 0.0


def get_age_multiplier(age_days: float) -> float:
    for min_days, multiplier in AGE_TIERS:
        if age_days > min_days:
            return multiplier
    return NEW_PRODUCT_MULTIPLIER


def get_market_position(price: float, category_average: float | None) -> float:
    if not category_average:
        return 0.0
    return (price - category_average) / category_average


def get_profit_margin(price: float, cost_price: float | None) -> float:
    if cost_price is None or cost_price <= 0 or price <= 0:
        return DEFAULT_PROFIT_MARGIN
    return (price - cost_price) / price * 100


async def analyze_pricing_factors(
    store: CommerceStore,
    product: ProductSnapshot,
    now: datetime | None = None,
) -> PricingFactors:
    now = now or utcnow()

    history = await get_product_sales_history(store, product.product_id, days=STOCK_WINDOW_DAYS, now=now)
    avg_daily_sales = sum(day.quantity for day in history) / STOCK_WINDOW_DAYS

    age_days = (now - product.created_at).total_seconds() / 86400
    category_average = await store.get_category_average_price(product.category_id)

    return PricingFactors(
        stock_pressure=get_stock_pressure(product.stock, avg_daily_sales),
        age_multiplier=get_age_multiplier(age_days),
        demand_elasticity=get_category_elasticity(product.category_name),
        market_position=get_market_position(product.price, category_average),
        profit_margin=get_profit_margin(product.price, product.cost_price),
    )


# ─── Scoring ────────────────────────────────────────────────────────────────


def score_discount(factors: PricingFactors) -> int:
    """Convert pricing factors into a discount percentage in [0, 50]."""
    score = factors.stock_pressure * 40
    score += factors.age_multiplier * 20
    score += factors.demand_elasticity * 15
    if factors.market_position > 0:
        score += factors.market_position * 15

    # Margin protection
    if factors.profit_margin < 10:
        score = min(score, 5)
    elif factors.profit_margin < 20:
        score = min(score, 15)

    return min(max(round_half_up(score), 0), MAX_DISCOUNT)


def build_reasoning(factors: PricingFactors) -> list[str]:
    reasoning = []
    if factors.stock_pressure > 0.7:
        reasoning.append(REASON_HIGH_STOCK)
    if factors.age_multiplier > 0.5:
        reasoning.append(REASON_AGED_PRODUCT)
    if factors.demand_elasticity > 0.6:
        reasoning.append(REASON_PRICE_SENSITIVE)
    if factors.market_position > 0.3:
        reasoning.append(REASON_ABOVE_MARKET)
    if factors.profit_margin < 15:
        reasoning.append(REASON_THIN_MARGIN)
    return reasoning


def classify_impact(discount: int) -> str:
    if discount > 30:
        return "significant"
    if discount < 10:
        return "minor"
    return "moderate"


def calculate_confidence(factors: PricingFactors) -> float:
    confidence = 0.5

    # Moderate stock pressure: neither a stock-out risk nor an outlier pile
    if 0.3 < factors.stock_pressure < 0.9:
        confidence += 0.2
    # Room to discount
    if factors.profit_margin > 15:
        confidence += 0.2
    # Price already aligned with market
    if abs(factors.market_position) < 0.3:
        confidence += 0.1

    return min(round(confidence, 2), 0.95)


def build_recommendation(product: ProductSnapshot, factors: PricingFactors) -> DynamicPriceRecommendation:
    discount = score_discount(factors)
    return DynamicPriceRecommendation(
        product_id=product.product_id,
        product_name=product.name,
        current_price=product.price,
        current_discount=product.discount_percentage,
        recommended_price=product.price * (1 - discount / 100),
        recommended_discount=discount,
        expected_impact=classify_impact(discount),
        reasoning=build_reasoning(factors),
        confidence=calculate_confidence(factors),
    )


# ─── Entry points ───────────────────────────────────────────────────────────


async def calculate_optimal_discount(
    store: CommerceStore,
    product_id: uuid.UUID,
    now: datetime | None = None,
) -> DynamicPriceRecommendation | None:
    """Discount recommendation for one product. Returns None if the product doesn't exist."""
    product = await store.get_product(product_id)
    if product is None:
        return None
    factors = await analyze_pricing_factors(store, product, now=now)
    return build_recommendation(product, factors)


async def get_pricing_recommendations(
    store: CommerceStore,
    category_id: uuid.UUID | str | None = None,
    min_impact: int = 10,
    now: datetime | None = None,
    concurrency: int | None = None,
) -> list[DynamicPriceRecommendation]:
    """
    Recommendations for up to 50 available products whose recommended discount
    differs from the current one by at least ``min_impact`` points, largest
    increase first. ``category_id`` of None or "all" means every category.
    """
    now = now or utcnow()
    if concurrency is None:
        concurrency = get_settings().analytics_fanout_concurrency
    if category_id == "all":
        category_id = None
    elif isinstance(category_id, str):
        category_id = uuid.UUID(category_id)

    products = await store.list_available_products(category_id=category_id, limit=BATCH_PRODUCT_LIMIT)

    async def evaluate(product: ProductSnapshot, _index: int) -> DynamicPriceRecommendation:
        factors = await analyze_pricing_factors(store, product, now=now)
        return build_recommendation(product, factors)

    computed = await map_with_concurrency(products, concurrency, evaluate)

    recommendations = [
        rec for rec in computed if abs(rec.recommended_discount - rec.current_discount) >= min_impact
    ]
    recommendations.sort(key=lambda r: r.recommended_discount - r.current_discount, reverse=True)

    logger.info(
        "pricing.batch_computed",
        products_evaluated=len(products),
        recommendations=len(recommendations),
        min_impact=min_impact,
    )
    return recommendations


async def apply_pricing_recommendation(
    store: CommerceStore,
    product_id: uuid.UUID,
    discount_percentage: float,
) -> int | None:
    """Write a discount to the catalog. Returns the stored percentage, or None if the product doesn't exist."""
    discount = min(max(round_half_up(discount_percentage), 0), 100)
    updated = await store.update_discount(product_id, discount)
    if not updated:
        logger.warning("pricing.apply_missing_product", product_id=str(product_id))
        return None
    logger.info("pricing.discount_applied", product_id=str(product_id), discount=discount)
    return discount
