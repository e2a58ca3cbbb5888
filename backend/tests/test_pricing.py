"""
Tests for the Dynamic Pricing Engine.

Covers:
  - Factor derivation (stock pressure, age, elasticity, market, margin)
  - Discount scoring with margin protection and clamping
  - Reasoning, impact, and confidence
  - Store-backed single/batch recommendations and applying a discount
"""

import uuid
from datetime import datetime, timedelta

import pytest

from db.store import OrderLineFact, ProductSnapshot
from pricing.engine import (
    REASON_ABOVE_MARKET,
    REASON_AGED_PRODUCT,
    REASON_HIGH_STOCK,
    REASON_PRICE_SENSITIVE,
    REASON_THIN_MARGIN,
    PricingFactors,
    analyze_pricing_factors,
    apply_pricing_recommendation,
    build_reasoning,
    calculate_confidence,
    calculate_optimal_discount,
    classify_impact,
    get_age_multiplier,
    get_category_elasticity,
    get_market_position,
    get_pricing_recommendations,
    get_profit_margin,
    get_stock_pressure,
    score_discount,
)

# ── Factors ────────────────────────────────────────────────────────────


class TestStockPressure:
    def test_days_of_stock_tiers(self):
        assert get_stock_pressure(700, 10) == 1.0  # 70 days
        assert get_stock_pressure(600, 10) == 0.7  # exactly 60 days is not > 60
        assert get_stock_pressure(400, 10) == 0.7
        assert get_stock_pressure(200, 10) == 0.4
        assert get_stock_pressure(100, 10) == 0.1

    def test_no_sales_with_large_stock(self):
        assert get_stock_pressure(100, 0) == 0.8

    def test_no_sales_with_small_stock(self):
        assert get_stock_pressure(50, 0) == 0.0
        assert get_stock_pressure(0, 0) == 0.0


class TestAgeAndMarket:
    def test_age_tiers(self):
        assert get_age_multiplier(120) == 1.0
        assert get_age_multiplier(90) == 0.7
        assert get_age_multiplier(61) == 0.7
        assert get_age_multiplier(45) == 0.4
        assert get_age_multiplier(10) == 0.1

    def test_market_position(self):
        assert get_market_position(120, 100) == pytest.approx(0.2)
        assert get_market_position(80, 100) == pytest.approx(-0.2)
        assert get_market_position(100, None) == 0.0
        assert get_market_position(100, 0) == 0.0

    def test_profit_margin(self):
        assert get_profit_margin(100, 70) == pytest.approx(30)
        assert get_profit_margin(100, 120) == pytest.approx(-20)
        assert get_profit_margin(100, None) == 20
        assert get_profit_margin(100, 0) == 20

    def test_category_elasticity_is_case_insensitive(self):
        assert get_category_elasticity("Dairy") == 0.7
        assert get_category_elasticity("  BEVERAGES ") == 0.8
        assert get_category_elasticity("Frozen") == 0.6
        assert get_category_elasticity(None) == 0.6


# ── Scoring ────────────────────────────────────────────────────────────


class TestScoreDiscount:
    def test_clamped_to_fifty(self):
        factors = PricingFactors(0.8, 1.0, 0.6, 0.0, 30)
        assert score_discount(factors) == 50

    def test_thin_margin_caps_at_five(self):
        factors = PricingFactors(1.0, 1.0, 0.8, 0.5, 5)
        assert score_discount(factors) == 5

    def test_moderate_margin_caps_at_fifteen(self):
        factors = PricingFactors(1.0, 1.0, 0.8, 0.5, 15)
        assert score_discount(factors) == 15

    def test_below_market_price_adds_nothing(self):
        """0 + 2 + 7.5 = 9.5 → rounds half up to 10."""
        factors = PricingFactors(0.0, 0.1, 0.5, -0.2, 30)
        assert score_discount(factors) == 10

    def test_never_negative(self):
        factors = PricingFactors(0.0, 0.0, 0.0, -0.9, -50)
        assert score_discount(factors) == 0


class TestReasoningImpactConfidence:
    def test_all_reasons_in_order(self):
        factors = PricingFactors(0.8, 1.0, 0.7, 0.4, 10)
        assert build_reasoning(factors) == [
            REASON_HIGH_STOCK,
            REASON_AGED_PRODUCT,
            REASON_PRICE_SENSITIVE,
            REASON_ABOVE_MARKET,
            REASON_THIN_MARGIN,
        ]

    def test_no_reasons(self):
        assert build_reasoning(PricingFactors(0.4, 0.4, 0.5, 0.0, 30)) == []

    def test_impact_bands(self):
        assert classify_impact(31) == "significant"
        assert classify_impact(30) == "moderate"
        assert classify_impact(10) == "moderate"
        assert classify_impact(9) == "minor"

    def test_confidence_capped(self):
        assert calculate_confidence(PricingFactors(0.4, 1.0, 0.6, 0.0, 30)) == 0.95

    def test_confidence_baseline(self):
        assert calculate_confidence(PricingFactors(1.0, 1.0, 0.6, 0.5, 10)) == 0.5


# ── Factor analysis with a stub store ──────────────────────────────────


class _StubStore:
    def __init__(self, lines=(), category_average=None):
        self._lines = list(lines)
        self._category_average = category_average

    async def get_order_lines(self, product_id, since, statuses):
        return [line for line in self._lines if line.ordered_at >= since]

    async def get_category_average_price(self, category_id):
        return self._category_average


@pytest.mark.asyncio
class TestAnalyzePricingFactors:
    async def test_idle_aged_stock(self):
        """100 in stock, no sales in 30 days, listed 120 days ago."""
        now = datetime(2026, 3, 15, 12, 0)
        product = ProductSnapshot(
            product_id=uuid.uuid4(),
            name="Canned Beans",
            price=40_000,
            cost_price=30_000,
            discount_percentage=0,
            stock=100,
            category_id=uuid.uuid4(),
            category_name="Canned Goods",
            supplier_id=None,
            is_featured=False,
            created_at=now - timedelta(days=120),
        )

        factors = await analyze_pricing_factors(_StubStore(category_average=40_000), product, now=now)

        assert factors.stock_pressure == 0.8
        assert factors.age_multiplier == 1.0
        assert factors.demand_elasticity == 0.5
        assert factors.market_position == 0.0
        assert factors.profit_margin == pytest.approx(25)

    async def test_sales_averaged_over_thirty_days(self):
        now = datetime(2026, 3, 15, 12, 0)
        lines = [OrderLineFact(ordered_at=now - timedelta(days=d), quantity=30, price=1.0) for d in (1, 5, 40)]
        product = ProductSnapshot(
            product_id=uuid.uuid4(), name="Soda", price=10.0, cost_price=None, discount_percentage=0,
            stock=100, category_id=uuid.uuid4(), category_name="Beverages", supplier_id=None,
            is_featured=False, created_at=now,
        )

        factors = await analyze_pricing_factors(_StubStore(lines), product, now=now)

        # 60 units / 30 days = 2/day → 50 days of stock
        assert factors.stock_pressure == 0.7
        assert factors.profit_margin == 20


# ── Store-backed ───────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestPricingFromStore:
    async def test_overstocked_yogurt(self, store, seeded_db, now):
        """500 in stock, 2 sold in 30 days, 100 days old, below the dairy average."""
        rec = await calculate_optimal_discount(store, seeded_db["yogurt"].product_id, now=now)

        assert rec.recommended_discount == 50
        assert rec.recommended_price == pytest.approx(25_000)
        assert rec.expected_impact == "significant"
        assert rec.reasoning == [REASON_HIGH_STOCK, REASON_AGED_PRODUCT, REASON_PRICE_SENSITIVE]
        assert rec.confidence == 0.7

    async def test_unknown_product(self, store, seeded_db, now):
        assert await calculate_optimal_discount(store, uuid.uuid4(), now=now) is None

    async def test_batch_sorted_by_discount_change(self, store, seeded_db, now):
        recs = await get_pricing_recommendations(store, now=now, concurrency=2)

        names = [r.product_name for r in recs]
        assert names[0] == "Yogurt"
        assert names[-1] == "Chips"
        assert len(recs) == 3
        deltas = [r.recommended_discount - r.current_discount for r in recs]
        assert deltas == sorted(deltas, reverse=True)

    async def test_batch_min_impact_filters(self, store, seeded_db, now):
        recs = await get_pricing_recommendations(store, min_impact=45, now=now)
        assert [r.product_name for r in recs] == ["Yogurt"]

    async def test_batch_category_filter(self, store, seeded_db, now):
        snacks = seeded_db["snacks"]
        by_uuid = await get_pricing_recommendations(store, category_id=snacks.category_id, now=now)
        by_str = await get_pricing_recommendations(store, category_id=str(snacks.category_id), now=now)
        everything = await get_pricing_recommendations(store, category_id="all", now=now)

        assert [r.product_name for r in by_uuid] == ["Chips"]
        assert [r.product_name for r in by_str] == ["Chips"]
        assert len(everything) == 3

    async def test_batch_zero_concurrency_rejected(self, store, seeded_db, now):
        with pytest.raises(ValueError, match="Invalid concurrency"):
            await get_pricing_recommendations(store, now=now, concurrency=0)

    async def test_recommendations_do_not_write(self, store, seeded_db, now):
        await get_pricing_recommendations(store, now=now)
        product = await store.get_product(seeded_db["yogurt"].product_id)
        assert product.discount_percentage == 0

    async def test_apply_discount(self, store, seeded_db):
        yogurt_id = seeded_db["yogurt"].product_id

        applied = await apply_pricing_recommendation(store, yogurt_id, 12.5)

        assert applied == 13
        product = await store.get_product(yogurt_id)
        assert product.discount_percentage == 13

    async def test_apply_discount_clamped(self, store, seeded_db):
        assert await apply_pricing_recommendation(store, seeded_db["milk"].product_id, 150) == 100
        assert await apply_pricing_recommendation(store, seeded_db["milk"].product_id, -5) == 0

    async def test_apply_discount_unknown_product(self, store, seeded_db):
        assert await apply_pricing_recommendation(store, uuid.uuid4(), 10) is None
