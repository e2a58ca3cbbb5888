"""
Product Recommendation Engine — Collaborative + content-based blend.

Personalized path (signed-in customer):
  1. Purchase history: last 20 orders → owned products, category/supplier
     preference weights (cumulative quantity)
  2. Collaborative: up to 50 other orders sharing an owned product, Jaccard
     similarity per order, best order per user, top 10 users → how often
     those users bought each product the customer doesn't own yet
  3. Content: top 3 categories + top 3 suppliers → up to 30 available,
     unowned products scored 0.4·category weight + 0.3·supplier weight,
     +10 featured, +5 listed within the last 7 days
  4. Merge: 0.6·collaborative + 0.4·content

Customers with no orders get a popularity ranking instead. The cart path
("frequently bought together") works for anonymous visitors.
"""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

import structlog

from db.models import utcnow
from db.store import CommerceStore, OrderBasket, ProductSnapshot

logger = structlog.get_logger()

RecommendationReason = Literal[
    "users_also_bought",
    "similar_to_purchases",
    "similar_and_popular",
    "popular",
    "frequently_bought_together",
]

HISTORY_ORDER_LIMIT = 20
SIMILAR_ORDER_LIMIT = 50
SIMILAR_USER_LIMIT = 10
COLLABORATIVE_PRODUCT_LIMIT = 20
TOP_PREFERENCES = 3
CONTENT_CANDIDATE_LIMIT = 30
CART_LINE_LIMIT = 100

COLLABORATIVE_WEIGHT = 0.6
CONTENT_WEIGHT = 0.4
CATEGORY_PREFERENCE_WEIGHT = 0.4
SUPPLIER_PREFERENCE_WEIGHT = 0.3
FEATURED_BONUS = 10
NEW_PRODUCT_BONUS = 5
NEW_PRODUCT_DAYS = 7


@dataclass
class RecommendationScore:
    product_id: uuid.UUID
    score: float
    reason: RecommendationReason


# ─── Pure scoring helpers ───────────────────────────────────────────────────


def jaccard_similarity(a: set | frozenset, b: set | frozenset) -> float:
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


def rank_similar_users(
    purchased: set[uuid.UUID],
    baskets: Iterable[OrderBasket],
    limit: int = SIMILAR_USER_LIMIT,
) -> list[uuid.UUID]:
    """Users ranked by their best single-order Jaccard similarity to ``purchased``."""
    best: dict[uuid.UUID, float] = {}
    for basket in baskets:
        similarity = jaccard_similarity(purchased, basket.product_ids)
        best[basket.user_id] = max(best.get(basket.user_id, 0.0), similarity)

    ranked = sorted(best.items(), key=lambda item: item[1], reverse=True)
    return [user_id for user_id, _ in ranked[:limit]]


def top_keys(weights: Mapping, n: int = TOP_PREFERENCES) -> list:
    return [key for key, _ in sorted(weights.items(), key=lambda item: item[1], reverse=True)[:n]]


def score_content_candidates(
    candidates: Iterable[ProductSnapshot],
    category_weights: Mapping[uuid.UUID, float],
    supplier_weights: Mapping[uuid.UUID, float],
    now: datetime,
) -> dict[uuid.UUID, float]:
    scores: dict[uuid.UUID, float] = {}
    new_cutoff = now - timedelta(days=NEW_PRODUCT_DAYS)
    for product in candidates:
        score = category_weights.get(product.category_id, 0) * CATEGORY_PREFERENCE_WEIGHT
        score += supplier_weights.get(product.supplier_id, 0) * SUPPLIER_PREFERENCE_WEIGHT
        if product.is_featured:
            score += FEATURED_BONUS
        if product.created_at > new_cutoff:
            score += NEW_PRODUCT_BONUS
        scores[product.product_id] = score
    return scores


def merge_recommendations(
    collaborative: Mapping[uuid.UUID, float],
    content: Mapping[uuid.UUID, float],
    limit: int,
) -> list[RecommendationScore]:
    merged: dict[uuid.UUID, RecommendationScore] = {}

    for product_id, score in collaborative.items():
        merged[product_id] = RecommendationScore(product_id, score * COLLABORATIVE_WEIGHT, "users_also_bought")

    for product_id, score in content.items():
        existing = merged.get(product_id)
        if existing is not None:
            existing.score += score * CONTENT_WEIGHT
            existing.reason = "similar_and_popular"
        else:
            merged[product_id] = RecommendationScore(product_id, score * CONTENT_WEIGHT, "similar_to_purchases")

    ranked = sorted(merged.values(), key=lambda r: r.score, reverse=True)
    return ranked[:limit]


# ─── Store-backed signals ───────────────────────────────────────────────────


async def get_popular_products(store: CommerceStore, limit: int) -> list[RecommendationScore]:
    """Most-ordered available products, scored by inverse rank (limit, limit-1, ...)."""
    popular = await store.get_popular_products(limit)
    return [
        RecommendationScore(product_id=product_id, score=float(limit - rank), reason="popular")
        for rank, (product_id, _count) in enumerate(popular)
    ]


async def _collaborative_scores(
    store: CommerceStore,
    user_id: uuid.UUID,
    purchased: set[uuid.UUID],
) -> dict[uuid.UUID, float]:
    baskets = await store.get_orders_sharing_products(user_id, purchased, limit=SIMILAR_ORDER_LIMIT)
    similar_users = rank_similar_users(purchased, baskets)
    if not similar_users:
        return {}
    counts = await store.count_products_for_users(
        similar_users,
        exclude_product_ids=purchased,
        limit=COLLABORATIVE_PRODUCT_LIMIT,
    )
    return {product_id: float(count) for product_id, count in counts}


async def _content_scores(
    store: CommerceStore,
    category_weights: Mapping[uuid.UUID, float],
    supplier_weights: Mapping[uuid.UUID, float],
    purchased: set[uuid.UUID],
    now: datetime,
) -> dict[uuid.UUID, float]:
    top_categories = top_keys(category_weights)
    top_suppliers = top_keys(supplier_weights)
    if not top_categories:
        return {}
    candidates = await store.get_content_candidates(
        top_categories,
        top_suppliers,
        exclude_product_ids=purchased,
        limit=CONTENT_CANDIDATE_LIMIT,
    )
    return score_content_candidates(candidates, category_weights, supplier_weights, now)


# ─── Entry points ───────────────────────────────────────────────────────────


async def get_personalized_recommendations(
    store: CommerceStore,
    user_id: uuid.UUID,
    limit: int = 10,
    now: datetime | None = None,
) -> list[RecommendationScore]:
    now = now or utcnow()
    lines = await store.get_recent_purchase_lines(user_id, order_limit=HISTORY_ORDER_LIMIT)

    if not lines:
        logger.debug("recommendations.cold_start", user_id=str(user_id))
        return await get_popular_products(store, limit)

    purchased: set[uuid.UUID] = set()
    category_weights: Counter = Counter()
    supplier_weights: Counter = Counter()
    for line in lines:
        purchased.add(line.product_id)
        category_weights[line.category_id] += line.quantity
        if line.supplier_id is not None:
            supplier_weights[line.supplier_id] += line.quantity

    collaborative = await _collaborative_scores(store, user_id, purchased)
    content = await _content_scores(store, category_weights, supplier_weights, purchased, now)

    recommendations = merge_recommendations(collaborative, content, limit)

    logger.info(
        "recommendations.personalized",
        user_id=str(user_id),
        collaborative=len(collaborative),
        content=len(content),
        returned=len(recommendations),
    )
    return recommendations


async def get_cart_recommendations(
    store: CommerceStore,
    product_ids: Sequence[uuid.UUID],
    limit: int = 5,
) -> list[RecommendationScore]:
    """Products most often ordered together with the cart's contents."""
    if not product_ids:
        return []

    co_purchased = await store.get_co_purchased_product_ids(list(product_ids), limit=CART_LINE_LIMIT)
    frequency = Counter(co_purchased)

    ranked = sorted(frequency.items(), key=lambda item: item[1], reverse=True)
    return [
        RecommendationScore(product_id=product_id, score=float(count), reason="frequently_bought_together")
        for product_id, count in ranked[:limit]
    ]
