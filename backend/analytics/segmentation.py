"""
Customer Segmentation — RFM (Recency, Frequency, Monetary) quintile scoring.

Scores every customer with at least one DELIVERED order against the current
customer base:
  - recency:   whole days since the most recent delivered order (lower is better)
  - frequency: number of delivered orders
  - monetary:  sum of delivered order totals

Cut-points are the 20th/40th/60th/80th percentiles (nearest rank) of the
population being scored, recomputed on every run. Scores are therefore
relative: a "Champion" is a top customer of *this* snapshot, not someone who
crossed a fixed spend threshold.

Usage:
    from analytics.segmentation import calculate_rfm_segments

    segments = await calculate_rfm_segments(store)
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

import structlog

from db.models import utcnow
from db.store import CommerceStore

logger = structlog.get_logger()

SegmentName = Literal["Champions", "Loyal", "Promising", "At Risk", "Lost"]

QUINTILE_PERCENTILES = (0.2, 0.4, 0.6, 0.8)

# Minimum total score (3-15) per segment, checked in order
SEGMENT_BANDS: tuple[tuple[int, SegmentName], ...] = (
    (13, "Champions"),
    (10, "Loyal"),
    (7, "Promising"),
    (5, "At Risk"),
)
SEGMENT_NAMES: tuple[SegmentName, ...] = ("Champions", "Loyal", "Promising", "At Risk", "Lost")


@dataclass
class RFMSegment:
    user_id: uuid.UUID
    user_name: str | None
    shop_name: str | None
    recency_score: int
    frequency_score: int
    monetary_score: int
    total_score: int
    segment: SegmentName
    last_order_date: datetime
    total_orders: int
    total_spent: float


def nearest_rank(sorted_values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile of an ascending sequence."""
    rank = math.ceil(percentile * len(sorted_values))
    index = min(max(rank - 1, 0), len(sorted_values) - 1)
    return sorted_values[index]


def quintile_thresholds(values: Sequence[float]) -> list[float]:
    """Four cut-points (20/40/60/80th percentile) of ``values``."""
    ordered = sorted(values)
    return [nearest_rank(ordered, p) for p in QUINTILE_PERCENTILES]


def score_value(value: float, thresholds: Sequence[float], inverse: bool = False) -> int:
    """
    1-5 score: one point plus one per threshold the value exceeds.

    With ``inverse`` the scale is flipped so the smallest values score 5.
    """
    exceeded = sum(1 for threshold in thresholds if value > threshold)
    if inverse:
        return 5 - exceeded
    return 1 + exceeded


def segment_for_score(total_score: int) -> SegmentName:
    for minimum, name in SEGMENT_BANDS:
        if total_score >= minimum:
            return name
    return "Lost"


async def calculate_rfm_segments(store: CommerceStore, now: datetime | None = None) -> list[RFMSegment]:
    """RFM segments for all customers with delivered orders, highest total score first."""
    now = now or utcnow()
    customers = await store.get_delivered_order_aggregates()
    if not customers:
        return []

    recencies = [max(0, (now - c.last_order_at).days) for c in customers]
    recency_cuts = quintile_thresholds(recencies)
    frequency_cuts = quintile_thresholds([c.order_count for c in customers])
    monetary_cuts = quintile_thresholds([c.total_spent for c in customers])

    segments = []
    for customer, recency in zip(customers, recencies):
        recency_score = score_value(recency, recency_cuts, inverse=True)
        frequency_score = score_value(customer.order_count, frequency_cuts)
        monetary_score = score_value(customer.total_spent, monetary_cuts)
        total_score = recency_score + frequency_score + monetary_score

        segments.append(
            RFMSegment(
                user_id=customer.user_id,
                user_name=customer.name,
                shop_name=customer.shop_name,
                recency_score=recency_score,
                frequency_score=frequency_score,
                monetary_score=monetary_score,
                total_score=total_score,
                segment=segment_for_score(total_score),
                last_order_date=customer.last_order_at,
                total_orders=customer.order_count,
                total_spent=customer.total_spent,
            )
        )

    segments.sort(key=lambda s: s.total_score, reverse=True)

    logger.info(
        "segmentation.rfm_completed",
        customers=len(segments),
        segment_sizes={name: sum(1 for s in segments if s.segment == name) for name in SEGMENT_NAMES},
    )
    return segments
