"""
Sales History Aggregator — order-line facts → per-day sales series.

Only realized orders (DELIVERED, SHIPPED) count as demand; pending and
cancelled orders are excluded. Days are keyed by UTC calendar date.

``get_product_sales_history`` returns only days with sales. Forecasting needs
a fixed-length window, which ``build_daily_series`` produces by zero-filling.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

import pandas as pd
import structlog

from db.models import REALIZED_ORDER_STATUSES, utcnow
from db.store import CommerceStore

logger = structlog.get_logger()


@dataclass
class SalesDataPoint:
    date: date
    quantity: int
    revenue: float


@dataclass
class ProductSales:
    product_id: uuid.UUID
    name: str
    total_sales: int
    revenue: float


@dataclass
class CategoryRevenue:
    category_name: str
    revenue: float


@dataclass
class SalesAnalytics:
    total_revenue: float
    total_orders: int
    average_order_value: float
    top_products: list[ProductSales] = field(default_factory=list)
    revenue_by_category: list[CategoryRevenue] = field(default_factory=list)
    orders_by_status: dict[str, int] = field(default_factory=dict)


async def get_product_sales_history(
    store: CommerceStore,
    product_id: uuid.UUID,
    days: int = 30,
    now: datetime | None = None,
) -> list[SalesDataPoint]:
    """Daily (quantity, revenue) for a product over the trailing ``days``, ascending, sale days only."""
    now = now or utcnow()
    since = now - timedelta(days=days)
    lines = await store.get_order_lines(product_id, since, REALIZED_ORDER_STATUSES)

    daily: dict[date, list] = defaultdict(lambda: [0, 0.0])
    for line in lines:
        bucket = daily[line.ordered_at.date()]
        bucket[0] += line.quantity
        bucket[1] += line.price * line.quantity

    return [
        SalesDataPoint(date=day, quantity=quantity, revenue=revenue)
        for day, (quantity, revenue) in sorted(daily.items())
    ]


def build_daily_series(history: list[SalesDataPoint], days: int, end: date) -> pd.Series:
    """
    Zero-filled daily quantity series covering the ``days`` calendar days ending at ``end``.

    Sales outside the window are ignored.
    """
    index = pd.date_range(end=pd.Timestamp(end), periods=days, freq="D")
    if not history:
        return pd.Series(0.0, index=index)

    observed = pd.Series(
        [float(point.quantity) for point in history],
        index=pd.DatetimeIndex([pd.Timestamp(point.date) for point in history]),
    )
    observed = observed.groupby(level=0).sum()
    return observed.reindex(index, fill_value=0.0)


async def get_sales_analytics(
    store: CommerceStore,
    days: int = 30,
    now: datetime | None = None,
    top_n: int = 10,
) -> SalesAnalytics:
    """Revenue, order counts, top products and category revenue over the trailing window."""
    now = now or utcnow()
    since = now - timedelta(days=days)

    status_totals = await store.count_orders_by_status(since)
    lines = await store.get_sales_lines(since)

    total_orders = sum(count for count, _ in status_totals.values())
    total_revenue = sum(revenue for _, revenue in status_totals.values())

    products: dict[uuid.UUID, ProductSales] = {}
    categories: dict[str, float] = defaultdict(float)
    for line in lines:
        line_revenue = line.price * line.quantity
        entry = products.get(line.product_id)
        if entry is None:
            entry = products[line.product_id] = ProductSales(line.product_id, line.product_name, 0, 0.0)
        entry.name = line.product_name
        entry.total_sales += line.quantity
        entry.revenue += line_revenue
        categories[line.category_name] += line_revenue

    top_products = sorted(products.values(), key=lambda p: p.revenue, reverse=True)[:top_n]
    revenue_by_category = [
        CategoryRevenue(category_name=name, revenue=revenue)
        for name, revenue in sorted(categories.items(), key=lambda item: item[1], reverse=True)
    ]

    logger.info("analytics.sales_summary", days=days, orders=total_orders, products=len(products))

    return SalesAnalytics(
        total_revenue=total_revenue,
        total_orders=total_orders,
        average_order_value=total_revenue / total_orders if total_orders > 0 else 0.0,
        top_products=top_products,
        revenue_by_category=revenue_by_category,
        orders_by_status={status: count for status, (count, _) in status_totals.items()},
    )
