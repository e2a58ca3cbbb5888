"""
Commerce Store — read port over the catalog/order tables.

Every method opens its own short-lived session from the injected factory.
Analytics dispatch per-product reads concurrently through
``core.concurrency.map_with_concurrency``; an AsyncSession must not be shared
by concurrent operations, so sessions are never held across calls.

The only write is ``update_discount``, used by the explicit
"apply pricing recommendation" operation.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import Category, Order, OrderItem, Product, User

logger = structlog.get_logger()


# ─── Read Models ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OrderLineFact:
    """One order line for a product, with its parent order timestamp."""

    ordered_at: datetime
    quantity: int
    price: float


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: uuid.UUID
    name: str
    price: float
    cost_price: float | None
    discount_percentage: int
    stock: int
    category_id: uuid.UUID
    category_name: str
    supplier_id: uuid.UUID | None
    is_featured: bool
    created_at: datetime


@dataclass(frozen=True)
class CustomerOrderAggregate:
    """Delivered-order aggregate for one customer."""

    user_id: uuid.UUID
    name: str | None
    shop_name: str | None
    last_order_at: datetime
    order_count: int
    total_spent: float


@dataclass(frozen=True)
class PurchaseLine:
    """A line from a user's own purchase history, with catalog attributes."""

    order_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    category_id: uuid.UUID
    supplier_id: uuid.UUID | None


@dataclass(frozen=True)
class OrderBasket:
    order_id: uuid.UUID
    user_id: uuid.UUID
    product_ids: frozenset[uuid.UUID]


@dataclass(frozen=True)
class DeliveryCandidate:
    order_id: uuid.UUID
    latitude: float
    longitude: float
    shop_name: str | None
    delivery_date: datetime | None


@dataclass(frozen=True)
class SalesLineFact:
    product_id: uuid.UUID
    product_name: str
    category_name: str
    quantity: int
    price: float


# ─── Store ──────────────────────────────────────────────────────────────────


def _product_columns():
    return (
        Product.product_id,
        Product.name,
        Product.price,
        Product.cost_price,
        Product.discount_percentage,
        Product.stock,
        Product.category_id,
        Category.name.label("category_name"),
        Product.supplier_id,
        Product.is_featured,
        Product.created_at,
    )


def _to_snapshot(row) -> ProductSnapshot:
    return ProductSnapshot(
        product_id=row.product_id,
        name=row.name,
        price=float(row.price),
        cost_price=float(row.cost_price) if row.cost_price is not None else None,
        discount_percentage=int(row.discount_percentage or 0),
        stock=int(row.stock or 0),
        category_id=row.category_id,
        category_name=row.category_name,
        supplier_id=row.supplier_id,
        is_featured=bool(row.is_featured),
        created_at=row.created_at,
    )


class CommerceStore:
    """Async query layer over the ordering platform's relational store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Sales facts ─────────────────────────────────────────────────────

    async def get_order_lines(
        self,
        product_id: uuid.UUID,
        since: datetime,
        statuses: Sequence[str],
    ) -> list[OrderLineFact]:
        """Order lines for a product from orders created at/after ``since`` in ``statuses``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Order.created_at, OrderItem.quantity, OrderItem.price)
                .join(Order, Order.order_id == OrderItem.order_id)
                .where(
                    OrderItem.product_id == product_id,
                    Order.created_at >= since,
                    Order.status.in_(list(statuses)),
                )
                .order_by(Order.created_at.asc())
            )
            return [
                OrderLineFact(ordered_at=row.created_at, quantity=int(row.quantity), price=float(row.price))
                for row in result.all()
            ]

    async def get_sales_lines(self, since: datetime) -> list[SalesLineFact]:
        """All order lines (any status) for orders created at/after ``since``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    OrderItem.product_id,
                    OrderItem.product_name,
                    Category.name.label("category_name"),
                    OrderItem.quantity,
                    OrderItem.price,
                )
                .select_from(Order)
                .join(OrderItem, OrderItem.order_id == Order.order_id)
                .join(Product, Product.product_id == OrderItem.product_id)
                .join(Category, Category.category_id == Product.category_id)
                .where(Order.created_at >= since)
            )
            return [
                SalesLineFact(
                    product_id=row.product_id,
                    product_name=row.product_name,
                    category_name=row.category_name,
                    quantity=int(row.quantity),
                    price=float(row.price),
                )
                for row in result.all()
            ]

    async def count_orders_by_status(self, since: datetime) -> dict[str, tuple[int, float]]:
        """``{status: (order_count, revenue)}`` for orders created at/after ``since``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Order.status, func.count(Order.order_id), func.coalesce(func.sum(Order.total_price), 0.0))
                .where(Order.created_at >= since)
                .group_by(Order.status)
            )
            return {status: (int(count), float(revenue)) for status, count, revenue in result.all()}

    # ── Catalog ─────────────────────────────────────────────────────────

    async def get_product(self, product_id: uuid.UUID) -> ProductSnapshot | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(*_product_columns())
                .join(Category, Category.category_id == Product.category_id)
                .where(Product.product_id == product_id)
            )
            row = result.one_or_none()
            return _to_snapshot(row) if row is not None else None

    async def list_available_products(
        self,
        category_id: uuid.UUID | None = None,
        limit: int | None = None,
    ) -> list[ProductSnapshot]:
        query = (
            select(*_product_columns())
            .join(Category, Category.category_id == Product.category_id)
            .where(Product.available.is_(True))
            .order_by(Product.created_at.asc())
        )
        if category_id is not None:
            query = query.where(Product.category_id == category_id)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_to_snapshot(row) for row in result.all()]

    async def get_category_average_price(self, category_id: uuid.UUID) -> float | None:
        """Average price of available products in a category (None if none)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.avg(Product.price)).where(
                    Product.category_id == category_id,
                    Product.available.is_(True),
                )
            )
            avg_price = result.scalar_one_or_none()
            return float(avg_price) if avg_price is not None else None

    async def update_discount(self, product_id: uuid.UUID, discount_percentage: int) -> bool:
        """Write a product's discount percentage. Returns False if the product doesn't exist."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(Product)
                .where(Product.product_id == product_id)
                .values(discount_percentage=discount_percentage)
            )
            await session.commit()
            logger.debug("store.discount_updated", product_id=str(product_id), rows=result.rowcount)
            return result.rowcount > 0

    # ── Customers ───────────────────────────────────────────────────────

    async def get_delivered_order_aggregates(self) -> list[CustomerOrderAggregate]:
        """Per-customer aggregates over DELIVERED orders. Customers without one are absent."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    User.user_id,
                    User.name,
                    User.shop_name,
                    func.max(Order.created_at).label("last_order_at"),
                    func.count(Order.order_id).label("order_count"),
                    func.coalesce(func.sum(Order.total_price), 0.0).label("total_spent"),
                )
                .join(Order, Order.user_id == User.user_id)
                .where(User.role == "CUSTOMER", Order.status == "DELIVERED")
                .group_by(User.user_id, User.name, User.shop_name)
            )
            return [
                CustomerOrderAggregate(
                    user_id=row.user_id,
                    name=row.name,
                    shop_name=row.shop_name,
                    last_order_at=row.last_order_at,
                    order_count=int(row.order_count),
                    total_spent=float(row.total_spent),
                )
                for row in result.all()
            ]

    # ── Purchase history & co-purchase ──────────────────────────────────

    async def get_recent_purchase_lines(self, user_id: uuid.UUID, order_limit: int = 20) -> list[PurchaseLine]:
        """Lines from the user's most recent ``order_limit`` orders."""
        recent_orders = (
            select(Order.order_id)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .limit(order_limit)
            .scalar_subquery()
        )
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    OrderItem.order_id,
                    OrderItem.product_id,
                    OrderItem.quantity,
                    Product.category_id,
                    Product.supplier_id,
                )
                .join(Product, Product.product_id == OrderItem.product_id)
                .where(OrderItem.order_id.in_(recent_orders))
            )
            return [
                PurchaseLine(
                    order_id=row.order_id,
                    product_id=row.product_id,
                    quantity=int(row.quantity),
                    category_id=row.category_id,
                    supplier_id=row.supplier_id,
                )
                for row in result.all()
            ]

    async def get_orders_sharing_products(
        self,
        user_id: uuid.UUID,
        product_ids: Iterable[uuid.UUID],
        limit: int = 50,
    ) -> list[OrderBasket]:
        """Up to ``limit`` other users' orders containing at least one of ``product_ids``."""
        product_ids = list(product_ids)
        if not product_ids:
            return []

        async with self._session_factory() as session:
            order_result = await session.execute(
                select(Order.order_id, Order.user_id)
                .where(
                    Order.user_id != user_id,
                    Order.order_id.in_(
                        select(OrderItem.order_id).where(OrderItem.product_id.in_(product_ids))
                    ),
                )
                .order_by(Order.created_at.desc())
                .limit(limit)
            )
            orders = order_result.all()
            if not orders:
                return []

            item_result = await session.execute(
                select(OrderItem.order_id, OrderItem.product_id).where(
                    OrderItem.order_id.in_([row.order_id for row in orders])
                )
            )
            items_by_order: dict[uuid.UUID, set[uuid.UUID]] = {}
            for row in item_result.all():
                items_by_order.setdefault(row.order_id, set()).add(row.product_id)

        return [
            OrderBasket(
                order_id=row.order_id,
                user_id=row.user_id,
                product_ids=frozenset(items_by_order.get(row.order_id, ())),
            )
            for row in orders
        ]

    async def count_products_for_users(
        self,
        user_ids: Sequence[uuid.UUID],
        exclude_product_ids: Iterable[uuid.UUID],
        limit: int = 20,
    ) -> list[tuple[uuid.UUID, int]]:
        """Most frequently purchased products across ``user_ids``' orders, minus exclusions."""
        if not user_ids:
            return []
        async with self._session_factory() as session:
            line_count = func.count(OrderItem.order_item_id)
            result = await session.execute(
                select(OrderItem.product_id, line_count.label("line_count"))
                .join(Order, Order.order_id == OrderItem.order_id)
                .where(
                    Order.user_id.in_(list(user_ids)),
                    OrderItem.product_id.notin_(list(exclude_product_ids)),
                )
                .group_by(OrderItem.product_id)
                .order_by(line_count.desc())
                .limit(limit)
            )
            return [(row.product_id, int(row.line_count)) for row in result.all()]

    async def get_content_candidates(
        self,
        category_ids: Sequence[uuid.UUID],
        supplier_ids: Sequence[uuid.UUID],
        exclude_product_ids: Iterable[uuid.UUID],
        limit: int = 30,
    ) -> list[ProductSnapshot]:
        """Available products in any of the categories or from any of the suppliers."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(*_product_columns())
                .join(Category, Category.category_id == Product.category_id)
                .where(
                    Product.available.is_(True),
                    Product.product_id.notin_(list(exclude_product_ids)),
                    Product.category_id.in_(list(category_ids)) | Product.supplier_id.in_(list(supplier_ids)),
                )
                .limit(limit)
            )
            return [_to_snapshot(row) for row in result.all()]

    async def get_popular_products(self, limit: int) -> list[tuple[uuid.UUID, int]]:
        """Available products ranked by number of order lines, descending."""
        async with self._session_factory() as session:
            line_count = func.count(OrderItem.order_item_id)
            result = await session.execute(
                select(OrderItem.product_id, line_count.label("line_count"))
                .join(Product, Product.product_id == OrderItem.product_id)
                .where(Product.available.is_(True))
                .group_by(OrderItem.product_id)
                .order_by(line_count.desc())
                .limit(limit)
            )
            return [(row.product_id, int(row.line_count)) for row in result.all()]

    async def get_co_purchased_product_ids(
        self,
        product_ids: Sequence[uuid.UUID],
        limit: int = 100,
    ) -> list[uuid.UUID]:
        """
        Product ids of up to ``limit`` order lines that share an order with any of
        ``product_ids``, excluding those ids themselves and unavailable products.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderItem.product_id)
                .join(Product, Product.product_id == OrderItem.product_id)
                .where(
                    OrderItem.order_id.in_(
                        select(OrderItem.order_id).where(OrderItem.product_id.in_(list(product_ids)))
                    ),
                    OrderItem.product_id.notin_(list(product_ids)),
                    Product.available.is_(True),
                )
                .limit(limit)
            )
            return list(result.scalars().all())

    # ── Delivery ────────────────────────────────────────────────────────

    async def get_pending_deliveries(self, start: datetime, end: datetime) -> list[DeliveryCandidate]:
        """PENDING orders due in ``[start, end)`` whose customer has a geocoded shop."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    Order.order_id,
                    Order.delivery_date,
                    User.latitude,
                    User.longitude,
                    User.shop_name,
                )
                .join(User, User.user_id == Order.user_id)
                .where(
                    Order.delivery_date >= start,
                    Order.delivery_date < end,
                    Order.status == "PENDING",
                    User.latitude.isnot(None),
                    User.longitude.isnot(None),
                )
                .order_by(Order.created_at.asc())
            )
            return [
                DeliveryCandidate(
                    order_id=row.order_id,
                    latitude=float(row.latitude),
                    longitude=float(row.longitude),
                    shop_name=row.shop_name,
                    delivery_date=row.delivery_date,
                )
                for row in result.all()
            ]
