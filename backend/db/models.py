"""
Commerce Intelligence Database Models

The slice of the wholesale ordering schema the intelligence engine reads.
The catalog/order tables are owned by the ordering platform; this engine only
queries them (plus one explicit write: product discount percentage).

Tables:
  1. users        - Customers (shops) and staff, with geocoded shop location
  2. categories   - Catalog categories
  3. suppliers    - Product suppliers / brands
  4. products     - Catalog items (price, cost price, stock, discount)
  5. orders       - Customer orders (status lifecycle, delivery date)
  6. order_items  - Order lines (price snapshot at order time)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    TypeDecorator,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns store UTC without tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# Order statuses that represent confirmed demand
REALIZED_ORDER_STATUSES = ("DELIVERED", "SHIPPED")


# ─── 1. Users ──────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255))
    shop_name = Column(String(255))
    phone = Column(String(20), unique=True)
    role = Column(String(20), nullable=False, default="CUSTOMER")
    latitude = Column(Float)
    longitude = Column(Float)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (CheckConstraint("role IN ('CUSTOMER', 'WORKER', 'ADMIN')", name="ck_user_role"),)

    orders = relationship("Order", back_populates="user")


# ─── 2. Categories ─────────────────────────────────────────────────────────


class Category(Base):
    __tablename__ = "categories"

    category_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)

    products = relationship("Product", back_populates="category")


# ─── 3. Suppliers ──────────────────────────────────────────────────────────


class Supplier(Base):
    __tablename__ = "suppliers"

    supplier_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)

    products = relationship("Product", back_populates="supplier")


# ─── 4. Products ───────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)  # Wholesale selling price
    cost_price = Column(Float)  # Purchase cost; None when unknown
    discount_percentage = Column(Integer, nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    available = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    category_id = Column(GUID(), ForeignKey("categories.category_id"), nullable=False)
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_products_category", "category_id"),
        Index("ix_products_supplier", "supplier_id"),
        CheckConstraint("discount_percentage >= 0 AND discount_percentage <= 100", name="ck_product_discount"),
    )

    category = relationship("Category", back_populates="products")
    supplier = relationship("Supplier", back_populates="products")


# ─── 5. Orders ─────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    total_price = Column(Float, nullable=False, default=0.0)
    delivery_date = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'SHIPPED', 'DELIVERED', 'CANCELLED')",
            name="ck_order_status",
        ),
    )

    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


# ─── 6. Order Items ────────────────────────────────────────────────────────


class OrderItem(Base):
    __tablename__ = "order_items"

    order_item_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_id = Column(GUID(), ForeignKey("orders.order_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)  # Unit price snapshot at order time

    __table_args__ = (
        Index("ix_order_items_product", "product_id"),
        Index("ix_order_items_order", "order_id"),
        CheckConstraint("quantity > 0", name="ck_order_item_quantity"),
    )

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
