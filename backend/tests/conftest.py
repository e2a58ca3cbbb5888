"""
Test Configuration — Fixtures for async DB, test client, and seeded orders.

Each test gets its own SQLite file. The store opens one session per call
(and analytics fan out several at once), so the database must be shared
across connections, which an in-memory SQLite database is not.
"""

from datetime import datetime, time, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from api.deps import get_cache, get_store
from api.main import app
from core.cache import InMemoryCache
from db.models import Category, Order, OrderItem, Product, Supplier, User, utcnow
from db.session import Base, build_engine, build_session_factory
from db.store import CommerceStore


@pytest.fixture
def now():
    """Reference time the seeded orders are placed relative to."""
    return utcnow().replace(microsecond=0)


@pytest.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine and build all tables."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'commerce.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest.fixture
async def test_db(session_factory):
    """Session used by tests to seed rows."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory):
    return CommerceStore(session_factory)


@pytest.fixture
async def client(store):
    """Create an async test client with the store and cache overridden."""
    cache = InMemoryCache()

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_cache] = lambda: cache

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def _add_order(session, user, status, created_at, lines, delivery_date=None):
    order = Order(
        user_id=user.user_id,
        status=status,
        created_at=created_at,
        delivery_date=delivery_date,
        total_price=sum(product.price * quantity for product, quantity in lines),
    )
    for product, quantity in lines:
        order.items.append(
            OrderItem(
                product_id=product.product_id,
                product_name=product.name,
                quantity=quantity,
                price=product.price,
            )
        )
    session.add(order)
    return order


@pytest.fixture
async def seeded_db(test_db, now):
    """
    Seed a small catalog with order history.

    Orders (relative to ``now``):
      customer_a  DELIVERED  -10d  milk×5
      customer_a  DELIVERED   -2d  milk×5, yogurt×2
      customer_a  CANCELLED   -3d  yogurt×10
      customer_b  DELIVERED   -1d  milk×3, chips×4
      customer_b  PENDING     -1h  chips×1 (delivery tomorrow 10:00)
    customer_c has no orders.
    """
    dairy = Category(name="Dairy")
    snacks = Category(name="Snacks")
    pegah = Supplier(name="Pegah")
    test_db.add_all([dairy, snacks, pegah])
    await test_db.flush()

    customer_a = User(
        name="Ali Rezaei", shop_name="Rezaei Market", phone="09120000001", role="CUSTOMER",
        latitude=35.7000, longitude=51.4000,
    )
    customer_b = User(
        name="Sara Ahmadi", shop_name="Ahmadi Grocery", phone="09120000002", role="CUSTOMER",
        latitude=35.7500, longitude=51.4500,
    )
    customer_c = User(name="Reza Karimi", shop_name="Karimi Shop", phone="09120000003", role="CUSTOMER")
    worker = User(name="Driver One", phone="09120000004", role="WORKER")
    test_db.add_all([customer_a, customer_b, customer_c, worker])

    milk = Product(
        name="Milk", price=100_000, cost_price=70_000, stock=1,
        category_id=dairy.category_id, supplier_id=pegah.supplier_id,
        created_at=now - timedelta(days=200),
    )
    yogurt = Product(
        name="Yogurt", price=50_000, cost_price=40_000, stock=500,
        category_id=dairy.category_id, supplier_id=pegah.supplier_id,
        created_at=now - timedelta(days=100),
    )
    chips = Product(
        name="Chips", price=30_000, cost_price=20_000, stock=2, is_featured=True,
        category_id=snacks.category_id,
        created_at=now - timedelta(days=10),
    )
    test_db.add_all([milk, yogurt, chips])
    await test_db.flush()

    delivery_day = now.date() + timedelta(days=1)
    _add_order(test_db, customer_a, "DELIVERED", now - timedelta(days=10), [(milk, 5)])
    _add_order(test_db, customer_a, "DELIVERED", now - timedelta(days=2), [(milk, 5), (yogurt, 2)])
    _add_order(test_db, customer_a, "CANCELLED", now - timedelta(days=3), [(yogurt, 10)])
    _add_order(test_db, customer_b, "DELIVERED", now - timedelta(days=1), [(milk, 3), (chips, 4)])
    pending = _add_order(
        test_db,
        customer_b,
        "PENDING",
        now - timedelta(hours=1),
        [(chips, 1)],
        delivery_date=datetime.combine(delivery_day, time(10, 0)),
    )
    await test_db.commit()

    return {
        "dairy": dairy,
        "snacks": snacks,
        "supplier": pegah,
        "customer_a": customer_a,
        "customer_b": customer_b,
        "customer_c": customer_c,
        "worker": worker,
        "milk": milk,
        "yogurt": yogurt,
        "chips": chips,
        "pending_order": pending,
        "delivery_day": delivery_day,
    }
