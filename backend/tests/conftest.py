"""
Test Configuration — Fixtures for async DB, test client, and mock data.

Each test gets its own file-backed SQLite database so that independent
sessions (bulk review, concurrent reviewers) see each other's commits.
Transactions start with BEGIN IMMEDIATE: writers queue on SQLite's
write lock instead of failing with "database is locked".
"""

from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_current_actor, get_db, get_session_factory, get_stock_source
from api.main import app
from db.session import Base
from integrations.base import StaticStockSource

# 10:00 in Asia/Ho_Chi_Minh on 2026-03-10; every shift files under that date.
DAY_NOW = datetime(2026, 3, 10, 3, 0)
# 01:30 local on 2026-03-10; the overnight shift still files under 2026-03-09.
NIGHT_NOW = datetime(2026, 3, 9, 18, 30)

BARCODES = ("8930001", "8930002", "8930003")


@pytest.fixture
def day_now():
    return DAY_NOW


@pytest.fixture
def night_now():
    return NIGHT_NOW


@pytest.fixture
async def test_engine(tmp_path):
    """Create a per-test SQLite database with all tables."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shiftcount.db'}",
        echo=False,
        connect_args={"timeout": 15},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded_db(test_db):
    """Store BEE (plus an inactive store) and a three-product catalog."""
    from db.models import Product, Store

    store = Store(code="BEE", name="SM BEE", address="1 Bee Street")
    closed = Store(code="OLD", name="Closed Store", is_active=False)
    products = [
        Product(barcode=BARCODES[0], sku="SKU-A", name="Apple Juice", category="Drinks", unit="bottle"),
        Product(barcode=BARCODES[1], sku="SKU-B", name="Bread", category="Bakery", unit="loaf"),
        Product(barcode=BARCODES[2], sku="SKU-C", name="Coffee", category="Drinks", unit="bag"),
    ]
    test_db.add_all([store, closed, *products])
    await test_db.commit()

    return {
        "store": store,
        "closed_store": closed,
        "products": products,
        "product_ids": [p.product_id for p in products],
    }


@pytest.fixture
async def distributed_db(test_db, seeded_db):
    """BEE shift 1 distributed for DAY_NOW's operating date."""
    from counting.distribution import distribute

    result = await distribute(test_db, "BEE", 1, actor_id="admin-1", now=DAY_NOW)
    return {**seeded_db, "distribution": result}


@pytest.fixture
def mock_actor():
    """Mock authenticated actor (reviewer role)."""
    return {"actor_id": "manager-1", "role": "MANAGER", "name": "Test Manager"}


@pytest.fixture
def stock_source():
    return StaticStockSource({"BEE": {BARCODES[0]: 4, BARCODES[1]: 3}})


@pytest.fixture
async def client(test_db, session_factory, mock_actor, stock_source):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = lambda: mock_actor
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_stock_source] = lambda: stock_source

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()