"""Shared fixtures: a fresh in-memory database per test and an API client bound to it."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from syncflow.cache import cache
from syncflow.database import get_db, init_db
from syncflow.main import app
from syncflow.models.inventory import InventoryKey
from syncflow.models.production_line import LineStatus
from syncflow.schemas.line import LineCreate, SubLine
from syncflow.schemas.order import OrderCreate
from syncflow.services import inventory_service, line_service, order_service


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _clear_cache():
    cache.invalidate()
    yield
    cache.invalidate()


@pytest.fixture
def client(engine):
    testing_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = testing_session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# --- Builders ---

@pytest.fixture
def make_stock(db):
    def _make(style_no="BE3250", quantity=80.0, warehouse_type="general", line_id=None, grade="A", **kw):
        key = InventoryKey(style_no, warehouse_type, kw.pop("package_spec", "820kg"), line_id)
        return inventory_service.stock_in(db, key, quantity, grade, source="test", **kw)

    return _make


@pytest.fixture
def make_line(db):
    def _make(style="BE3250", export_capacity=0.0, daily_capacity=50.0, status=LineStatus.RUNNING, sub_lines=()):
        return line_service.create_line(db, LineCreate(
            status=status,
            current_style=style,
            daily_capacity=daily_capacity,
            export_capacity=export_capacity,
            sub_lines=[SubLine(**s) for s in sub_lines],
        ))

    return _make


@pytest.fixture
def make_order(db):
    def _make(style_no="BE3250", total_tons=100.0, **kw):
        return order_service.create_order(db, OrderCreate(style_no=style_no, total_tons=total_tons, **kw))

    return _make
