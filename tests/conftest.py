import os
import tempfile

# Must be in place before any service module is imported
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("TRANSITION_RATE_LIMIT", "10000/minute")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{tempfile.mkdtemp()}/orders.db")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shared.config.database import Base, get_db
from shared.security import create_dashboard_token
from services.order_service.broadcast import BroadcastChannel
from services.order_service.main import order_app
from services.order_service.schemas import OrderCreate, OrderItemCreate
from services.order_service.service import OrderService


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File database + NullPool: every session gets its own connection, so
    # concurrent sessions really race on the same rows
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/orders.db", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def channel():
    return BroadcastChannel(queue_size=64)


@pytest.fixture
def service(channel):
    return OrderService(channel)


@pytest.fixture
def app(session_factory, service):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    previous = order_app.state.order_service
    order_app.dependency_overrides[get_db] = override_get_db
    order_app.state.order_service = service
    yield order_app
    order_app.dependency_overrides.clear()
    order_app.state.order_service = previous


@pytest_asyncio.fixture
async def http(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def token():
    def _token(tenant_id, user_id="staff-1"):
        return create_dashboard_token(user_id, tenant_id)
    return _token


@pytest.fixture
def auth(token):
    def _auth(tenant_id):
        return {"Authorization": f"Bearer {token(tenant_id)}"}
    return _auth


@pytest.fixture
def order_data():
    def _order_data(order_type="pickup", items=None, **kwargs):
        if items is None:
            items = [
                OrderItemCreate(name="Masala Dosa", quantity=2, unit_price=80.0),
                OrderItemCreate(name="Filter Coffee", quantity=1, unit_price=30.0, food_type="veg"),
            ]
        return OrderCreate(items=items, order_type=order_type, **kwargs)
    return _order_data


@pytest.fixture
def place_order(service, db, order_data):
    async def _place_order(tenant_id="tenant-a", order_type="pickup", now=None, **kwargs):
        return await service.create_order(db, tenant_id, order_data(order_type, **kwargs), now=now)
    return _place_order
