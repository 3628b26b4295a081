"""
Pytest configuration and shared fixtures for the port allocator test suite.

This module provides:
- Database fixtures (in-memory SQLite for fast tests)
- Service fixtures wired to the test session factory
- FastAPI test client fixtures with dependency overrides
- Data factories for ports, orders and subscriptions
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  registers every table on Base.metadata
from auth.auth_handler import sign_jwt
from core.db import Base, get_db, get_session_factory
from main import app
from middleware.rate_limit import limiter
from models.order import Order, OrderStatus
from models.port import Port, PortStatus
from models.allocation_log import PortAllocationLog
from models.subscription import Subscription, SubscriptionStatus
from services.allocation_engine import AllocationEngine
from services.port_service import PortService


# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
async def async_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed SQLite: one connection per session, so transactions really overlap."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ports.db'}",
        connect_args={"timeout": 15},
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def mock_notifier():
    """Notifier double; assert on `notify_no_available_ports`."""
    notifier = MagicMock()
    notifier.notify_no_available_ports = AsyncMock()
    return notifier


@pytest.fixture
def engine(session_factory, mock_notifier) -> AllocationEngine:
    return AllocationEngine(session_factory, notifier=mock_notifier, max_candidates=5)


@pytest.fixture
def port_service(session_factory) -> PortService:
    return PortService(session_factory)


# Test Data Factories
@pytest.fixture
def make_port(session_factory):
    """Insert a port directly; creation order follows call order."""
    counter = {"n": 0}

    async def _make_port(
        instance_url: Optional[str] = None,
        status: PortStatus = PortStatus.AVAILABLE,
        **fields,
    ) -> Port:
        counter["n"] += 1
        port = Port(
            instance_url=instance_url or f"https://port-{counter['n']:03d}.example.com",
            status=status,
            created_at=BASE_TIME + timedelta(minutes=counter["n"]),
            **fields,
        )
        async with session_factory() as session:
            session.add(port)
            await session.commit()
        return port

    return _make_port


@pytest.fixture
def make_order(session_factory):
    async def _make_order(
        status: OrderStatus = OrderStatus.PENDING,
        customer_id: str = "customer-1",
        plan_id: str = "plan-basic",
        duration_days: int = 30,
    ) -> Order:
        order = Order(customer_id=customer_id, plan_id=plan_id, status=status, duration_days=duration_days)
        async with session_factory() as session:
            session.add(order)
            await session.commit()
        return order

    return _make_order


@pytest.fixture
def make_subscription(session_factory):
    counter = {"n": 0}

    async def _make_subscription(
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        customer_id: Optional[str] = None,
        order_id: Optional[str] = None,
        end_date: Optional[date] = None,
    ) -> Subscription:
        counter["n"] += 1
        start = date.today()
        subscription = Subscription(
            customer_id=customer_id or f"customer-{counter['n']}",
            plan_id="plan-basic",
            order_id=order_id,
            status=status,
            start_date=start,
            end_date=end_date or start + timedelta(days=30),
            created_at=BASE_TIME + timedelta(minutes=counter["n"]),
        )
        async with session_factory() as session:
            session.add(subscription)
            await session.commit()
        return subscription

    return _make_subscription


# Read helpers: always a fresh session so nothing is served from a stale identity map
@pytest.fixture
def fetch(session_factory):
    async def _fetch(model, obj_id):
        async with session_factory() as session:
            return await session.get(model, obj_id)

    return _fetch


@pytest.fixture
def fetch_logs(session_factory):
    async def _fetch_logs(port_id: Optional[str] = None):
        stmt = select(PortAllocationLog)
        if port_id is not None:
            stmt = stmt.where(PortAllocationLog.port_id == port_id)
        async with session_factory() as session:
            return list((await session.execute(stmt.order_by(PortAllocationLog.id))).scalars().all())

    return _fetch_logs


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
async def async_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client with database dependency overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# Authentication Fixtures
@pytest.fixture
def auth_headers() -> dict:
    """Operator bearer token headers for back-office routes."""
    token = sign_jwt("operator-1")["access_token"]
    return {"Authorization": f"Bearer {token}"}
