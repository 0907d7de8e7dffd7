"""
Test fixtures for the affiliate backend tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- Bearer token helpers and test data factories
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
# DB settings required by Settings validation (tests use SQLite in-memory, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("MP_ACCESS_TOKEN", "TEST-mp-token")

import uuid
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from backend.app.core.base import Base
from backend.app.core.auth import create_access_token, create_impersonation_token
from backend.app.main import app
from backend.app.api.deps import get_session, get_cache
from backend.app.models.commission import Commission
from backend.app.models.ledger import LedgerEntry  # noqa: F401
from backend.app.models.notification import Notification  # noqa: F401
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.profile import Profile
from backend.app.models.withdrawal import Withdrawal


# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class MockCacheService:
    """Mock Redis cache for testing without actual Redis."""

    def __init__(self):
        self._cache = {}
        self.invalidations = 0

    async def get(self, key: str):
        return self._cache.get(key)

    async def set(self, key: str, value, ttl: int = 300):
        self._cache[key] = value

    async def delete(self, key: str):
        self._cache.pop(key, None)

    async def get_dashboard_stats(self):
        return self._cache.get("dashboard:stats")

    async def set_dashboard_stats(self, stats):
        self._cache["dashboard:stats"] = stats

    async def invalidate_dashboard(self):
        self.invalidations += 1
        for key in [k for k in self._cache if k.startswith("dashboard:")]:
            self._cache.pop(key, None)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    Fresh in-memory database per test.
    StaticPool keeps the single connection (and so the database) alive.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Session used by tests and factories."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def mock_cache() -> MockCacheService:
    """Provide mock cache service for testing."""
    return MockCacheService()


@pytest.fixture
async def client(
    session_factory: async_sessionmaker,
    test_session: AsyncSession,
    mock_cache: MockCacheService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database and cache dependencies.

    Each request gets its own session; objects held by test_session must be
    refreshed to see what an endpoint committed.
    """
    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_get_cache():
        yield mock_cache

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_cache] = override_get_cache

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Auth helpers ---

def auth_headers(profile: Profile) -> dict:
    token = create_access_token(profile.id, profile.role)
    return {"Authorization": f"Bearer {token}"}


def impersonation_headers(admin: Profile, target: Profile) -> dict:
    token = create_impersonation_token(admin.id, target.id)
    return {"Authorization": f"Bearer {token}"}


# --- Test Data Factories ---

async def make_profile(
    session: AsyncSession,
    *,
    role: str = "affiliate",
    balance: str = "0",
    total_earnings: str = "0",
    referred_by: Optional[uuid.UUID] = None,
    invoice_limit: str = "1000.00",
    invoice_due_day: int = 30,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
) -> Profile:
    profile_id = uuid.uuid4()
    profile = Profile(
        id=profile_id,
        email=email or f"{profile_id.hex[:8]}@example.com",
        full_name=full_name or "Test Affiliate",
        role=role,
        balance=Decimal(balance),
        total_earnings=Decimal(total_earnings),
        referred_by=referred_by,
        invoice_limit=Decimal(invoice_limit),
        invoice_due_day=invoice_due_day,
    )
    session.add(profile)
    await session.commit()
    await session.refresh(profile)
    return profile


async def make_product(
    session: AsyncSession,
    owner: Profile,
    *,
    final_price: str = "100.00",
    commission_rate: Optional[str] = None,
    status: str = "approved",
    name: str = "Test Product",
) -> Product:
    product = Product(
        owner_id=owner.id,
        name=name,
        description="A test product",
        final_price=Decimal(final_price),
        commission_rate=Decimal(commission_rate) if commission_rate is not None else None,
        status=status,
    )
    session.add(product)
    await session.commit()
    await session.refresh(product)
    return product


async def make_order(
    session: AsyncSession,
    buyer: Profile,
    product: Product,
    *,
    amount: str = "100.00",
    status: str = "pending",
    payment_method: str = "now",
    quantity: int = 1,
) -> Order:
    order = Order(
        user_id=buyer.id,
        product_id=product.id,
        amount=Decimal(amount),
        quantity=quantity,
        status=status,
        payment_method=payment_method,
    )
    session.add(order)
    await session.commit()
    await session.refresh(order)
    return order


async def make_commission(session: AsyncSession, order: Order, affiliate: Profile, amount: str) -> Commission:
    commission = Commission(
        affiliate_id=affiliate.id,
        order_id=order.id,
        amount=Decimal(amount),
        rate=Decimal("10"),
    )
    session.add(commission)
    await session.commit()
    return commission


async def make_withdrawal(
    session: AsyncSession,
    user: Profile,
    amount: str,
    status: str = "pending",
) -> Withdrawal:
    withdrawal = Withdrawal(user_id=user.id, amount=Decimal(amount), pix_key="pix@example.com", status=status)
    session.add(withdrawal)
    await session.commit()
    await session.refresh(withdrawal)
    return withdrawal


@pytest.fixture
async def admin(test_session: AsyncSession) -> Profile:
    return await make_profile(test_session, role="admin", full_name="Admin")


@pytest.fixture
async def referrer(test_session: AsyncSession) -> Profile:
    """Affiliate who invited the buyer."""
    return await make_profile(test_session, full_name="Referrer")


@pytest.fixture
async def buyer(test_session: AsyncSession, referrer: Profile) -> Profile:
    """Affiliate referred by `referrer`."""
    return await make_profile(test_session, referred_by=referrer.id, full_name="Buyer")


@pytest.fixture
async def product(test_session: AsyncSession, admin: Profile) -> Product:
    return await make_product(test_session, admin, final_price="1000.00", commission_rate="20")
