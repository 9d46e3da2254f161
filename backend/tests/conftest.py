"""
Test configuration and fixtures.
Uses an in-memory SQLite database (aiosqlite) shared through a StaticPool.
"""
import os
import uuid as uuid_module

# Set test environment before any imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["VIPPS_CALLBACK_URL"] = "https://pay.example.com/api/webhooks/vipps"
os.environ["FRONTEND_URL"] = "https://shop.example.com"

import pytest
from decimal import Decimal
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from tenantpay.auth.dependencies import Principal
from tenantpay.gateways.token_cache import vipps_token_cache
from tenantpay.models.base import Base
from tenantpay.models.order import Order, OrderStatus
from tenantpay.models.payment import Payment, PaymentProvider, PaymentType
from tenantpay.models.payment_config import TenantPaymentConfig
from tenantpay.repositories.payment_repository import PaymentRepository
from tenantpay.services.payment_config_service import PaymentConfigService

from factories import STRIPE_CREDENTIALS, TENANT_ID, VIPPS_CREDENTIALS


@pytest.fixture(autouse=True)
def clear_token_cache():
    """Vipps tokens are cached process-wide."""
    vipps_token_cache.clear()
    yield
    vipps_token_cache.clear()


@pytest.fixture(scope="function")
async def session_maker() -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory over a fresh in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        # Sessions share the one connection, a rollback on check-in would
        # discard another session's pending writes
        pool_reset_on_return=None,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(session_maker: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_maker() as session:
        yield session


@pytest.fixture(scope="function")
async def vipps_config(db_session: AsyncSession) -> TenantPaymentConfig:
    """Enabled Vipps config for the test tenant."""
    return await PaymentConfigService.upsert(
        db_session,
        tenant_id=TENANT_ID,
        provider=PaymentProvider.VIPPS,
        enabled=True,
        test_mode=True,
        raw_credentials=VIPPS_CREDENTIALS,
        display_name="Vipps",
        sort_order=1,
    )


@pytest.fixture(scope="function")
async def stripe_config(db_session: AsyncSession) -> TenantPaymentConfig:
    """Enabled Stripe config for the test tenant."""
    return await PaymentConfigService.upsert(
        db_session,
        tenant_id=TENANT_ID,
        provider=PaymentProvider.STRIPE,
        enabled=True,
        test_mode=True,
        raw_credentials=STRIPE_CREDENTIALS,
        display_name="Kort",
        sort_order=2,
    )


@pytest.fixture(scope="function")
async def test_order(db_session: AsyncSession) -> Order:
    """Create a pending shop order."""
    order = Order(
        tenant_id=TENANT_ID,
        user_id="customer-uid",
        order_number=f"ORD-{uuid_module.uuid4().hex[:6]}",
        total_amount=Decimal("99.50"),
        status=OrderStatus.PENDING,
    )
    db_session.add(order)
    await db_session.commit()
    await db_session.refresh(order)
    return order


@pytest.fixture
def make_payment(db_session: AsyncSession) -> Callable:
    """Factory for stored payments."""

    async def _make(
        provider: PaymentProvider,
        external_id: str,
        order: Optional[Order] = None,
        amount: Decimal = Decimal("99.50"),
        tenant_id: str = TENANT_ID,
    ) -> Payment:
        payment = await PaymentRepository.create_pending(
            db_session,
            tenant_id=tenant_id,
            user_id="customer-uid",
            provider=provider,
            external_id=external_id,
            amount=amount,
            currency="NOK",
            payment_type=PaymentType.ORDER,
            description="Test payment",
            order_id=order.id if order else None,
        )
        await db_session.commit()
        return payment

    return _make


@pytest.fixture
def admin_principal() -> Principal:
    return Principal(user_id="admin-uid", tenant_id=TENANT_ID, role="ADMIN", email="admin@example.com")


@pytest.fixture
def customer_principal() -> Principal:
    return Principal(user_id="customer-uid", tenant_id=TENANT_ID, role="CUSTOMER", email="kunde@example.com")


def get_test_app(db_session: AsyncSession, principal: Optional[Principal]) -> FastAPI:
    """Create a test FastAPI app with overridden dependencies."""
    from tenantpay.main import app
    from tenantpay.database import get_db
    from tenantpay.auth.dependencies import get_current_principal

    async def override_get_db():
        yield db_session

    async def override_get_current_principal():
        return principal

    app.dependency_overrides[get_db] = override_get_db
    if principal is not None:
        app.dependency_overrides[get_current_principal] = override_get_current_principal

    return app


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession, admin_principal: Principal) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as a tenant admin."""
    app = get_test_app(db_session, admin_principal)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def customer_client(db_session: AsyncSession, customer_principal: Principal) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as a customer."""
    app = get_test_app(db_session, customer_principal)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def anonymous_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client without a user token, as providers call webhooks."""
    app = get_test_app(db_session, None)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
