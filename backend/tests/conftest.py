"""
Pytest configuration and shared fixtures for the Casa Piñón payments tests.

Provides an in-memory SQLite session, a PaymentReconciler wired to fake
email/gateway collaborators, and an httpx client over the ASGI app.
"""
import os

# Settings are read at import time; pin test values before importing the app.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MAINTENANCE_ENABLED", "false")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:5173")

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import db_models  # noqa: F401  (registers tables on Base.metadata)
from config import Settings
from database import Base, get_db
from main import app
from middleware.rate_limit import reset_rate_limits
from services.payment_service import PaymentReconciler
from services.resolver_metrics import ResolverMetrics
from tests.factories import FakeBold, FakeGateway, FakeSender, make_order

MP_SECRET = "test-mp-webhook-secret"
BOLD_SECRET = "test-bold-secret"
EPAYCO_CUSTOMER_ID = "12345"
EPAYCO_P_KEY = "test-epayco-p-key"


# ── Settings ─────────────────────────────────────────────────────────


@pytest.fixture
def test_settings() -> Settings:
    """Isolated settings (no .env) with all webhook secrets configured."""
    return Settings(
        _env_file=None,
        environment="test",
        database_url="sqlite+aiosqlite:///:memory:",
        mercadopago_access_token="TEST-0000000000000000-000000-abcdef",
        mercadopago_webhook_secret=MP_SECRET,
        bold_secret_key=BOLD_SECRET,
        bold_api_key="test-bold-api-key",
        epayco_customer_id=EPAYCO_CUSTOMER_ID,
        epayco_p_key=EPAYCO_P_KEY,
        webhook_verification=True,
        verify_redirect_approvals=True,
        maintenance_enabled=False,
    )


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine; StaticPool keeps one shared connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Collaborator Fakes ───────────────────────────────────────────────


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def bold() -> FakeBold:
    return FakeBold()


@pytest.fixture
def metrics() -> ResolverMetrics:
    return ResolverMetrics()


@pytest.fixture
def reconciler(test_settings, sender, gateway, bold, metrics) -> PaymentReconciler:
    return PaymentReconciler(
        test_settings,
        email_sender=sender,
        gateway_client=gateway,
        metrics=metrics,
        bold_client=bold,
    )


# ── HTTP Client ──────────────────────────────────────────────────────


@pytest.fixture
async def client(db_session, reconciler) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx client over the ASGI app.

    ASGITransport does not run the lifespan, so the reconciler is placed on
    app.state directly and get_db is overridden with the test session.
    """
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.reconciler = reconciler
    reset_rate_limits()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


# ── Test Data Fixtures ────────────────────────────────────────────────


@pytest.fixture
async def sample_order(db_session) -> str:
    """A pending MercadoPago order; returns its order number."""
    return await make_order(db_session)
