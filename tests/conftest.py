"""
Global pytest fixtures for the billing test suite.

Provides:
- Async database session on a temporary SQLite file
- A scriptable fake payment gateway and a controllable clock
- Lifecycle manager / webhook handler wired to the test database
- ASGI test client with the billing runtime replaced by fakes
"""
import hashlib
import hmac
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BILLING_JWT_SECRET"] = "test-jwt-secret-for-testing-at-least-32-bytes"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["BILLING_ALLOWED_PLAN_IDS"] = "plan_monthly,plan_yearly"
os.environ["DB_SSL_MODE"] = "disable"

from app.modules.billing.domain.billing.lifecycle import SubscriptionLifecycleManager  # noqa: E402
from app.modules.billing.domain.billing.plan_catalog import PlanCatalog  # noqa: E402
from app.modules.billing.domain.billing.razorpay_client import (  # noqa: E402
    GatewayCancellation,
    GatewaySubscription,
)
from app.modules.billing.domain.billing.record_store import SubscriptionRecordStore  # noqa: E402
from app.modules.billing.domain.billing.signature import SignatureVerifier  # noqa: E402
from app.modules.billing.domain.billing.webhook_handler import WebhookIngestionHandler  # noqa: E402
from app.shared.core.exceptions import GatewayError  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"
ALLOWED_PLANS = ("plan_monthly", "plan_yearly")
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Fakes
# ============================================================================


@dataclass
class FakeGateway:
    """Scriptable stand-in for RazorpayClient."""

    public_key: Optional[str] = "rzp_test_key"
    create_error: Optional[Exception] = None
    cancel_error: Optional[Exception] = None
    cancel_status: str = "active"
    cancel_ended_at: Optional[datetime] = None
    current_end: Optional[datetime] = None
    created: list[str] = field(default_factory=list)
    cancel_calls: list[tuple[str, bool]] = field(default_factory=list)

    async def create_subscription(
        self, plan_id: str, quantity: int = 1
    ) -> GatewaySubscription:
        if self.create_error is not None:
            raise self.create_error
        subscription_id = f"sub_{len(self.created) + 1:04d}"
        self.created.append(subscription_id)
        return GatewaySubscription(
            subscription_id=subscription_id, status="created", plan_id=plan_id
        )

    async def cancel_subscription(
        self, subscription_id: str, cancel_at_cycle_end: bool
    ) -> GatewayCancellation:
        self.cancel_calls.append((subscription_id, cancel_at_cycle_end))
        if self.cancel_error is not None:
            raise self.cancel_error
        return GatewayCancellation(
            status=self.cancel_status,
            current_period_end=self.current_end,
            ended_at=self.cancel_ended_at,
        )


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(
    event: str,
    subscription_id: Optional[str],
    current_end: Optional[datetime] = None,
    *,
    via_payment: bool = False,
) -> bytes:
    """Build a Razorpay-shaped webhook body."""
    payload: dict[str, Any] = {}
    if via_payment:
        payload["payment"] = {
            "entity": {"id": "pay_001", "subscription_id": subscription_id}
        }
    else:
        entity: dict[str, Any] = {"id": subscription_id}
        if current_end is not None:
            entity["current_end"] = int(current_end.timestamp())
        payload["subscription"] = {"entity": entity}
    return json.dumps({"event": event, "payload": payload}).encode()


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def async_engine():
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from app.shared.db.base import Base

    db_file = f"test_{uuid4().hex}.sqlite"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_file}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def session_factory(async_engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator:
    """Provide an async session with tables already created."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


# ============================================================================
# Billing Fixtures
# ============================================================================


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog(ALLOWED_PLANS)


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier(WEBHOOK_SECRET)


@pytest.fixture
def store(db_session) -> SubscriptionRecordStore:
    return SubscriptionRecordStore(db_session)


@pytest.fixture
def manager(store, gateway, catalog, clock) -> SubscriptionLifecycleManager:
    return SubscriptionLifecycleManager(
        store, gateway, catalog, tombstone_grace=timedelta(minutes=15), clock=clock
    )


@pytest.fixture
def webhook_handler(verifier, manager) -> WebhookIngestionHandler:
    return WebhookIngestionHandler(verifier, manager)


@pytest.fixture
def gateway_down() -> GatewayError:
    return GatewayError("Razorpay unreachable for subscriptions", gateway_status=None)


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================


@pytest.fixture
def app(gateway, catalog, verifier):
    """The real application with the billing runtime swapped for fakes."""
    from app.main import app as menurai_app
    from app.modules.billing.domain.billing.runtime import BillingRuntime

    previous = getattr(menurai_app.state, "billing_runtime", None)
    menurai_app.state.billing_runtime = BillingRuntime(
        verifier=verifier,
        gateway=gateway,
        catalog=catalog,
        tombstone_grace=timedelta(minutes=15),
    )
    yield menurai_app
    menurai_app.state.billing_runtime = previous


@pytest_asyncio.fixture
async def ac(app, session_factory) -> AsyncGenerator:
    """Async test client. Each request gets its own session on the test database."""
    from httpx import ASGITransport, AsyncClient
    from app.shared.db.session import get_db

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id."""
    from app.shared.core.auth import create_access_token

    def _headers(user_id: str = "user-1") -> dict[str, str]:
        token = create_access_token({"sub": user_id, "email": f"{user_id}@example.com"})
        return {"Authorization": f"Bearer {token}"}

    return _headers
