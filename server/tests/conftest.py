"""Test configuration and fixtures."""

import hashlib
import hmac
import json
import time

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reservation_service.core.config import settings
from reservation_service.core.database import Base, get_db
from reservation_service.models import *  # noqa: F403 - Import all models
from reservation_service.services.notifications import NotificationDispatcher
from reservation_service.services.payment_gateway import Authorization, RefundResult, StripePaymentGateway

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(StripePaymentGateway):
    """Stripe adapter with the network calls replaced; signature checks stay real."""

    def __init__(self):
        super().__init__(api_key=None, webhook_secret=WEBHOOK_SECRET)
        self.authorizations: dict[str, Authorization] = {}
        self.refunds: list[RefundResult] = []
        self.refund_error: Exception | None = None
        self.refund_attempts: list[int] = []

    async def create_authorization(self, amount, currency, metadata, description=None, idempotency_key=None):
        authorization = Authorization(
            id=f"pi_test_{len(self.authorizations) + 1}",
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            client_secret=f"pi_test_{len(self.authorizations) + 1}_secret",
            metadata=dict(metadata),
        )
        self.authorizations[authorization.id] = authorization
        return authorization

    async def retrieve_authorization(self, authorization_id):
        from reservation_service.core.exceptions import PaymentGatewayError

        if authorization_id not in self.authorizations:
            raise PaymentGatewayError(f"Could not retrieve authorization {authorization_id}")
        return self.authorizations[authorization_id]

    async def create_refund(self, payment_id, amount, reservation_id, reason=None, attempt=0):
        self.refund_attempts.append(attempt)
        if self.refund_error is not None:
            raise self.refund_error
        refund = RefundResult(
            id=f"re_test_{len(self.refunds) + 1}",
            payment_id=payment_id,
            amount=amount,
            status="succeeded",
        )
        self.refunds.append(refund)
        return refund


def make_token(account_id: str, roles: tuple[str, ...] = ()) -> str:
    """Bearer token signed the way the service expects."""
    return jwt.encode({"sub": account_id, "roles": list(roles)}, settings.bearer_token_secret, algorithm="HS256")


def auth_headers(account_id: str, roles: tuple[str, ...] = ()) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(account_id, roles)}"}


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for a raw webhook body."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def payment_event_body(
    reference: str,
    amount: int,
    metadata: dict[str, str],
    event_type: str = "payment_intent.succeeded",
    event_id: str = "evt_test_1",
) -> bytes:
    """Raw body of a payment intent event as the gateway delivers it."""
    body = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": reference,
                "object": "payment_intent",
                "amount": amount,
                "amount_received": amount,
                "currency": "usd",
                "status": "succeeded" if event_type == "payment_intent.succeeded" else "requires_payment_method",
                "metadata": metadata,
            }
        },
    }
    return json.dumps(body).encode("utf-8")


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    """Fresh notification queue, isolated from the process-wide one."""
    return NotificationDispatcher(maxsize=100)


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, fake_gateway, dispatcher):
    """Create a test FastAPI application."""
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError

    from reservation_service.core.dependencies import get_notification_dispatcher, get_payment_gateway
    from reservation_service.core.exceptions import (
        ProblemDetailsException,
        generic_exception_handler,
        problem_details_handler,
        request_validation_handler,
    )
    from reservation_service.routers import cart, metrics, operations, payments, reservations, webhooks

    # Create a simplified test app without lifespan
    app = FastAPI(
        title="Reservation Service (Test)",
        description="Test version of the API",
        version="1.0.0-test",
    )

    # Register exception handlers
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Register API routers
    app.include_router(payments.router)
    app.include_router(webhooks.router)
    app.include_router(reservations.router)
    app.include_router(cart.router)
    app.include_router(operations.router)
    app.include_router(metrics.router)

    # Override database and collaborator dependencies
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    from httpx import ASGITransport
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def excursion_details():
    """Guided glacier hike on one morning."""
    return {
        "category": "excursion",
        "date": "2026-12-15",
        "time": "09:00",
        "time_slot": "morning",
    }


@pytest.fixture
def lodging_details():
    return {
        "category": "lodging",
        "start_date": "2026-12-14",
        "end_date": "2026-12-17",
        "room_id": "suite-12",
    }


@pytest.fixture
def sample_authorize_data(excursion_details):
    """Authorization request for three people at 50.00 each."""
    return {
        "details": excursion_details,
        "service_id": "glacier-hike",
        "party_size": 3,
        "participants": ["alex", "sam", "kai"],
        "unit_amount": 5000,
    }
