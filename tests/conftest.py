"""Shared fixtures for the subscription service tests.

Provides a SQLite-backed Database (foreign keys on), a mock Stripe client,
Stripe-compatible webhook signing and an ASGI test client.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.config import Settings
from app.core.database import Database
from app.main import create_app
from app.services.reconciliation_service import ReconciliationService
from app.services.status_service import SubscriptionStatusService
from app.services.stripe_service import StripeService

WEBHOOK_SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2025, 8, 1, 12, 0, tzinfo=timezone.utc)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def make_event(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode("utf-8")


def make_session(
    session_id: str = "cs_1",
    subscription_id: str = "sub_1",
    email: str = "a@b.com",
    **extra: Any,
) -> dict[str, Any]:
    session: dict[str, Any] = {
        "id": session_id,
        "object": "checkout.session",
        "subscription": subscription_id,
        "customer": "cus_1",
        "customer_details": {"email": email},
    }
    session.update(extra)
    return session


def make_stripe_subscription(
    subscription_id: str = "sub_1",
    wallet: str | None = "0xABC",
    period_end: Any = None,
    status: str = "active",
) -> dict[str, Any]:
    if period_end is None:
        period_end = int((FIXED_NOW + timedelta(days=30)).timestamp())
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": "cus_1",
        "status": status,
        "current_period_end": period_end,
        "metadata": {"wallet_address": wallet} if wallet else {},
    }


@pytest.fixture()
def test_settings(tmp_path) -> Settings:
    return Settings(
        environment="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        auto_create_tables=True,
        stripe_secret_key="sk_test_xxx",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_price_id="price_test",
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings):
    db = Database.from_settings(test_settings)
    await db.init_models()
    yield db
    await db.dispose()


@pytest.fixture()
def session_factory(database: Database):
    return database.session_factory


@pytest.fixture()
def mock_stripe() -> AsyncMock:
    """StripeService mock whose lookup returns an active subscription with a wallet."""
    client = AsyncMock(spec=StripeService)
    client.retrieve_subscription.return_value = make_stripe_subscription()
    client.create_checkout_session.return_value = "cs_test_new"
    return client


@pytest.fixture()
def reconciliation(session_factory, mock_stripe) -> ReconciliationService:
    return ReconciliationService(session_factory, mock_stripe, clock=lambda: FIXED_NOW)


@pytest.fixture()
def status_service(session_factory) -> SubscriptionStatusService:
    return SubscriptionStatusService(session_factory, clock=lambda: FIXED_NOW)


@pytest_asyncio.fixture
async def client(test_settings, database, mock_stripe, reconciliation, status_service):
    """ASGI client with application state wired as the lifespan would."""
    app = create_app(test_settings)
    app.state.database = database
    app.state.stripe_service = mock_stripe
    app.state.reconciliation_service = reconciliation
    app.state.status_service = status_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
