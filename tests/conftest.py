"""Shared test fixtures — single test DB for all test modules."""
from __future__ import annotations

import base64
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

from config.settings import settings
from src.db.tables import Base
import src.db.subscription_tables  # noqa: F401

TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)

# Point the lazily-built process engine at the test engine before any request
import src.db.engine as _engine_mod
_engine_mod._engine = test_engine
_engine_mod._sessionmaker = TestSession

from src.api.main import app  # noqa: E402


@asynccontextmanager
async def get_test_session():
    """Context manager for seeding/inspecting data in tests."""
    async with TestSession() as session:
        yield session


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    _engine_mod._engine = test_engine
    _engine_mod._sessionmaker = TestSession

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Each test starts with uninitialized Firebase / Google Play clients."""
    from src.auth import reset_firebase_app
    from src.services.google_play import reset_play_client

    reset_play_client()
    reset_firebase_app()
    yield
    reset_play_client()
    reset_firebase_app()


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Firebase ──────────────────────────────────────────────────────────────────

def _fake_verify_id_token(id_token, app=None, *args, **kwargs):
    """Tokens of the form ``idtoken-<uid>`` are valid; anything else is rejected."""
    if id_token.startswith("idtoken-"):
        return {"uid": id_token[len("idtoken-"):]}
    raise ValueError("Wrong number of segments in token")


@pytest.fixture
def firebase_ok():
    """Firebase Admin initialized and verifying ``idtoken-<uid>`` tokens."""
    with patch("src.auth.get_firebase_app", return_value=MagicMock(name="firebase-app")):
        with patch("src.auth.firebase_auth.verify_id_token", side_effect=_fake_verify_id_token) as verify:
            yield verify


def bearer(uid: str) -> dict:
    return {"Authorization": f"Bearer idtoken-{uid}"}


# ── Google Play ───────────────────────────────────────────────────────────────

FUTURE_MS = 4_102_444_800_000   # 2100-01-01
PAST_MS = 946_684_800_000       # 2000-01-01


def play_purchase(expiry_ms: int = FUTURE_MS, **overrides) -> dict:
    """A v1 SubscriptionPurchase as returned by purchases.subscriptions.get."""
    purchase = {
        "kind": "androidpublisher#subscriptionPurchase",
        "startTimeMillis": "1700000000000",
        "expiryTimeMillis": str(expiry_ms),
        "autoRenewing": True,
        "priceCurrencyCode": "INR",
        "priceAmountMicros": "99000000",
        "countryCode": "IN",
        "paymentState": 1,
        "orderId": "GPA.3345-1234-5678-90123",
    }
    purchase.update(overrides)
    return purchase


@pytest.fixture
def play_client():
    """A fake GooglePlayClient wired into the reconciliation path."""
    from src.models.subscription import SubscriptionSnapshot

    fake = MagicMock(name="GooglePlayClient")
    fake.package_name = settings.PACKAGE_NAME
    fake.fetch_subscription = AsyncMock(return_value=SubscriptionSnapshot.from_api(play_purchase()))
    with patch("src.services.reconciliation.get_play_client", return_value=fake):
        yield fake


def rtdn_data(
    purchase_token: str = "tok_abcdefghijklmnop",
    subscription_id: str = "premium_monthly",
    notif_type: int = 4,
    package_name: str | None = None,
) -> str:
    """Base64 DeveloperNotification matching Google's RTDN format."""
    notification = {
        "version": "1.0",
        "packageName": package_name or settings.PACKAGE_NAME,
        "eventTimeMillis": "1700000000000",
        "subscriptionNotification": {
            "version": "1.0",
            "notificationType": notif_type,
            "purchaseToken": purchase_token,
            "subscriptionId": subscription_id,
        },
    }
    return base64.b64encode(json.dumps(notification).encode()).decode()


def b64json(payload) -> str:
    return base64.b64encode(json.dumps(payload).encode()).decode()


def push_body(data: str) -> dict:
    """Pub/Sub push wrapper around a base64 message payload."""
    return {
        "message": {"data": data, "messageId": "msg_123", "publishTime": "2026-01-01T00:00:00Z"},
        "subscription": "projects/demo/subscriptions/play-rtdn",
    }
