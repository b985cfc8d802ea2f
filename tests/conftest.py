import os
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

os.environ.setdefault("MONGODB_DB_NAME", "wallet_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")


class FakeClock:
    """Mutable naive-UTC clock for day-rollover tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest_asyncio.fixture(autouse=True)
async def db() -> AsyncGenerator:
    """Fresh in-memory database bound to Beanie for every test."""
    from wallet_service.db.init import init_db
    from wallet_service.services.limits import get_limiter
    client = AsyncMongoMockClient()
    database = client["wallet_test"]
    await init_db(database)
    get_limiter.cache_clear()
    yield database
    get_limiter.cache_clear()


@pytest_asyncio.fixture
async def user():
    from wallet_service.models.user import User
    u = User(email="learner@example.com", name="Learner")
    await u.insert()
    return u


@pytest_asyncio.fixture
async def admin():
    from wallet_service.models.user import User
    u = User(email="admin@example.com", name="Admin", role="admin")
    await u.insert()
    return u


@pytest.fixture
def cookies_for():
    """Signed session cookie for a user, as the auth service would issue it."""
    from wallet_service.core.security import create_session_cookie
    from wallet_service.deps import SESSION_COOKIE_NAME

    def _cookies(user) -> dict[str, str]:
        payload = {"user_id": str(user.id), "session_version": user.session_version}
        return {SESSION_COOKIE_NAME: create_session_cookie(payload)}

    return _cookies


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 9, 30))


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from wallet_service.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def make_coupon():
    from wallet_service.services import coupons as coupons_service

    async def _make(**overrides):
        data = {
            "code": "SAVE10",
            "discount_type": "percentage",
            "discount_value": 10,
            "min_purchase": 100,
            "max_discount": 50,
            "valid_from": datetime.utcnow() - timedelta(days=1),
            "valid_to": datetime.utcnow() + timedelta(days=30),
        }
        data.update(overrides)
        return await coupons_service.create_coupon(data, created_by="admin")

    return _make
