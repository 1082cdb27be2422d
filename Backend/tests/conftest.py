"""
Pytest configuration and fixtures for async database testing.

Tests run against an in-memory SQLite database (aiosqlite). Tables are
created before and dropped after every test so each test starts empty.
"""
import os

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Must be set before campus_booking reads its settings
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

from campus_booking.core.db import AsyncSessionLocal, Base, engine
from campus_booking.rate_limiter import RateLimiter, get_rate_limiter


VALID_BOOKING = {
    "name": "John Doe",
    "phone": "(517) 332-5353",
    "email": "john@example.com",
    "service": "Classic Haircut",
    "barber": "john",
    "date": "2025-03-01",
    "time": "10:00",
    "notes": "",
    "timeOnPage": 15000,
}


@pytest.fixture
def booking_payload():
    """Fresh copy of a valid booking submission."""
    return dict(VALID_BOOKING)


@pytest.fixture(scope="function")
async def db():
    """Create all tables for one test, drop them afterwards."""
    from campus_booking import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Next test gets a fresh connection on its own event loop
    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(db):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def fetch_all(db):
    """Read a whole table through a fresh session (no stale identity map)."""
    async def _fetch(model):
        async with AsyncSessionLocal() as session:
            result = await session.execute(select(model))
            return result.scalars().all()
    return _fetch


@pytest.fixture
def limiter():
    return RateLimiter()


@pytest.fixture(scope="function")
async def client(db, limiter):
    """
    FastAPI AsyncClient with a per-test rate limiter.

    Tables are created by the ``db`` fixture, so app startup is not needed.
    """
    # Import here so DATABASE_URL is already in place
    from campus_booking.main import app

    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": "TestAgent/1.0", "X-Forwarded-For": "203.0.113.7"},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
