"""
Test configuration and fixtures.

Provides:
- In-memory SQLite schema, rebuilt for every test
- A GmailConnectionManager wired to a fake Google provider, fake Redis and a
  controllable clock
- HTTPX AsyncClient with session cookie and CSRF header
"""
import os
import uuid
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are read at import time; configure them before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("REDIS_URL", "memory://")
os.environ["TESTING"] = "1"

import pytest
from httpx import ASGITransport, AsyncClient

from outreach.core.deps import COOKIE_NAME
from outreach.core.rate_limit import limiter
from outreach.core.security import create_session_token
from outreach.db.base import Base
from outreach.db.models import User
from outreach.db.session import SessionLocal, engine
from outreach.main import app
from outreach.services.connection_cache import (
    ConnectionStatusCache,
    MemoryStatusTier,
    RedisStatusTier,
)
from outreach.services.gmail_connection import GmailConnectionManager
from outreach.services.grant_store import SqlGrantStore
from outreach.services.outreach_service import OutreachService
from outreach.services.send_guard import SendDeduplicator, SlidingWindowLimiter
from outreach.services.thread_store import SqlThreadStore

from tests.fakes import FakeClock, FakeOAuthProvider, FakeRedis, FakeSender


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def schema() -> Generator[None, None, None]:
    """Fresh tables for every test."""
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def test_user() -> User:
    """Create a committed test user."""
    with SessionLocal() as db:
        user = User(
            id=uuid.uuid4(),
            email=f"test-{uuid.uuid4().hex[:8]}@test.com",
            display_name="Test User",
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        db.expunge(user)
        return user


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeOAuthProvider:
    return FakeOAuthProvider()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def grant_store() -> SqlGrantStore:
    return SqlGrantStore(SessionLocal)


@pytest.fixture
def thread_store() -> SqlThreadStore:
    return SqlThreadStore(SessionLocal)


@pytest.fixture
def status_cache(fake_redis: FakeRedis, clock: FakeClock) -> ConnectionStatusCache:
    return ConnectionStatusCache(
        [MemoryStatusTier(30 * 60), RedisStatusTier(fake_redis, 2 * 60 * 60)],
        clock=clock,
    )


@pytest.fixture
def manager(grant_store, provider, status_cache, clock) -> GmailConnectionManager:
    return GmailConnectionManager(
        grant_store,
        provider,
        status_cache,
        throttle_seconds=300,
        connect_lock_seconds=30,
        state_max_age_seconds=600,
        clock=clock,
    )


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def outreach_service(manager, thread_store, sender, clock) -> OutreachService:
    return OutreachService(
        manager,
        thread_store,
        SendDeduplicator(window_seconds=10, clock=clock),
        SlidingWindowLimiter(limit=10, window_seconds=60),
        timeout_seconds=5,
        send_fn=sender,
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
def install_services(manager, outreach_service) -> Generator[None, None, None]:
    """Put the fake-backed services where the routers look for them."""
    limiter.reset()
    app.state.gmail_manager = manager
    app.state.outreach_service = outreach_service
    yield
    del app.state.gmail_manager
    del app.state.outreach_service


@pytest.fixture
async def client(install_services) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing auth failures.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c


@pytest.fixture
async def authed_client(
    install_services, test_user: User
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create authenticated AsyncClient with JWT cookie and CSRF header.
    """
    token = create_session_token(test_user.id, test_user.token_version)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={COOKIE_NAME: token},
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c
