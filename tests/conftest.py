"""
Pytest configuration and fixtures for cart service tests.

Environment is set before any app import so that settings and the
database engine pick up the in-memory test configuration.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api import create_app
from app.api.dependencies import get_cart_service, get_current_user_id
from app.data.database import Base
from app.data.models import CartModel, CartItemModel  # noqa: F401
from app.domain.cart import CartPolicy
from app.repos.cart_repo import SqlCartRepo
from app.repos.memory_cart_repo import InMemoryCartRepo
from app.services.cart_service import CartService

TEST_USER_ID = "client@example.com"
START = datetime(2026, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def policy():
    return CartPolicy(
        ttl=timedelta(hours=24),
        warning=timedelta(hours=4),
        max_items=50,
        max_quantity=999,
    )


@pytest.fixture
def repo():
    return InMemoryCartRepo()


@pytest.fixture
def service(repo, policy, clock, sleeps):
    return CartService(
        repo,
        policy=policy,
        max_attempts=3,
        retry_base_delay_ms=100,
        clock=clock,
        sleep=sleeps,
    )


# ============================================================================
# SQL fixtures
# ============================================================================

@pytest.fixture
def sql_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_session_factory(sql_engine):
    return sessionmaker(bind=sql_engine, autoflush=False)


@pytest.fixture
def sql_session(sql_session_factory):
    session = sql_session_factory()
    yield session
    session.close()


@pytest.fixture
def sql_repo(sql_session):
    return SqlCartRepo(sql_session)


# ============================================================================
# API fixtures
# ============================================================================

@pytest.fixture
def test_app(service):
    app = create_app()
    app.dependency_overrides[get_cart_service] = lambda: service
    app.dependency_overrides[get_current_user_id] = lambda: TEST_USER_ID
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def test_client(test_app):
    return TestClient(test_app)
