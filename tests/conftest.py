"""Pytest configuration and shared fixtures."""
import hashlib
import os

# Keep the app module's default engine off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from token_registry.database import Base, get_db
from token_registry.models.storage import KeyValueEntry  # noqa: F401
from token_registry.models.audit import AuditEvent  # noqa: F401
from token_registry.services.authorization import Authorizer
from token_registry.services.clock import FixedClock
from token_registry.services.registry import TokenRegistry

NOW = 1_700_000_000


def make_token_id(label: str) -> str:
    """Deterministic 32-byte token id (hex) for a readable label."""
    return hashlib.sha256(label.encode()).hexdigest()


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def registry_as(db_session, clock):
    """Build a registry bound to a given calling principal."""
    def _registry(caller):
        return TokenRegistry(db_session, Authorizer(caller), clock)
    return _registry


@pytest.fixture
def admin_registry(registry_as):
    """Registry acting as 'admin', with 'admin' set as the registry admin."""
    registry = registry_as("admin")
    registry.set_admin("admin")
    return registry


@pytest.fixture
def issued_token(admin_registry, clock):
    """Token T1 owned by alice, expiring 1000 seconds from now."""
    token_id = make_token_id("T1")
    admin_registry.issue(token_id, "alice", clock.now() + 1000)
    return token_id


@pytest.fixture
def client(clock):
    """API client over a private in-memory database and the fixed clock."""
    from token_registry.main import app
    from token_registry.api.routes import get_clock

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    yield TestClient(app)

    app.dependency_overrides.clear()
