"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.plaid import _get_plaid_client
from database import Base, get_db
from main import app
from services.refresh_service import RefreshService
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    amex_card,
    checking_account,
    connection,
)
from tests.fixtures.mocks import (
    MockPlaidClient,
    SAMPLE_PLAID_ACCOUNTS,
    SAMPLE_PLAID_BALANCES,
)

@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="mock_plaid_client")
def mock_plaid_client_fixture():
    """Create a mock Plaid client with sample accounts and balances."""
    return MockPlaidClient(
        accounts=SAMPLE_PLAID_ACCOUNTS,
        balances={"access-amex": SAMPLE_PLAID_BALANCES},
        exchange_result={"access_token": "access-amex", "item_id": "item_amex"},
    )


@pytest.fixture(name="refresh_service")
def refresh_service_fixture(mock_plaid_client):
    """RefreshService over the mock client and the built-in catalog."""
    return RefreshService(mock_plaid_client)


@pytest.fixture(autouse=True)
def _release_refresh_locks():
    """Drop per-connection locks left behind by a test."""
    yield
    RefreshService._locks.clear()


@pytest.fixture(name="client")
def client_fixture(db, mock_plaid_client):
    """Create a test client with the test database and mock Plaid client."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_plaid_client():
        return mock_plaid_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[_get_plaid_client] = override_get_plaid_client
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
