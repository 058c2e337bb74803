"""Test configuration and fixtures."""

import json
import os
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.locks import KeyedLock
from core.money import Amount
from core.settings import Settings
from db.models import Base
from db.repository import SqlPaymentMethodRepository, SqlPaymentRepository
from payments.codec import encode_json, encode_nvp
from payments.orders import Adjustment, Order, OrderItem

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class MockResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, content=b"", json_data=None):
        self.status_code = status_code
        if json_data is not None:
            content = encode_json(json_data)
        self.content = content
        self.text = content.decode("utf-8") if isinstance(content, bytes) else content

    def json(self):
        return json.loads(self.content)


def nvp_response(**fields):
    return MockResponse(200, encode_nvp(fields))


def json_response(status_code=200, **data):
    return MockResponse(status_code, json_data=data)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Setup test environment variables before each test."""
    original_env = dict(os.environ)

    os.environ.update(
        {
            "DATABASE_URL": "sqlite:///:memory:",  # Use in-memory for faster tests
            "PAYPAL_MODE": "test",
            "PAYPAL_API_USERNAME": "merchant_api1.example.com",
            "PAYPAL_API_PASSWORD": "test_password",
            "PAYPAL_SIGNATURE": "test_signature",
            "PAYPAL_CLIENT_ID": "test_client_id",
            "PAYPAL_SECRET": "test_secret",
            "APP_NAME": "Test PayPal Gateway",
            "ENVIRONMENT": "development",
            "DISABLE_TRACING": "1",
            "DEBUG": "true",
        }
    )

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def mock_settings():
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        PAYPAL_MODE="test",
        PAYPAL_API_USERNAME="merchant_api1.example.com",
        PAYPAL_API_PASSWORD="test_password",
        PAYPAL_SIGNATURE="test_signature",
        PAYPAL_CLIENT_ID="test_client_id",
        PAYPAL_SECRET="test_secret",
        APP_NAME="Test PayPal Gateway",
        DEBUG=True,
        ENVIRONMENT="development",
    )


@pytest.fixture
def test_db_engine():
    """Create a test database engine and setup tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def payments(test_db_session):
    return SqlPaymentRepository(test_db_session)


@pytest.fixture
def payment_methods(test_db_session):
    return SqlPaymentMethodRepository(test_db_session)


@pytest.fixture
def http():
    """HTTP session whose ``request`` calls are scripted per test."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def order():
    """Two items, a promotion, tax and shipping: 89.50 USD in total."""
    return Order(
        id=7,
        total_price=Amount("89.50", "USD"),
        items=[
            OrderItem("Red T-Shirt", Amount("30.00", "USD"), 2),
            OrderItem("Sticker pack", Amount("9.50", "USD"), 1),
        ],
        adjustments=[
            Adjustment("promotion", "Spring sale", Amount("-5.00", "USD")),
            Adjustment("tax", "Sales tax", Amount("15.00", "USD")),
            Adjustment("shipping", "Ground", Amount("10.00", "USD")),
        ],
        order_number="1007",
    )


@pytest.fixture
def make_payment(payments, clock):
    """Persist a payment in the given state."""

    def _make(
        state,
        amount="100.00",
        currency="USD",
        remote_id="AUTH-1",
        refunded="0",
        **values,
    ):
        payment = payments.create(
            order_id=values.pop("order_id", 7),
            payment_gateway=values.pop("payment_gateway", "paypal_express_checkout"),
            amount=Amount(amount, currency),
            remote_id=remote_id,
            state=state,
            authorized_at=values.pop("authorized_at", clock()),
            **values,
        )
        payment.refunded_amount = Amount(refunded, currency)
        payments.save(payment)
        return payment

    return _make


@pytest.fixture
def client(mock_settings, test_db_engine):
    """Test client with proper database setup."""
    from db.session import get_db, reset_engines

    reset_engines()

    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_db_engine
    )

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    from main import app

    app.dependency_overrides[get_db] = override_get_db

    with patch("core.dependencies._settings", mock_settings):
        with TestClient(app) as test_client:
            yield test_client

    app.dependency_overrides.clear()
    reset_engines()


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (SQLite)")
    config.addinivalue_line("markers", "slow: marks tests as slow running")
