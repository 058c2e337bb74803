"""
Simple smoke tests to verify basic functionality.
"""

from core.dependencies import (
    build_express_checkout,
    build_ipn_reconciler,
    build_payments_pro,
    build_payments_standard,
    get_http,
    get_locks,
)


def test_app_startup(client):
    """Test that the application starts up properly."""
    response = client.get("/healthz")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "SQLite"
    assert data["paypal_mode"] == "test"
    assert "app_name" in data
    assert "environment" in data


def test_openapi_available(client):
    """Test that OpenAPI documentation is available."""
    response = client.get("/docs")
    assert response.status_code == 200
    assert "/api/v1/paypal/ipn" in client.get("/openapi.json").json()["paths"]


def test_gateways_built_from_settings(mock_settings, test_db_session):
    """Every gateway is configured from the same settings and shares one lock registry."""
    express = build_express_checkout(mock_settings, test_db_session, orders=None)
    pro = build_payments_pro(mock_settings, test_db_session)
    standard = build_payments_standard(mock_settings, test_db_session)
    reconciler = build_ipn_reconciler(mock_settings, test_db_session)

    assert express.gateway_id == "paypal_express_checkout"
    assert express.config.api_username == "merchant_api1.example.com"
    assert express.api_url == "https://api-3t.sandbox.paypal.com/nvp"
    assert pro.gateway_id == "paypal_payments_pro"
    assert pro.tokens.client_id == "test_client_id"
    assert pro.api_url == "https://api.sandbox.paypal.com/v1"
    assert standard.gateway_id == "paypal_payments_standard"
    assert reconciler.timeout == 10.0

    for component in (express, pro, standard, reconciler):
        assert component.locks is get_locks()
        assert component.http is get_http()


def test_database_connection(payments):
    """Test that database connection works."""
    from core.money import Amount
    from db.models import PaymentState

    payment = payments.create(
        order_id=1, payment_gateway="paypal_express_checkout", amount=Amount("5", "USD")
    )
    payments.save(payment)

    retrieved = payments.load(payment.id)
    assert retrieved is not None
    assert retrieved.state == PaymentState.new
    assert retrieved.refund_remote_ids == []


def test_ipn_reconcilers_reuse_one_http_session(mock_settings, test_db_session):
    """Each notification gets a fresh reconciler but the same connection pool."""
    first = build_ipn_reconciler(mock_settings, test_db_session)
    second = build_ipn_reconciler(mock_settings, test_db_session)

    assert first is not second
    assert first.http is second.http is get_http()
