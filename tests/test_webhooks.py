"""Tests for the IPN webhook endpoint."""

from unittest.mock import MagicMock

import pytest
import requests
from conftest import MockResponse
from sqlalchemy.orm import sessionmaker

from api.webhooks import get_ipn_reconciler
from core.money import Amount
from db.models import PaymentState
from db.repository import SqlPaymentRepository
from main import app
from payments.ipn import SANDBOX_VALIDATION_URL, IpnReconciler

IPN_URL = "/api/v1/paypal/ipn"
FORM = {"Content-Type": "application/x-www-form-urlencoded"}


@pytest.fixture
def paypal(client, test_db_engine, locks):
    """Route the endpoint's validation call to a scripted session."""
    http = MagicMock(spec=requests.Session)
    http.request.return_value = MockResponse(200, b"VERIFIED")
    Session = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)

    def override():
        db = Session()
        try:
            yield IpnReconciler(SqlPaymentRepository(db), http=http, locks=locks)
        finally:
            db.close()

    app.dependency_overrides[get_ipn_reconciler] = override
    return http


def test_refund_notification_is_applied(client, paypal, make_payment, payments):
    payment = make_payment(PaymentState.capture_completed, remote_id="SALE-1")
    body = (
        "txn_id=REF-1&parent_txn_id=SALE-1&payment_status=Refunded"
        "&mc_gross=-25.00&mc_currency=USD&test_ipn=1"
    )

    response = client.post(IPN_URL, content=body, headers=FORM)

    assert response.status_code == 200
    assert response.json() == {
        "status": "processed",
        "reason": "refunded",
        "payment_id": payment.id,
    }
    args, kwargs = paypal.request.call_args
    assert args == ("POST", SANDBOX_VALIDATION_URL)
    assert kwargs["data"] == b"cmd=_notify-validate&" + body.encode()

    payment = payments.load(payment.id)
    assert payment.state == PaymentState.capture_partially_refunded
    assert payment.refunded_amount == Amount("25.00", "USD")


def test_invalid_notification_still_answers_200(client, paypal, make_payment, payments):
    payment = make_payment(PaymentState.authorization, remote_id="AUTH-1")
    paypal.request.return_value = MockResponse(200, b"INVALID")

    response = client.post(
        IPN_URL,
        content="txn_id=AUTH-1&auth_id=AUTH-1&payment_status=Voided",
        headers=FORM,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert payments.load(payment.id).state == PaymentState.authorization


def test_unexpected_status_is_a_bad_request(client, paypal):
    response = client.post(
        IPN_URL, content="txn_id=T-1&payment_status=Reversed", headers=FORM
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "unexpected_payment_status"


def test_empty_body(client, paypal):
    response = client.post(IPN_URL, content="", headers=FORM)
    assert response.status_code == 200
    assert response.json()["reason"] == "empty_body"
    paypal.request.assert_not_called()
