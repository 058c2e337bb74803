from unittest.mock import patch

import pytest
import requests
import structlog

from core.logging import PayPalEvents, mask_credentials
from payments.errors import GatewayUnreachable
from payments.gateway import GatewayConfig, PayPalGateway


class _TestLogger:
    def __init__(self):
        self.output = []

    def __call__(self, logger, method_name, event_dict):
        """Process log events and store them for test assertions"""
        self.output.append(event_dict.copy())
        return event_dict

    def events(self, name):
        return [entry for entry in self.output if entry.get("event") == name]


@pytest.fixture
def captured():
    """Route structlog through a recording processor, masking included."""
    test_logger = _TestLogger()
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            mask_credentials,
            test_logger,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        # Module-level loggers must pick this configuration up
        cache_logger_on_first_use=False,
    )
    yield test_logger
    structlog.reset_defaults()


def test_structlog_json(captured):
    log = structlog.get_logger("test.payments")
    log.bind(payment_id=12, amount="89.50", remote_id="8MC585209K746392H").info(
        PayPalEvents.PAYMENT_CAPTURED
    )

    log_dict = captured.output[-1]
    assert log_dict["payment_id"] == 12
    assert log_dict["amount"] == "89.50"
    assert log_dict["remote_id"] == "8MC585209K746392H"
    assert log_dict["event"] == "paypal.payment.captured"
    assert log_dict["logger"] == "test.payments"
    assert log_dict["level"] == "info"
    assert "timestamp" in log_dict


def test_api_request_logging(client, captured):
    """Each request is logged on entry with method and path."""
    # An empty notification needs no database or PayPal round trip
    response = client.post("/api/v1/paypal/ipn", content="")
    assert response.status_code == 200

    entries = captured.events(PayPalEvents.API_ENTRY)
    assert len(entries) > 0
    assert entries[0]["method"] == "POST"
    assert entries[0]["path"] == "/api/v1/paypal/ipn"
    assert captured.events("api.response")[0]["status_code"] == 200


def test_failed_call_is_logged(payments, http):
    http.request.side_effect = requests.ConnectionError("refused")
    gateway = PayPalGateway(GatewayConfig(gateway_id="pp"), payments, http=http)

    with patch("payments.gateway.log") as log:
        with pytest.raises(GatewayUnreachable):
            gateway.send("POST", "https://api-3t.sandbox.paypal.com/nvp", "DoVoid")

    log.error.assert_called_once_with(
        PayPalEvents.REQUEST_FAILED, protocol="nvp", method="DoVoid", error="refused"
    )


def test_credentials_are_masked(captured):
    structlog.get_logger("test").info(
        PayPalEvents.REQUEST, PWD="secret", SIGNATURE="sig", USER="merchant_api1"
    )
    entry = captured.events(PayPalEvents.REQUEST)[-1]
    assert entry["PWD"] == "***"
    assert entry["SIGNATURE"] == "***"
    assert entry["USER"] == "merchant_api1"


def test_card_data_is_masked():
    event = mask_credentials(None, "info", {"number": "4111111111111111", "cvv2": "123"})
    assert event == {"number": "***", "cvv2": "***"}
