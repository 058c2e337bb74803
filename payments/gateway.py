"""
Shared plumbing for the PayPal gateways: configuration, HTTP transport,
event hooks, per-payment locking and the injected clock.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Literal, Optional

import requests
import structlog
from pydantic import BaseModel

from core.locks import KeyedLock
from core.logging import PayPalEvents
from core.metrics import paypal_requests
from core.tracing import get_tracer
from db.models import Payment
from payments.errors import GatewayUnreachable
from payments.events import EventDispatcher
from payments.repository import PaymentRepository

log = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class GatewayConfig(BaseModel):
    gateway_id: str
    mode: Literal["test", "live"] = "test"
    http_timeout: float = 30.0

    @property
    def test_mode(self) -> bool:
        return self.mode == "test"


class PayPalGateway:
    """Base class for the Express Checkout, PaymentsPro and Standard gateways."""

    protocol = "nvp"

    def __init__(
        self,
        config: GatewayConfig,
        payments: PaymentRepository,
        http: Optional[requests.Session] = None,
        dispatcher: Optional[EventDispatcher] = None,
        locks: Optional[KeyedLock] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.payments = payments
        self.http = http or requests.Session()
        self.dispatcher = dispatcher or EventDispatcher()
        self.locks = locks or KeyedLock()
        self.clock = clock or utcnow

    @property
    def gateway_id(self) -> str:
        return self.config.gateway_id

    def now(self) -> datetime:
        return self.clock()

    def send(self, method: str, url: str, label: str, **kwargs) -> requests.Response:
        """Issue one HTTP call; transport failures become GatewayUnreachable."""
        kwargs.setdefault("timeout", self.config.http_timeout)
        paypal_requests.labels(protocol=self.protocol, method=label).inc()
        log.info(PayPalEvents.REQUEST, protocol=self.protocol, method=label, url=url)
        with tracer.start_as_current_span(
            f"paypal.{self.protocol}", attributes={"paypal.method": label}
        ):
            try:
                return self.http.request(method, url, **kwargs)
            except (requests.Timeout, requests.ConnectionError) as e:
                log.error(
                    PayPalEvents.REQUEST_FAILED,
                    protocol=self.protocol,
                    method=label,
                    error=str(e),
                )
                raise GatewayUnreachable(f"PayPal {label} request failed: {e}") from e

    @contextmanager
    def locked(self, payment: Payment) -> Iterator[Payment]:
        """Hold the payment's lock and yield its freshest persisted copy."""
        if payment.id is None:
            yield payment
            return
        with self.locks.hold(payment.id):
            yield self.payments.load(payment.id) or payment
