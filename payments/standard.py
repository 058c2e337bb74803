"""PayPal Payments Standard: redirect-only, settled through IPN."""

from collections.abc import Mapping
from typing import Optional

import structlog

from core.logging import PayPalEvents
from core.money import Rounder
from db.models import Payment
from payments import state_machine
from payments.errors import InvalidRequest
from payments.gateway import PayPalGateway
from payments.orders import Order

log = structlog.get_logger(__name__)


class PaymentsStandard(PayPalGateway):
    protocol = "standard"

    def __init__(self, config, payments, rounder: Optional[Rounder] = None, **kwargs):
        super().__init__(config, payments, **kwargs)
        self.rounder = rounder or Rounder()

    def get_redirect_url(self) -> str:
        if self.config.test_mode:
            return "https://www.sandbox.paypal.com/cgi-bin/webscr"
        return "https://www.paypal.com/cgi-bin/webscr"

    def on_redirect_return(self, order: Order, fields: Mapping[str, str]) -> Payment:
        """Record the payment PayPal reports in the return POST."""
        txn_id = fields.get("txn_id")
        if not txn_id:
            raise InvalidRequest("PayPal did not return a transaction id.")
        status = fields.get("payment_status")

        now = self.now()
        payment = self.payments.create(
            order_id=order.id,
            payment_gateway=self.gateway_id,
            amount=self.rounder.round(order.total_price),
            test=self.config.test_mode,
            remote_id=txn_id,
            remote_state=status,
            authorized_at=now,
        )
        state_machine.settle_new_payment(payment, status, now)
        self.payments.save(payment)
        log.info(
            PayPalEvents.CHECKOUT_RETURNED,
            order_id=order.id,
            payment_id=payment.id,
            remote_id=txn_id,
            state=payment.state.value,
        )
        return payment

    def on_redirect_cancel(self, order: Order) -> None:
        log.info(PayPalEvents.CHECKOUT_CANCELLED, order_id=order.id)
