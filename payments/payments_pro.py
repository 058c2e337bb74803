"""
PayPal PaymentsPro gateway (REST API)

Direct card payments against cards vaulted at PayPal. Every call carries an
OAuth2 bearer token from ``payments.oauth.TokenCache``. Capture, void and
refund first re-fetch the payment, since PayPal only exposes the
authorization / sale / capture ids as related resources of the payment.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional

import structlog

from core.logging import PayPalEvents
from core.money import Amount, Rounder
from db.models import Payment, PaymentMethod, PaymentState
from payments import state_machine
from payments.codec import decode_json, encode_json
from payments.errors import GatewayDeclined, InvalidRequest, InvalidState
from payments.events import (
    PaymentsProRequestEvent,
    PayPalEvents as HookEvents,
    PostCreatePaymentMethodEvent,
)
from payments.gateway import GatewayConfig, PayPalGateway
from payments.oauth import TokenCache
from payments.orders import Address
from payments.repository import PaymentMethodRepository

log = structlog.get_logger(__name__)


class PaymentsProConfig(GatewayConfig):
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class RestResponse:
    status_code: int
    data: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def card_expires_at(month: int, year: int) -> datetime:
    """First second of the month after the card's expiry month."""
    if month == 12:
        return datetime(year + 1, 1, 1, tzinfo=UTC)
    return datetime(year, month + 1, 1, tzinfo=UTC)


def related_resource(data: dict[str, Any], kind: str) -> Optional[dict[str, Any]]:
    """Find the first ``kind`` entry among the payment's related resources."""
    transactions = data.get("transactions") or [{}]
    for resource in transactions[0].get("related_resources") or []:
        if kind in resource:
            return resource[kind]
    return None


class PaymentsPro(PayPalGateway):
    """Provides the PayPal PaymentsPro payment gateway."""

    protocol = "rest"

    def __init__(
        self,
        config: PaymentsProConfig,
        payments,
        payment_methods: PaymentMethodRepository,
        rounder: Optional[Rounder] = None,
        tokens: Optional[TokenCache] = None,
        **kwargs,
    ):
        super().__init__(config, payments, **kwargs)
        self.payment_methods = payment_methods
        self.rounder = rounder or Rounder()
        self.tokens = tokens or TokenCache(
            self.api_url,
            config.client_id,
            config.client_secret,
            http=self.http,
            timeout=config.http_timeout,
            clock=self.clock,
        )

    @property
    def api_url(self) -> str:
        if self.config.test_mode:
            return "https://api.sandbox.paypal.com/v1"
        return "https://api.paypal.com/v1"

    def get_access_token(self) -> str:
        return self.tokens.get_access_token()

    # REST client

    def do_request(
        self,
        endpoint: str,
        parameters: Optional[dict[str, Any]] = None,
        method: str = "POST",
        label: Optional[str] = None,
    ) -> RestResponse:
        """Call one REST endpoint and return the status with the decoded body."""
        event = self.dispatcher.dispatch(
            HookEvents.PAYMENTS_PRO_REQUEST,
            PaymentsProRequestEvent(
                endpoint=endpoint, method=method, parameters=dict(parameters or {})
            ),
        )
        kwargs: dict[str, Any] = {
            "headers": {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.get_access_token()}",
            }
        }
        if parameters is not None or event.parameters:
            kwargs["data"] = encode_json(event.parameters)

        r = self.send(
            event.method,
            f"{self.api_url}/{event.endpoint.lstrip('/')}",
            label or endpoint,
            **kwargs,
        )
        if r.status_code == 401:
            self.tokens.invalidate()
        data = decode_json(r.content)
        log.info(
            "paypal.rest.response",
            endpoint=label or endpoint,
            status_code=r.status_code,
            state=data.get("state"),
            debug_id=data.get("debug_id"),
        )
        return RestResponse(status_code=r.status_code, data=data)

    def get_payment_details(self, remote_id: str) -> RestResponse:
        return self.do_request(
            f"payments/payment/{remote_id}", method="GET", label="payments/payment"
        )

    def _payment_details(self, payment: Payment) -> dict[str, Any]:
        response = self.get_payment_details(payment.remote_id)
        if not response.ok or not response.data.get("id"):
            raise GatewayDeclined(
                "Could not retrieve the remote payment details.",
                response.data.get("name"),
            )
        return response.data

    # Gateway operations

    def create_payment(self, payment: Payment, capture: bool = True) -> Payment:
        if payment.state not in (None, PaymentState.new):
            raise InvalidState("The provided payment is in an invalid state.")
        payment_method = payment.payment_method
        if payment_method is None:
            raise InvalidRequest("The provided payment has no payment method referenced.")
        now = self.now()
        expires_at = state_machine.aware(payment_method.expires_at)
        if expires_at is not None and now >= expires_at:
            raise GatewayDeclined("The provided payment method has expired.")

        amount = self.rounder.round(payment.amount)
        token = {"credit_card_id": payment_method.remote_id}
        if payment_method.owner_is_authenticated:
            token["payer_id"] = str(payment_method.owner_id)
        parameters = {
            "intent": "sale" if capture else "authorize",
            "payer": {
                "payment_method": "credit_card",
                "funding_instruments": [{"credit_card_token": token}],
            },
            "transactions": [
                {"amount": {"total": amount.to_wire(), "currency": amount.currency_code}}
            ],
        }

        response = self.do_request("payments/payment", parameters)
        if not response.ok or response.data.get("state") == "failed":
            log.warning(
                PayPalEvents.PAYMENT_DECLINED,
                payment_id=payment.id,
                status_code=response.status_code,
                reason=response.data.get("message"),
            )
            raise GatewayDeclined(
                "Could not charge the payment method.", response.data.get("name")
            )

        payment.amount = amount
        payment.test = self.config.test_mode
        payment.remote_id = response.data.get("id")
        payment.remote_state = response.data.get("state")
        payment.authorized_at = now
        if capture:
            state_machine.transition(payment, PaymentState.capture_completed)
            payment.captured_at = now
        else:
            state_machine.transition(payment, PaymentState.authorization)
            payment.authorization_expires_at = now + state_machine.AUTHORIZATION_WINDOW
        self.payments.save(payment)
        log.info(
            PayPalEvents.PAYMENT_CREATED,
            payment_id=payment.id,
            remote_id=payment.remote_id,
            amount=amount.to_wire(),
            state=payment.state.value,
        )
        return payment

    def capture_payment(self, payment: Payment, amount: Optional[Amount] = None) -> Payment:
        with self.locked(payment) as payment:
            now = self.now()
            state_machine.assert_capturable(payment, now)
            amount = self.rounder.round(amount or payment.amount)
            if not amount.is_positive():
                raise InvalidRequest("Capture amount must be positive.")

            authorization = related_resource(self._payment_details(payment), "authorization")
            if not authorization or not authorization.get("id"):
                raise GatewayDeclined("Could not retrieve the transaction ID.")

            response = self.do_request(
                f"payments/authorization/{authorization['id']}/capture",
                {"amount": {"currency": amount.currency_code, "total": amount.to_wire()}},
                label="payments/authorization/capture",
            )
            if response.data.get("state") != "completed":
                raise GatewayDeclined(
                    response.data.get("message") or "Could not capture the payment.",
                    response.data.get("reason_code") or response.data.get("name"),
                )

            state_machine.apply_capture(payment, amount, now)
            payment.remote_state = response.data.get("state")
            self.payments.save(payment)
        log.info(PayPalEvents.PAYMENT_CAPTURED, payment_id=payment.id, amount=amount.to_wire())
        return payment

    def void_payment(self, payment: Payment) -> Payment:
        with self.locked(payment) as payment:
            state_machine.assert_voidable(payment)
            data = self._payment_details(payment)
            if data.get("intent") != "authorize":
                raise InvalidState('Only payments in the "authorization" state can be voided.')
            authorization = related_resource(data, "authorization")
            if not authorization or not authorization.get("id"):
                raise GatewayDeclined("Could not retrieve the transaction ID.")

            response = self.do_request(
                f"payments/authorization/{authorization['id']}/void",
                label="payments/authorization/void",
            )
            if not response.ok or response.data.get("state") != "voided":
                raise GatewayDeclined(
                    response.data.get("message") or "Could not void the payment.",
                    response.data.get("name"),
                )

            state_machine.transition(payment, PaymentState.authorization_voided)
            payment.remote_state = "voided"
            self.payments.save(payment)
        log.info(PayPalEvents.PAYMENT_VOIDED, payment_id=payment.id)
        return payment

    def refund_payment(self, payment: Payment, amount: Optional[Amount] = None) -> Payment:
        with self.locked(payment) as payment:
            plan = state_machine.plan_refund(
                payment, self.rounder.round(amount) if amount else None
            )
            data = self._payment_details(payment)
            if data.get("intent") == "sale":
                kind = "sale"
            else:
                kind = "capture"
            resource = related_resource(data, kind)
            if not resource or not resource.get("id"):
                raise GatewayDeclined(f"Could not find the {kind} to refund.")

            response = self.do_request(
                f"payments/{kind}/{resource['id']}/refund",
                {"amount": {"total": plan.amount.to_wire(), "currency": plan.amount.currency_code}},
                label=f"payments/{kind}/refund",
            )
            if response.data.get("state") != "completed":
                raise GatewayDeclined(
                    response.data.get("message") or "Could not refund the payment.",
                    response.data.get("name"),
                )

            state_machine.apply_refund(payment, plan, response.data.get("id"))
            self.payments.save(payment)
        log.info(
            PayPalEvents.PAYMENT_REFUNDED,
            payment_id=payment.id,
            amount=plan.amount.to_wire(),
            state=payment.state.value,
        )
        return payment

    def create_payment_method(
        self,
        payment_method: PaymentMethod,
        payment_details: dict[str, Any],
        billing_address: Address,
    ) -> PaymentMethod:
        """Vault a card at PayPal and keep only what is safe to store locally.

        ``payment_details`` holds ``number``, ``type``, ``security_code`` and
        ``expiration`` (``{"month": .., "year": ..}``).
        """
        expiration = payment_details["expiration"]
        parameters = {
            "number": payment_details["number"],
            "type": payment_details["type"],
            "expire_month": expiration["month"],
            "expire_year": expiration["year"],
            "cvv2": payment_details["security_code"],
            "first_name": billing_address.given_name,
            "last_name": billing_address.family_name,
            "billing_address": {
                "line1": billing_address.address_line1,
                "city": billing_address.locality,
                "country_code": billing_address.country_code,
                "postal_code": billing_address.postal_code,
                "state": billing_address.administrative_area,
            },
        }
        if payment_method.owner_is_authenticated:
            parameters["payer_id"] = str(payment_method.owner_id)

        response = self.do_request("vault/credit-cards", parameters)
        if response.status_code not in (200, 201) or not response.data.get("id"):
            raise GatewayDeclined(
                response.data.get("message") or "Could not vault the card.",
                response.data.get("name"),
            )

        payment_method.payment_gateway = self.gateway_id
        payment_method.card_type = payment_details["type"]
        payment_method.card_number = str(payment_details["number"])[-4:]
        payment_method.card_exp_month = int(expiration["month"])
        payment_method.card_exp_year = int(expiration["year"])
        payment_method.expires_at = card_expires_at(
            payment_method.card_exp_month, payment_method.card_exp_year
        )
        payment_method.remote_id = response.data["id"]

        self.dispatcher.dispatch(
            HookEvents.POST_CREATE_PAYMENT_METHOD,
            PostCreatePaymentMethodEvent(
                payment_method=payment_method, payment_details=payment_details
            ),
        )
        self.payment_methods.save(payment_method)
        log.info(
            PayPalEvents.PAYMENT_METHOD_CREATED,
            payment_method_id=payment_method.id,
            remote_id=payment_method.remote_id,
            card_type=payment_method.card_type,
        )
        return payment_method

    def delete_payment_method(self, payment_method: PaymentMethod) -> None:
        response = self.do_request(
            f"vault/credit-cards/{payment_method.remote_id}",
            method="DELETE",
            label="vault/credit-cards/delete",
        )
        # Already gone at PayPal.
        if not response.ok and response.status_code != 404:
            raise GatewayDeclined(
                response.data.get("message") or "Could not delete the payment method.",
                response.data.get("name"),
            )
        self.payment_methods.delete(payment_method)
        log.info(
            PayPalEvents.PAYMENT_METHOD_DELETED,
            payment_method_id=payment_method.id,
            remote_id=payment_method.remote_id,
        )
