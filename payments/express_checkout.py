"""
PayPal Express Checkout gateway (NVP API)

This module handles the Express Checkout lifecycle:
- SetExpressCheckout with the full item/tax/shipping breakdown
- Return handling: GetExpressCheckoutDetails + DoExpressCheckoutPayment
- DoCapture, DoVoid and RefundTransaction against existing payments

The NVP client methods return PayPal's decoded response verbatim; the
gateway methods check ACK and drive the payment state machine.
"""

from typing import Literal, Optional, Union

import structlog
from pydantic import BaseModel

from core.logging import PayPalEvents
from core.money import Amount, Rounder
from db.models import Payment, PaymentState
from payments import state_machine
from payments.breakdown import build_breakdown, shipping_fields
from payments.codec import NvpRequest, decode_nvp, encode_nvp
from payments.errors import GatewayDeclined, InvalidRequest
from payments.events import ExpressCheckoutRequestEvent, PayPalEvents as HookEvents
from payments.gateway import GatewayConfig, PayPalGateway
from payments.orders import Order
from payments.repository import OrderRepository

log = structlog.get_logger(__name__)

NVP_VERSION = "124.0"
SESSION_KEY = "paypal_express_checkout"
FAILURE_ACKS = {"Failure", "FailureWithWarning"}
BILLING_TYPE = "MerchantInitiatedBillingSingleAgreement"


class ExpressCheckoutConfig(GatewayConfig):
    api_username: str
    api_password: str
    signature: str
    solution_type: Literal["Mark", "SoleLogin", "SoleBilling"] = "Mark"
    reference_transactions: bool = False
    ba_desc: str = ""
    # Whether a shipping extension is present on the storefront.
    shipping_enabled: bool = False
    send_shipping_address: bool = False


class ExpressCheckoutSession(BaseModel):
    """Express Checkout data kept on the order between redirects."""

    flow: str = "ec"
    token: str
    payerid: Union[str, bool] = False
    capture: bool = True

    @classmethod
    def from_order(cls, order: Order) -> Optional["ExpressCheckoutSession"]:
        data = order.data.get(SESSION_KEY)
        if not data or not data.get("token"):
            return None
        return cls(**data)

    def store(self, order: Order) -> None:
        order.data[SESSION_KEY] = self.model_dump()


def check_ack(
    response: dict[str, str],
    message_key: str = "L_LONGMESSAGE0",
    code_key: str = "L_ERRORCODE0",
) -> dict[str, str]:
    """Raise GatewayDeclined when PayPal's ACK reports a failure."""
    if response.get("ACK") in FAILURE_ACKS:
        raise GatewayDeclined(
            response.get(message_key) or response.get("L_LONGMESSAGE0") or "PayPal request failed.",
            response.get(code_key) or response.get("L_ERRORCODE0"),
        )
    return response


class ExpressCheckout(PayPalGateway):
    """Provides the PayPal Express Checkout payment gateway."""

    protocol = "nvp"

    def __init__(
        self,
        config: ExpressCheckoutConfig,
        payments,
        orders: OrderRepository,
        rounder: Optional[Rounder] = None,
        **kwargs,
    ):
        super().__init__(config, payments, **kwargs)
        self.orders = orders
        self.rounder = rounder or Rounder()

    @property
    def api_url(self) -> str:
        if self.config.test_mode:
            return "https://api-3t.sandbox.paypal.com/nvp"
        return "https://api-3t.paypal.com/nvp"

    def get_redirect_url(self, token: Optional[str] = None) -> str:
        if self.config.test_mode:
            url = "https://www.sandbox.paypal.com/checkoutnow"
        else:
            url = "https://www.paypal.com/checkoutnow"
        return f"{url}?token={token}" if token else url

    # NVP client

    def do_request(
        self,
        request: NvpRequest,
        order: Optional[Order] = None,
        payment: Optional[Payment] = None,
    ) -> dict[str, str]:
        """Send one NVP call and return PayPal's decoded response as-is."""
        for key, value in (
            ("USER", self.config.api_username),
            ("PWD", self.config.api_password),
            ("SIGNATURE", self.config.signature),
            ("VERSION", NVP_VERSION),
        ):
            request.fields.setdefault(key, value)

        self.dispatcher.dispatch(
            HookEvents.EXPRESS_CHECKOUT_REQUEST,
            ExpressCheckoutRequestEvent(request=request, order=order, payment=payment),
        )

        r = self.send(
            "POST",
            self.api_url,
            request.method,
            data=encode_nvp(request),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        response = decode_nvp(r.content)
        log.info(
            "paypal.nvp.response",
            method=request.method,
            ack=response.get("ACK"),
            correlation_id=response.get("CORRELATIONID"),
        )
        return response

    def set_express_checkout(
        self,
        order: Order,
        return_url: str,
        cancel_url: str,
        capture: bool = True,
    ) -> dict[str, str]:
        breakdown = build_breakdown(order, self.rounder)
        request = NvpRequest(
            method="SetExpressCheckout",
            fields={
                # Default the landing page to the Mark solution.
                "SOLUTIONTYPE": "Mark",
                "LANDINGPAGE": "Login",
                "ALLOWNOTE": "0",
                "PAYMENTREQUEST_0_PAYMENTACTION": "Sale" if capture else "Authorization",
                **breakdown.nvp_fields(),
                "PAYMENTREQUEST_0_INVNUM": order.number,
                "RETURNURL": return_url,
                "CANCELURL": cancel_url,
            },
            line_items=breakdown.line_items,
        )

        session = ExpressCheckoutSession.from_order(order)
        if session:
            request.fields["TOKEN"] = session.token

        if self.config.reference_transactions and self.config.ba_desc:
            request.fields["BILLINGTYPE"] = BILLING_TYPE
            request.fields["L_BILLINGTYPE0"] = BILLING_TYPE
            request.fields["L_BILLINGAGREEMENTDESCRIPTION0"] = self.config.ba_desc

        if self.config.solution_type != "Mark":
            request.fields["SOLUTIONTYPE"] = "Sole"
            if self.config.solution_type == "SoleBilling":
                request.fields["LANDINGPAGE"] = "Billing"

        request.fields.update(
            shipping_fields(
                order,
                shipping_enabled=self.config.shipping_enabled,
                send_address=self.config.send_shipping_address,
            )
        )
        return self.do_request(request, order=order)

    def get_express_checkout_details(self, order: Order) -> dict[str, str]:
        session = self._session(order)
        request = NvpRequest(
            method="GetExpressCheckoutDetails", fields={"TOKEN": session.token}
        )
        return self.do_request(request, order=order)

    def do_express_checkout_payment(self, order: Order) -> dict[str, str]:
        session = self._session(order)
        if not isinstance(session.payerid, str) or not session.payerid:
            raise InvalidRequest("The buyer has not approved the payment on PayPal.")
        amount = self.rounder.round(order.total_price)
        request = NvpRequest(
            method="DoExpressCheckoutPayment",
            fields={
                "TOKEN": session.token,
                "PAYMENTREQUEST_0_AMT": amount.to_wire(),
                "PAYMENTREQUEST_0_CURRENCYCODE": amount.currency_code,
                "PAYMENTREQUEST_0_INVNUM": order.number,
                "PAYERID": session.payerid,
                "PAYMENTREQUEST_0_PAYMENTACTION": "Sale" if session.capture else "Authorization",
            },
        )
        return self.do_request(request, order=order)

    def do_capture(self, payment: Payment, amount: Amount) -> dict[str, str]:
        request = NvpRequest(
            method="DoCapture",
            fields={
                "AUTHORIZATIONID": payment.remote_id,
                "AMT": amount.to_wire(),
                "CURRENCYCODE": amount.currency_code,
                "INVNUM": str(payment.order_id),
                "COMPLETETYPE": "Complete",
            },
        )
        return self.do_request(request, payment=payment)

    def do_void(self, payment: Payment) -> dict[str, str]:
        request = NvpRequest(method="DoVoid", fields={"AUTHORIZATIONID": payment.remote_id})
        return self.do_request(request, payment=payment)

    def refund_transaction(
        self, payment: Payment, amount: Amount, refund_type: str
    ) -> dict[str, str]:
        fields = {
            "TRANSACTIONID": payment.remote_id,
            "REFUNDTYPE": refund_type,
            "CURRENCYCODE": amount.currency_code,
        }
        # PayPal refuses AMT on full refunds.
        if refund_type == "Partial":
            fields["AMT"] = amount.to_wire()
        request = NvpRequest(method="RefundTransaction", fields=fields)
        return self.do_request(request, payment=payment)

    def get_balance(self) -> dict[str, str]:
        return self.do_request(NvpRequest(method="GetBalance"))

    def validate_credentials(self) -> bool:
        """Check the configured API credentials with a GetBalance call."""
        return self.get_balance().get("ACK") in {"Success", "SuccessWithWarning"}

    # Gateway operations

    def start_checkout(
        self,
        order: Order,
        return_url: str,
        cancel_url: str,
        capture: bool = True,
    ) -> str:
        """Open an Express Checkout session and return the buyer's redirect URL."""
        response = self.set_express_checkout(order, return_url, cancel_url, capture)
        token = response.get("TOKEN")
        if not token:
            check_ack(response)
            raise GatewayDeclined("There was an error bringing you to PayPal.")

        ExpressCheckoutSession(token=token, payerid=False, capture=capture).store(order)
        self.orders.save(order)
        log.info(
            PayPalEvents.CHECKOUT_STARTED,
            order_id=order.id,
            amount=order.total_price.to_wire(),
            capture=capture,
        )
        return self.get_redirect_url(token)

    def on_return(self, order: Order) -> Payment:
        """Finalize the payment once the buyer comes back from PayPal."""
        session = self._session(order)

        details = check_ack(
            self.get_express_checkout_details(order),
            message_key="PAYMENTREQUESTINFO_0_LONGMESSAGE",
            code_key="PAYMENTREQUESTINFO_0_ERRORCODE",
        )
        payerid = details.get("PAYERID")
        if not payerid:
            raise InvalidRequest("The buyer has not approved the payment on PayPal.")
        session.payerid = payerid
        session.store(order)
        if not order.email and details.get("EMAIL"):
            order.email = details["EMAIL"]
        self.orders.save(order)

        response = check_ack(self.do_express_checkout_payment(order))
        status = response.get("PAYMENTINFO_0_PAYMENTSTATUS")
        if status == "Failed":
            raise GatewayDeclined(
                response.get("PAYMENTINFO_0_LONGMESSAGE") or "Payment failed.",
                response.get("PAYMENTINFO_0_ERRORCODE"),
            )

        now = self.now()
        payment = self.payments.create(
            order_id=order.id,
            payment_gateway=self.gateway_id,
            amount=self.rounder.round(order.total_price),
            test=self.config.test_mode,
            remote_id=response.get("PAYMENTINFO_0_TRANSACTIONID"),
            remote_state=status,
            authorized_at=now,
        )
        state_machine.settle_new_payment(payment, status, now)
        self.payments.save(payment)
        log.info(
            PayPalEvents.CHECKOUT_RETURNED,
            order_id=order.id,
            payment_id=payment.id,
            remote_id=payment.remote_id,
            state=payment.state.value,
        )
        return payment

    def capture_payment(self, payment: Payment, amount: Optional[Amount] = None) -> Payment:
        with self.locked(payment) as payment:
            state_machine.assert_capturable(payment, self.now())
            amount = self.rounder.round(amount or payment.amount)
            if not amount.is_positive():
                raise InvalidRequest("Capture amount must be positive.")

            response = check_ack(self.do_capture(payment, amount))

            state_machine.apply_capture(payment, amount, self.now())
            payment.remote_id = response.get("TRANSACTIONID") or payment.remote_id
            payment.remote_state = response.get("PAYMENTSTATUS") or "Completed"
            self.payments.save(payment)
        log.info(
            PayPalEvents.PAYMENT_CAPTURED,
            payment_id=payment.id,
            amount=amount.to_wire(),
            remote_id=payment.remote_id,
        )
        return payment

    def void_payment(self, payment: Payment) -> Payment:
        with self.locked(payment) as payment:
            state_machine.assert_voidable(payment)
            check_ack(self.do_void(payment))
            state_machine.transition(payment, PaymentState.authorization_voided)
            payment.remote_state = "Voided"
            self.payments.save(payment)
        log.info(PayPalEvents.PAYMENT_VOIDED, payment_id=payment.id)
        return payment

    def refund_payment(self, payment: Payment, amount: Optional[Amount] = None) -> Payment:
        with self.locked(payment) as payment:
            plan = state_machine.plan_refund(
                payment, self.rounder.round(amount) if amount else None
            )
            response = check_ack(
                self.refund_transaction(payment, plan.amount, plan.refund_type)
            )
            state_machine.apply_refund(payment, plan, response.get("REFUNDTRANSACTIONID"))
            self.payments.save(payment)
        log.info(
            PayPalEvents.PAYMENT_REFUNDED,
            payment_id=payment.id,
            amount=plan.amount.to_wire(),
            refund_type=plan.refund_type,
            state=payment.state.value,
        )
        return payment

    def _session(self, order: Order) -> ExpressCheckoutSession:
        session = ExpressCheckoutSession.from_order(order)
        if session is None:
            raise InvalidRequest(
                "Token data missing for this PayPal Express Checkout transaction."
            )
        return session

