"""Payment state machine shared by every PayPal gateway and the IPN reconciler."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Optional

import structlog

from core.logging import PayPalEvents
from core.metrics import payment_transitions
from core.money import Amount
from db.models import Payment, PaymentState
from payments.errors import InvalidRequest, InvalidState

log = structlog.get_logger(__name__)

# PayPal honours an authorization for 29 days.
AUTHORIZATION_WINDOW = timedelta(days=29)

ALLOWED_TRANSITIONS: dict[PaymentState, set[PaymentState]] = {
    PaymentState.new: {PaymentState.authorization, PaymentState.capture_completed},
    PaymentState.authorization: {
        PaymentState.authorization_voided,
        PaymentState.authorization_expired,
        PaymentState.capture_completed,
    },
    PaymentState.capture_completed: {
        PaymentState.capture_partially_refunded,
        PaymentState.capture_refunded,
    },
    PaymentState.capture_partially_refunded: {
        PaymentState.capture_partially_refunded,
        PaymentState.capture_refunded,
    },
    PaymentState.authorization_voided: set(),
    PaymentState.authorization_expired: set(),
    PaymentState.capture_refunded: set(),
}

REFUNDABLE_STATES = {
    PaymentState.capture_completed,
    PaymentState.capture_partially_refunded,
}

REMOTE_STATUS_MAP: dict[str, PaymentState] = {
    "Voided": PaymentState.authorization_voided,
    "Pending": PaymentState.authorization,
    "Completed": PaymentState.capture_completed,
    "Processed": PaymentState.capture_completed,
    "Refunded": PaymentState.capture_refunded,
    "Partially-Refunded": PaymentState.capture_partially_refunded,
    "Expired": PaymentState.authorization_expired,
}


def aware(moment: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as SQLite hands them back) as UTC."""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def can_transition(current: PaymentState, new: PaymentState) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current: PaymentState, new: PaymentState) -> None:
    """Raise when a transition is not allowed by the state machine."""
    if not can_transition(current, new):
        raise InvalidState(f"Invalid transition: {current.value} -> {new.value}")


def transition(payment: Payment, new: PaymentState) -> bool:
    """Move ``payment`` to ``new``. Returns False when it is already there."""
    current = payment.state or PaymentState.new
    if current == new and new not in ALLOWED_TRANSITIONS[current]:
        return False
    validate_transition(current, new)
    payment.state = new
    payment_transitions.labels(state=new.value).inc()
    log.info(
        PayPalEvents.PAYMENT_TRANSITION,
        payment_id=payment.id,
        from_state=current.value,
        to_state=new.value,
    )
    return current != new


def map_remote_status(status: Optional[str]) -> Optional[PaymentState]:
    """Map an Express Checkout / IPN status string to a local state.

    Unrecognised strings return None and are logged; they never count as
    success.
    """
    state = REMOTE_STATUS_MAP.get(status or "")
    if state is None:
        log.warning(PayPalEvents.STATUS_UNHANDLED, remote_status=status)
    return state


def authorization_expires_at(payment: Payment) -> Optional[datetime]:
    if payment.authorization_expires_at is not None:
        return aware(payment.authorization_expires_at)
    if payment.authorized_at is not None:
        return aware(payment.authorized_at) + AUTHORIZATION_WINDOW
    return None


def assert_capturable(payment: Payment, now: datetime) -> None:
    if payment.state != PaymentState.authorization:
        raise InvalidState(
            'Only payments in the "authorization" state can be captured.'
        )
    expires = authorization_expires_at(payment)
    if expires is not None and expires < now:
        raise InvalidState("Authorizations are guaranteed for up to 29 days.")


def assert_voidable(payment: Payment) -> None:
    if payment.state != PaymentState.authorization:
        raise InvalidState('Only payments in the "authorization" state can be voided.')


@dataclass(frozen=True)
class RefundPlan:
    amount: Amount
    new_refunded_amount: Amount
    new_state: PaymentState

    @property
    def refund_type(self) -> str:
        """NVP REFUNDTYPE: Full only when one refund covers the whole payment."""
        if self.new_state == PaymentState.capture_refunded and self.amount == (
            self.new_refunded_amount
        ):
            return "Full"
        return "Partial"


def plan_refund(payment: Payment, amount: Optional[Amount] = None) -> RefundPlan:
    """Check refund preconditions and work out the resulting state.

    ``amount`` defaults to the remaining balance.
    """
    if payment.state not in REFUNDABLE_STATES:
        raise InvalidState(
            'Only payments in the "capture_completed" and '
            '"capture_partially_refunded" states can be refunded.'
        )
    balance = payment.balance
    amount = amount or balance
    if amount.currency_code != balance.currency_code:
        raise InvalidRequest(
            f"Refund currency {amount.currency_code} does not match {balance.currency_code}."
        )
    if not amount.is_positive():
        raise InvalidRequest("Refund amount must be positive.")
    if amount > balance:
        raise InvalidRequest(
            f"Can't refund more than {balance.to_wire()} {balance.currency_code}."
        )

    new_refunded = payment.refunded_amount + amount
    if new_refunded < payment.amount:
        new_state = PaymentState.capture_partially_refunded
    else:
        new_state = PaymentState.capture_refunded
    return RefundPlan(amount=amount, new_refunded_amount=new_refunded, new_state=new_state)


def apply_refund(payment: Payment, plan: RefundPlan, remote_id: Optional[str] = None) -> None:
    transition(payment, plan.new_state)
    payment.refunded_amount = plan.new_refunded_amount
    payment.record_refund(remote_id)


def apply_capture(payment: Payment, amount: Amount, captured_at: datetime) -> None:
    transition(payment, PaymentState.capture_completed)
    payment.amount = amount
    payment.captured_at = captured_at


# State PayPal reported on return -> the path a new payment walks to reach it.
SETTLEMENT_PATHS: dict[PaymentState, tuple[PaymentState, ...]] = {
    PaymentState.authorization: (PaymentState.authorization,),
    PaymentState.authorization_voided: (
        PaymentState.authorization,
        PaymentState.authorization_voided,
    ),
    PaymentState.authorization_expired: (
        PaymentState.authorization,
        PaymentState.authorization_expired,
    ),
    PaymentState.capture_completed: (PaymentState.capture_completed,),
    PaymentState.capture_partially_refunded: (
        PaymentState.capture_completed,
        PaymentState.capture_partially_refunded,
    ),
    PaymentState.capture_refunded: (
        PaymentState.capture_completed,
        PaymentState.capture_refunded,
    ),
}


def settle_new_payment(payment: Payment, status: Optional[str], now: datetime) -> None:
    """Move a freshly created payment to the state PayPal reported.

    Every recognised status lands in its mapped state. Unrecognised strings
    leave the payment an authorization and are logged.
    """
    target = map_remote_status(status) or PaymentState.authorization
    for state in SETTLEMENT_PATHS[target]:
        transition(payment, state)

    if PaymentState.authorization in SETTLEMENT_PATHS[target]:
        payment.authorization_expires_at = now + AUTHORIZATION_WINDOW
    else:
        payment.captured_at = now

    if target == PaymentState.capture_refunded:
        payment.refunded_amount = payment.amount
    elif target == PaymentState.capture_partially_refunded:
        # The return response carries no refunded total; IPN fills it in.
        log.warning(
            PayPalEvents.STATUS_UNHANDLED,
            payment_id=payment.id,
            remote_status=status,
            reason="refunded amount unknown",
        )
