"""
Instant Payment Notification (IPN) reconciliation

PayPal POSTs a notification whenever a transaction changes remotely. Each
notification is authenticated by echoing it back to PayPal with
``cmd=_notify-validate``; only a literal ``VERIFIED`` answer is trusted. The
notification is then reconciled against the local payment found by remote
id, under the same per-payment lock the gateways use, so a notification
racing the synchronous capture/refund path is applied at most once.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

import requests
import structlog

from core.locks import KeyedLock
from core.logging import PayPalEvents
from core.metrics import ipn_notifications, paypal_requests
from core.money import Amount, Rounder
from db.models import Payment, PaymentState
from payments import state_machine
from payments.codec import decode_nvp
from payments.errors import InvalidRequest, InvalidState, ValidationFailed
from payments.gateway import Clock, utcnow
from payments.repository import PaymentRepository

log = structlog.get_logger(__name__)

SANDBOX_VALIDATION_URL = "https://www.sandbox.paypal.com/cgi-bin/webscr"
LIVE_VALIDATION_URL = "https://www.paypal.com/cgi-bin/webscr"

RECOGNISED_STATUSES = {
    "Voided",
    "Pending",
    "Completed",
    "Processed",
    "Refunded",
    "Partially-Refunded",
    "Expired",
    "Failed",
}
AUTHORIZATION_STATUSES = {"Voided", "Pending", "Completed"}


class IpnVerdict(str, Enum):
    processed = "processed"
    ignored = "ignored"
    rejected = "rejected"


@dataclass(frozen=True)
class IpnResult:
    verdict: IpnVerdict
    reason: Optional[str] = None
    payment_id: Optional[int] = None


def validation_url(data: dict[str, str]) -> str:
    if data.get("test_ipn") == "1":
        return SANDBOX_VALIDATION_URL
    return LIVE_VALIDATION_URL


def parse_gross(data: dict[str, str], default_currency: str) -> Amount:
    """``abs(mc_gross)`` in ``mc_currency``; refunds arrive negative."""
    try:
        number = Decimal(data["mc_gross"])
    except (KeyError, InvalidOperation) as e:
        raise InvalidRequest(f"Malformed mc_gross: {data.get('mc_gross')!r}") from e
    return abs(Amount(number, data.get("mc_currency") or default_currency))


class IpnReconciler:
    def __init__(
        self,
        payments: PaymentRepository,
        http: Optional[requests.Session] = None,
        locks: Optional[KeyedLock] = None,
        timeout: float = 10.0,
        rounder: Optional[Rounder] = None,
        clock: Optional[Clock] = None,
    ):
        self.payments = payments
        self.http = http or requests.Session()
        self.locks = locks or KeyedLock()
        self.timeout = timeout
        self.rounder = rounder or Rounder()
        self.clock = clock or utcnow

    def validate(self, raw_body: bytes, data: dict[str, str]) -> None:
        """Echo the notification to PayPal; raise unless it answers VERIFIED."""
        url = validation_url(data)
        paypal_requests.labels(protocol="ipn", method="_notify-validate").inc()
        try:
            r = self.http.request(
                "POST",
                url,
                data=b"cmd=_notify-validate&" + raw_body,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ValidationFailed(f"IPN validation request failed: {e}") from e

        answer = r.text.strip()
        if answer != "VERIFIED":
            raise ValidationFailed(f"PayPal answered {answer[:32]!r}")

    def process(self, raw_body: Union[bytes, str]) -> IpnResult:
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        data = decode_nvp(raw_body)
        if not data:
            log.warning(PayPalEvents.IPN_INVALID, reason="empty_body")
            return self._result(IpnVerdict.ignored, "empty_body")

        log.info(
            PayPalEvents.IPN_RECEIVED,
            txn_id=data.get("txn_id"),
            payment_status=data.get("payment_status"),
            test_ipn=data.get("test_ipn"),
        )

        try:
            self.validate(raw_body, data)
        except ValidationFailed as e:
            log.warning(PayPalEvents.IPN_INVALID, reason=str(e), txn_id=data.get("txn_id"))
            return self._result(IpnVerdict.ignored, "validation_failed")

        txn_id = data.get("txn_id")
        if not txn_id:
            return self._result(IpnVerdict.ignored, "no_transaction_id")

        status = data.get("payment_status")
        if status not in RECOGNISED_STATUSES:
            log.error(
                PayPalEvents.IPN_REJECTED,
                txn_id=txn_id,
                payment_status=status,
            )
            return self._result(IpnVerdict.rejected, "unexpected_payment_status")

        if status in AUTHORIZATION_STATUSES and data.get("auth_id"):
            return self._reconcile_authorization(data, status)
        if status == "Refunded":
            return self._reconcile_refund(data)
        if status == "Failed":
            # TODO: reconcile failed notifications once the desired local state is decided.
            log.warning(PayPalEvents.STATUS_UNHANDLED, txn_id=txn_id, remote_status=status)
            return self._result(IpnVerdict.ignored, "failed_not_reconciled")

        return self._result(IpnVerdict.ignored, "handled_elsewhere")

    def _reconcile_authorization(self, data: dict[str, str], status: str) -> IpnResult:
        found = self.payments.load_by_remote_id(data["auth_id"])
        if found is None:
            return self._result(IpnVerdict.ignored, "unknown_payment")

        with self.locks.hold(found.id):
            payment = self.payments.load(found.id) or found
            target = state_machine.map_remote_status(status)
            captured = None
            if target == PaymentState.capture_completed and data.get("mc_gross"):
                try:
                    captured = self.rounder.round(parse_gross(data, payment.currency_code))
                except InvalidRequest as e:
                    log.error(PayPalEvents.IPN_REJECTED, txn_id=data["txn_id"], reason=str(e))
                    return self._result(IpnVerdict.rejected, "malformed_amount", payment.id)
            if payment.state == target:
                return self._result(IpnVerdict.ignored, "already_applied", payment.id)
            try:
                state_machine.transition(payment, target)
            except InvalidState:
                return self._result(IpnVerdict.ignored, "illegal_transition", payment.id)

            if target == PaymentState.capture_completed:
                payment.captured_at = self.clock()
                payment.remote_id = data["txn_id"]
                if captured is not None:
                    payment.amount = captured
            self._stamp(payment, data)
            self.payments.save(payment)
        return self._result(IpnVerdict.processed, status.lower(), payment.id)

    def _reconcile_refund(self, data: dict[str, str]) -> IpnResult:
        found = self.payments.load_by_remote_id(data.get("parent_txn_id") or "")
        if found is None:
            return self._result(IpnVerdict.ignored, "unknown_payment")

        with self.locks.hold(found.id):
            payment = self.payments.load(found.id) or found
            if payment.state == PaymentState.capture_refunded:
                return self._result(IpnVerdict.ignored, "already_refunded", payment.id)
            if payment.has_refund(data["txn_id"]):
                return self._result(IpnVerdict.ignored, "duplicate_refund", payment.id)

            try:
                amount = self.rounder.round(parse_gross(data, payment.currency_code))
            except InvalidRequest as e:
                log.error(PayPalEvents.IPN_REJECTED, txn_id=data["txn_id"], reason=str(e))
                return self._result(IpnVerdict.rejected, "malformed_amount", payment.id)
            if amount.currency_code != payment.currency_code:
                return self._result(IpnVerdict.ignored, "currency_mismatch", payment.id)

            try:
                plan = state_machine.plan_refund(payment, amount)
            except InvalidState:
                return self._result(IpnVerdict.ignored, "illegal_transition", payment.id)
            except InvalidRequest:
                return self._result(IpnVerdict.ignored, "refund_exceeds_balance", payment.id)

            state_machine.apply_refund(payment, plan, data["txn_id"])
            self._stamp(payment, data)
            self.payments.save(payment)
        return self._result(IpnVerdict.processed, "refunded", payment.id)

    def _stamp(self, payment: Payment, data: dict[str, str]) -> None:
        payment.remote_state = data.get("payment_status")

    def _result(
        self, verdict: IpnVerdict, reason: str, payment_id: Optional[int] = None
    ) -> IpnResult:
        ipn_notifications.labels(verdict=verdict.value).inc()
        if verdict == IpnVerdict.processed:
            log.info(PayPalEvents.IPN_PROCESSED, reason=reason, payment_id=payment_id)
        elif verdict == IpnVerdict.ignored:
            log.info(PayPalEvents.IPN_IGNORED, reason=reason, payment_id=payment_id)
        return IpnResult(verdict=verdict, reason=reason, payment_id=payment_id)
