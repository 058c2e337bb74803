"""Repository, hook dispatcher and per-payment locking tests."""

import threading
import time

from sqlalchemy.orm import sessionmaker

from core.locks import KeyedLock
from core.money import Amount
from db.models import PaymentState
from db.repository import SqlPaymentRepository
from payments.codec import NvpRequest
from payments.events import EventDispatcher, ExpressCheckoutRequestEvent, PayPalEvents


def test_load_by_remote_id(make_payment, payments):
    payment = make_payment(PaymentState.authorization, remote_id="AUTH-77")
    assert payments.load_by_remote_id("AUTH-77").id == payment.id
    assert payments.load_by_remote_id("missing") is None
    assert payments.load_by_remote_id("") is None


def test_load_sees_writes_from_another_session(make_payment, payments, test_db_engine):
    payment = make_payment(PaymentState.capture_completed)
    other = SqlPaymentRepository(sessionmaker(bind=test_db_engine)())

    copy = other.load(payment.id)
    copy.state = PaymentState.capture_partially_refunded
    copy.refunded_amount = Amount("10.00", "USD")
    other.save(copy)

    fresh = payments.load(payment.id)
    assert fresh.state == PaymentState.capture_partially_refunded
    assert fresh.balance == Amount("90.00", "USD")


def test_refund_ids_persist(make_payment, payments):
    payment = make_payment(PaymentState.capture_completed)
    payment.record_refund("REF-1")
    payment.record_refund("REF-1")
    payment.record_refund(None)
    payments.save(payment)

    assert payments.load(payment.id).refund_remote_ids == ["REF-1"]


def test_dispatcher_passes_the_mutable_event():
    dispatcher = EventDispatcher()

    def add_custom(event):
        event.request.fields["CUSTOM"] = "order-7"

    dispatcher.subscribe(PayPalEvents.EXPRESS_CHECKOUT_REQUEST, add_custom)
    event = dispatcher.dispatch(
        PayPalEvents.EXPRESS_CHECKOUT_REQUEST,
        ExpressCheckoutRequestEvent(NvpRequest("DoVoid")),
    )

    assert event.request.fields == {"CUSTOM": "order-7"}


def test_dispatch_without_listeners_returns_event():
    event = ExpressCheckoutRequestEvent(NvpRequest("GetBalance"))
    assert EventDispatcher().dispatch("paypal.unknown", event) is event


def test_keyed_lock_serialises_one_key():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def worker():
        with locks.hold(1):
            if inside:
                overlaps.append(1)
            inside.append(1)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert len(locks) == 0


def test_keyed_lock_is_reentrant_and_per_key():
    locks = KeyedLock()
    with locks.hold(1):
        with locks.hold(1):
            assert len(locks) == 1
        with locks.hold(2):
            assert len(locks) == 2
    assert len(locks) == 0
