"""
Extension hooks for the PayPal gateways.

Listeners subscribe by event name and receive a mutable event object, which
lets storefront code add or override outgoing request fields without
touching the gateways themselves.
"""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from payments.codec import NvpRequest

log = structlog.get_logger(__name__)


class PayPalEvents:
    """Event names dispatched by the gateways."""

    EXPRESS_CHECKOUT_REQUEST = "paypal.express_checkout_request"
    PAYMENTS_PRO_REQUEST = "paypal.payments_pro_request"
    POST_CREATE_PAYMENT_METHOD = "paypal.post_create_payment_method"


@dataclass
class ExpressCheckoutRequestEvent:
    request: NvpRequest
    order: Optional[Any] = None
    payment: Optional[Any] = None


@dataclass
class PaymentsProRequestEvent:
    endpoint: str
    method: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class PostCreatePaymentMethodEvent:
    """Fired after vaulting a card, before the payment method is saved."""

    payment_method: Any
    payment_details: dict[str, Any]


Listener = Callable[[Any], None]


class EventDispatcher:
    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event_name: str, listener: Listener) -> None:
        self._listeners[event_name].append(listener)

    def dispatch(self, event_name: str, event: Any) -> Any:
        for listener in self._listeners.get(event_name, []):
            log.debug("paypal.event.dispatch", event_name=event_name, listener=repr(listener))
            listener(event)
        return event
