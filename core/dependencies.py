from typing import Optional

import requests

from core.locks import KeyedLock
from core.settings import Settings
from db.repository import SqlPaymentMethodRepository, SqlPaymentRepository
from payments.express_checkout import ExpressCheckout
from payments.ipn import IpnReconciler
from payments.payments_pro import PaymentsPro
from payments.standard import PaymentsStandard

# Settings singleton
_settings = None

# One lock registry for every gateway and the IPN endpoint in this process
_locks = KeyedLock()

# Pooled connections to PayPal, reused across requests
_http = requests.Session()


def get_settings() -> Settings:
    """Dependency that provides application settings."""
    assert (
        _settings is not None
    ), "Settings not initialized. Make sure startup() was called."
    return _settings


def init_settings():
    """Initialize settings singleton."""
    global _settings
    _settings = Settings()


def clear_settings():
    """Clear settings singleton."""
    global _settings
    _settings = None


def get_locks() -> KeyedLock:
    return _locks


def get_http() -> requests.Session:
    return _http


def close_http():
    """Release pooled PayPal connections on shutdown."""
    _http.close()


def build_ipn_reconciler(
    settings: Settings, db, http: Optional[requests.Session] = None
):
    """IPN reconciler bound to one request's database session."""
    return IpnReconciler(
        SqlPaymentRepository(db),
        http=http or _http,
        locks=_locks,
        timeout=settings.PAYPAL_IPN_TIMEOUT,
    )


def build_express_checkout(settings: Settings, db, orders, **kwargs):
    kwargs.setdefault("locks", _locks)
    kwargs.setdefault("http", _http)
    return ExpressCheckout(
        settings.express_checkout_config(), SqlPaymentRepository(db), orders, **kwargs
    )


def build_payments_pro(settings: Settings, db, **kwargs):
    kwargs.setdefault("locks", _locks)
    kwargs.setdefault("http", _http)
    return PaymentsPro(
        settings.payments_pro_config(),
        SqlPaymentRepository(db),
        SqlPaymentMethodRepository(db),
        **kwargs,
    )


def build_payments_standard(settings: Settings, db, **kwargs):
    kwargs.setdefault("locks", _locks)
    kwargs.setdefault("http", _http)
    return PaymentsStandard(
        settings.payments_standard_config(), SqlPaymentRepository(db), **kwargs
    )
