"""
Prometheus metrics instrumentation for the PayPal gateway service.

Domain counters are incremented by the gateways and the IPN reconciler; the
FastAPI instrumentator exposes them at /metrics.
"""

import os

from fastapi import Request, status
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

paypal_requests = Counter(
    "paypal_requests_total",
    "Outgoing PayPal API calls",
    ["protocol", "method"],  # protocol: nvp, rest, oauth, ipn
)

ipn_notifications = Counter(
    "paypal_ipn_notifications_total",
    "Inbound IPN notifications by verdict",
    ["verdict"],
)

payment_transitions = Counter(
    "paypal_payment_transitions_total",
    "Local payment state transitions",
    ["state"],
)


def init_metrics(app):
    """
    Initialize Prometheus metrics instrumentation for the FastAPI app.

    Args:
        app: FastAPI application instance

    Returns:
        Instrumentator instance
    """
    inst = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
    )
    inst.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
    return inst


def add_metrics_auth_middleware(app):
    """
    Protect the /metrics endpoint outside development.
    Set METRICS_AUTH_TOKEN to allow scraping with the X-Metrics-Auth header.
    """

    @app.middleware("http")
    async def metrics_auth_middleware(request: Request, call_next):
        if request.url.path != "/metrics":
            return await call_next(request)

        if os.getenv("ENVIRONMENT", "development") == "development":
            return await call_next(request)

        expected_token = os.getenv("METRICS_AUTH_TOKEN")
        if expected_token and request.headers.get("X-Metrics-Auth") == expected_token:
            return await call_next(request)

        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Metrics endpoint access denied"},
        )
