import logging
import os
import sys

import structlog
from opentelemetry.instrumentation.logging import LoggingInstrumentor

# Global variable to store test output
test_output = []


def get_log_level():
    """Get log level from environment or default to INFO"""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_log_renderer():
    """Get log renderer based on environment"""
    env = os.getenv("ENVIRONMENT", "development")
    # JSON for tests and production, pretty console output locally
    if env in ["test", "production"]:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True, sort_keys=False)


def test_output_processor(logger, method_name, event_dict):
    """Custom processor that stores output for test assertions"""
    if os.getenv("ENVIRONMENT", "development") == "test":
        test_output.append(event_dict.copy())
    return event_dict


def mask_credentials(logger, method_name, event_dict):
    """Never let API credentials or card data reach the log sink."""
    for key in ("PWD", "SIGNATURE", "client_secret", "number", "cvv2"):
        if key in event_dict:
            event_dict[key] = "***"
    return event_dict


def configure_logging():
    """Set up structlog + OTEL context injection."""
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.ExceptionPrettyPrinter(),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            mask_credentials,
            test_output_processor,
            get_log_renderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    env = os.getenv("ENVIRONMENT", "development")
    if env == "test":
        # In test mode, write to stdout for easier capture
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(get_log_level())

    logging.getLogger("uvicorn.error").handlers.clear()
    logging.getLogger("uvicorn.access").handlers.clear()
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.ERROR)

    # Initialize OpenTelemetry logging instrumentation AFTER configuring logging
    LoggingInstrumentor().instrument(set_logging_format=False)


class PayPalEvents:
    """Standard names for PayPal business event logs"""

    API_ENTRY = "api.request"
    REQUEST = "paypal.request"
    REQUEST_FAILED = "paypal.request.failed"
    TOKEN_ACQUIRED = "paypal.oauth.token_acquired"
    CHECKOUT_STARTED = "paypal.checkout.started"
    CHECKOUT_RETURNED = "paypal.checkout.returned"
    CHECKOUT_CANCELLED = "paypal.checkout.cancelled"
    PAYMENT_CREATED = "paypal.payment.created"
    PAYMENT_CAPTURED = "paypal.payment.captured"
    PAYMENT_VOIDED = "paypal.payment.voided"
    PAYMENT_REFUNDED = "paypal.payment.refunded"
    PAYMENT_DECLINED = "paypal.payment.declined"
    PAYMENT_TRANSITION = "paypal.payment.transition"
    PAYMENT_METHOD_CREATED = "paypal.payment_method.created"
    PAYMENT_METHOD_DELETED = "paypal.payment_method.deleted"
    STATUS_UNHANDLED = "paypal.status.unhandled"
    IPN_RECEIVED = "paypal.ipn.received"
    IPN_INVALID = "paypal.ipn.invalid"
    IPN_IGNORED = "paypal.ipn.ignored"
    IPN_PROCESSED = "paypal.ipn.processed"
    IPN_REJECTED = "paypal.ipn.rejected"


# Configure logging when module is imported
configure_logging()
