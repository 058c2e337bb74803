"""
PayPal Commerce Gateway - Main Application Entry Point

This module initializes the FastAPI application that receives PayPal
Instant Payment Notifications and exposes health and metrics endpoints.
The gateways themselves are used in-process by the storefront.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from api import webhooks
from api.middleware import log_api_entry
from core.dependencies import clear_settings, close_http, get_settings, init_settings
from core.logging import configure_logging
from core.metrics import add_metrics_auth_middleware, init_metrics
from core.settings import Settings
from core.tracing import init_tracer
from db.session import init_db

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI application startup and shutdown events."""
    # Startup
    init_settings()
    settings = get_settings()

    init_tracer(settings.OTEL_SERVICE_NAME, settings.OTEL_EXPORTER_OTLP_ENDPOINT)
    init_db(settings)
    log.info(
        "app.started",
        environment=settings.ENVIRONMENT,
        paypal_mode=settings.PAYPAL_MODE,
    )

    yield
    # Shutdown
    clear_settings()
    close_http()


app = FastAPI(
    title="PayPal Commerce Gateway",
    description="Express Checkout, PaymentsPro and Payments Standard with IPN reconciliation.",
    version="1.0.0",
    lifespan=lifespan,
)

# Initialize FastAPI instrumentation
FastAPIInstrumentor.instrument_app(app)

# Initialize Prometheus metrics
init_metrics(app)

# Add metrics authentication middleware (for production)
add_metrics_auth_middleware(app)

app.middleware("http")(log_api_entry)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log.error(
        "api.unhandled_exception",
        path=request.url.path,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/healthz")
async def health_check(settings: Settings = Depends(get_settings)):
    """Health check endpoint to verify API status."""
    db_type = (
        "PostgreSQL" if settings.DATABASE_URL.startswith("postgresql") else "SQLite"
    )
    return {
        "status": "ok",
        "app_name": settings.APP_NAME,
        "database": db_type,
        "environment": settings.ENVIRONMENT,
        "paypal_mode": settings.PAYPAL_MODE,
    }


API_PREFIX = "/api/v1"

app.include_router(webhooks.router, prefix=API_PREFIX, tags=["paypal"])


def main():
    configure_logging()
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
