import structlog
from fastapi import Request

from core.logging import PayPalEvents


async def log_api_entry(request: Request, call_next):
    """Middleware to log API entries with request details"""
    # Get a fresh logger each time to ensure test configurations are respected
    log = structlog.get_logger(__name__)

    # IPN bodies carry payer details; only the path and client are logged here
    log.info(
        PayPalEvents.API_ENTRY,
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )
    response = await call_next(request)
    log.info(
        "api.response",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
    )
    return response
