"""
Webhook handlers for PayPal
"""

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.dependencies import build_ipn_reconciler, get_settings
from core.settings import Settings
from db.session import get_db
from payments.ipn import IpnReconciler, IpnVerdict

log = structlog.get_logger(__name__)

router = APIRouter()


def get_ipn_reconciler(
    settings: Settings = Depends(get_settings), db: Session = Depends(get_db)
) -> IpnReconciler:
    return build_ipn_reconciler(settings, db)


@router.post("/paypal/ipn")
async def paypal_ipn(
    request: Request, reconciler: IpnReconciler = Depends(get_ipn_reconciler)
):
    """Receive an Instant Payment Notification.

    Ignored notifications still answer 200 so PayPal stops redelivering them;
    only a notification with an unexpected payment status is a 400.
    """
    payload = await request.body()
    result = await run_in_threadpool(reconciler.process, payload)

    status_code = (
        status.HTTP_400_BAD_REQUEST
        if result.verdict == IpnVerdict.rejected
        else status.HTTP_200_OK
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "status": result.verdict.value,
            "reason": result.reason,
            "payment_id": result.payment_id,
        },
    )
