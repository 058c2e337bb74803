"""SQLAlchemy-backed repositories for payments and payment methods."""

from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Payment, PaymentMethod, PaymentState

log = structlog.get_logger(__name__)


class SqlPaymentRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, **values: Any) -> Payment:
        """Build an unsaved payment in state ``new`` unless told otherwise."""
        amount = values.pop("amount", None)
        payment = Payment(
            state=values.pop("state", PaymentState.new),
            refunded_number=Decimal("0"),
            refund_remote_ids=[],
            **values,
        )
        if amount is not None:
            payment.amount = amount
        return payment

    def load(self, payment_id: int) -> Optional[Payment]:
        payment = self.db.get(Payment, payment_id)
        if payment is not None:
            # Another session may have written since this one last looked.
            self.db.refresh(payment)
        return payment

    def load_by_remote_id(self, remote_id: str) -> Optional[Payment]:
        if not remote_id:
            return None
        return self.db.execute(
            select(Payment).where(Payment.remote_id == remote_id).order_by(Payment.id)
        ).scalars().first()

    def save(self, payment: Payment) -> None:
        self.db.add(payment)
        self.db.commit()
        log.debug("payment.saved", payment_id=payment.id, state=payment.state.value)


class SqlPaymentMethodRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, **values: Any) -> PaymentMethod:
        return PaymentMethod(**values)

    def save(self, payment_method: PaymentMethod) -> None:
        self.db.add(payment_method)
        self.db.commit()

    def delete(self, payment_method: PaymentMethod) -> None:
        if payment_method.id is not None:
            self.db.delete(payment_method)
            self.db.commit()
