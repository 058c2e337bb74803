"""
Database Models Module

This module defines SQLAlchemy ORM models for:
- Payments driven through the PayPal gateways
- Vaulted payment methods (PaymentsPro)
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

from core.money import Amount, CurrencyMismatch

Base = declarative_base()


class PaymentState(PyEnum):
    new = "new"
    authorization = "authorization"
    authorization_voided = "authorization_voided"
    authorization_expired = "authorization_expired"
    capture_completed = "capture_completed"
    capture_partially_refunded = "capture_partially_refunded"
    capture_refunded = "capture_refunded"


class PaymentMethod(Base):
    """A card vaulted at PayPal. Only the last four digits are kept."""

    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True)
    payment_gateway = Column(String(64), nullable=False)
    remote_id = Column(String(255), index=True)
    card_type = Column(String(32))
    card_number = Column(String(4))
    card_exp_month = Column(Integer)
    card_exp_year = Column(Integer)
    expires_at = Column(DateTime(timezone=True))
    owner_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    @property
    def owner_is_authenticated(self) -> bool:
        return bool(self.owner_id)

    def __repr__(self):
        return f"<PaymentMethod(id={self.id}, card=****{self.card_number})>"


class Payment(Base):
    """A payment against an order, mirrored from PayPal's remote state."""

    __tablename__ = "payments"
    __table_args__ = (Index("ix_payments_order_state", "order_id", "state"),)

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, nullable=False, index=True)
    payment_gateway = Column(String(64), nullable=False)
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"))
    state = Column(Enum(PaymentState), nullable=False, default=PaymentState.new)
    amount_number = Column(Numeric(19, 6), nullable=False, default=Decimal("0"))
    refunded_number = Column(Numeric(19, 6), nullable=False, default=Decimal("0"))
    currency_code = Column(String(3), nullable=False)
    remote_id = Column(String(255), index=True)
    remote_state = Column(String(64))
    refund_remote_ids = Column(JSON, nullable=False, default=list)
    test = Column(Boolean, nullable=False, default=False)
    authorized_at = Column(DateTime(timezone=True))
    captured_at = Column(DateTime(timezone=True))
    authorization_expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    payment_method = relationship("PaymentMethod", lazy="joined")

    @property
    def amount(self) -> Amount:
        return Amount(Decimal(self.amount_number or 0), self.currency_code)

    @amount.setter
    def amount(self, value: Amount) -> None:
        self.amount_number = value.number
        self.currency_code = value.currency_code

    @property
    def refunded_amount(self) -> Amount:
        return Amount(Decimal(self.refunded_number or 0), self.currency_code)

    @refunded_amount.setter
    def refunded_amount(self, value: Amount) -> None:
        if value.currency_code != self.currency_code:
            raise CurrencyMismatch(
                f"Cannot refund {value.currency_code} on a {self.currency_code} payment"
            )
        self.refunded_number = value.number

    @property
    def balance(self) -> Amount:
        return self.amount - self.refunded_amount

    def has_refund(self, remote_id: str) -> bool:
        return remote_id in (self.refund_remote_ids or [])

    def record_refund(self, remote_id: str | None) -> None:
        if remote_id and not self.has_refund(remote_id):
            # Reassign so the JSON column is flagged dirty.
            self.refund_remote_ids = [*(self.refund_remote_ids or []), remote_id]

    def __repr__(self):
        return f"<Payment(id={self.id}, order_id={self.order_id}, state={self.state})>"
