"""
Persistence interfaces the gateways depend on.

Payments, payment methods and orders are owned by the storefront. The
gateways mutate records in memory and hand them back through these
interfaces; ``db.repository`` provides the SQLAlchemy implementation.
"""

from typing import Any, Optional, Protocol

from db.models import Payment, PaymentMethod


class PaymentRepository(Protocol):
    def create(self, **values: Any) -> Payment: ...

    def load(self, payment_id: int) -> Optional[Payment]: ...

    def load_by_remote_id(self, remote_id: str) -> Optional[Payment]: ...

    def save(self, payment: Payment) -> None: ...


class PaymentMethodRepository(Protocol):
    def create(self, **values: Any) -> PaymentMethod: ...

    def save(self, payment_method: PaymentMethod) -> None: ...

    def delete(self, payment_method: PaymentMethod) -> None: ...


class OrderRepository(Protocol):
    def save(self, order: Any) -> None: ...
