"""
Order read model.

The order/cart domain belongs to the storefront. The gateways only read the
fields declared here, plus the opaque ``data`` mapping where the Express
Checkout session is kept between redirects.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from core.money import Amount


@dataclass
class OrderItem:
    title: str
    unit_price: Amount
    quantity: int = 1


@dataclass
class Adjustment:
    """A price adjustment: tax, shipping, promotion, fee, ..."""

    type: str
    label: str
    amount: Amount
    # Included adjustments (e.g. VAT in gross prices) are already in unit prices.
    included: bool = False


@dataclass
class Address:
    given_name: str = ""
    family_name: str = ""
    address_line1: str = ""
    address_line2: str = ""
    locality: str = ""
    administrative_area: str = ""
    postal_code: str = ""
    country_code: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.given_name, self.family_name) if p)


@dataclass
class Order:
    id: int
    total_price: Amount
    items: list[OrderItem] = field(default_factory=list)
    adjustments: list[Adjustment] = field(default_factory=list)
    order_number: Optional[str] = None
    email: Optional[str] = None
    shipping_profiles: list[Address] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def number(self) -> str:
        return self.order_number or str(self.id)
