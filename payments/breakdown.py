"""
Order-to-wire mapping for Express Checkout.

PayPal rejects a SetExpressCheckout call unless
ITEMAMT + TAXAMT + SHIPPINGAMT == AMT to the currency's precision, so the
breakdown built here always satisfies that sum.
"""

from dataclasses import dataclass

import structlog

from core.money import Amount, Rounder
from payments.codec import LineItem
from payments.orders import Order

log = structlog.get_logger(__name__)

TAX = "tax"
SHIPPING = "shipping"
# PayPal truncates nothing itself; longer names fail validation.
MAX_NAME_LENGTH = 127
ROUNDING_LINE = "Rounding adjustment"


@dataclass
class Breakdown:
    line_items: list[LineItem]
    item_total: Amount
    tax_total: Amount
    shipping_total: Amount
    total: Amount

    def nvp_fields(self) -> dict[str, str]:
        fields = {
            "PAYMENTREQUEST_0_AMT": self.total.to_wire(),
            "PAYMENTREQUEST_0_CURRENCYCODE": self.total.currency_code,
            "PAYMENTREQUEST_0_ITEMAMT": self.item_total.to_wire(),
        }
        if not self.tax_total.is_zero():
            fields["PAYMENTREQUEST_0_TAXAMT"] = self.tax_total.to_wire()
        if not self.shipping_total.is_zero():
            fields["PAYMENTREQUEST_0_SHIPPINGAMT"] = self.shipping_total.to_wire()
        return fields


def _line(name: str, amount: Amount, quantity: int = 1) -> LineItem:
    return LineItem(name=name[:MAX_NAME_LENGTH], amount=amount, quantity=quantity)


def build_breakdown(order: Order, rounder: Rounder) -> Breakdown:
    currency = order.total_price.currency_code
    lines = []
    for item in order.items:
        if item.quantity <= 0:
            continue
        lines.append(_line(item.title, rounder.round(item.unit_price), int(item.quantity)))

    tax = Amount.zero(currency)
    shipping = Amount.zero(currency)
    for adjustment in order.adjustments:
        if adjustment.included:
            continue
        if adjustment.type == TAX:
            tax += adjustment.amount
        elif adjustment.type == SHIPPING:
            shipping += adjustment.amount
        else:
            lines.append(_line(adjustment.label or adjustment.type, rounder.round(adjustment.amount)))

    tax = rounder.round(tax)
    shipping = rounder.round(shipping)
    total = rounder.round(order.total_price)

    item_total = Amount.zero(currency)
    for line in lines:
        item_total += line.total

    difference = total - (item_total + tax + shipping)
    if not difference.is_zero():
        log.warning(
            "paypal.breakdown.rounding",
            order_id=order.id,
            difference=difference.to_wire(),
            currency=currency,
        )
        lines.append(_line(ROUNDING_LINE, difference))
        item_total += difference

    return Breakdown(
        line_items=lines,
        item_total=item_total,
        tax_total=tax,
        shipping_total=shipping,
        total=total,
    )


def shipping_fields(order: Order, shipping_enabled: bool, send_address: bool) -> dict[str, str]:
    """Ship-to fields, sent only for exactly one shipping profile."""
    profiles = order.shipping_profiles if shipping_enabled else []
    if not send_address or len(profiles) != 1:
        return {"NOSHIPPING": "1"}

    address = profiles[0]
    return {
        "NOSHIPPING": "0",
        "ADDROVERRIDE": "1",
        "PAYMENTREQUEST_0_SHIPTONAME": address.full_name,
        "PAYMENTREQUEST_0_SHIPTOSTREET": address.address_line1,
        "PAYMENTREQUEST_0_SHIPTOSTREET2": address.address_line2,
        "PAYMENTREQUEST_0_SHIPTOCITY": address.locality,
        "PAYMENTREQUEST_0_SHIPTOSTATE": address.administrative_area,
        "PAYMENTREQUEST_0_SHIPTOZIP": address.postal_code,
        "PAYMENTREQUEST_0_SHIPTOCOUNTRYCODE": address.country_code,
    }
