"""
Wire codec for the three PayPal protocol families.

- NVP: application/x-www-form-urlencoded name/value pairs
- REST: JSON bodies
- IPN: the same URL-encoded shape as NVP, but attacker controlled, so the
  decoder never raises
"""

import html
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Union
from urllib.parse import parse_qsl, urlencode

import structlog

from core.money import Amount
from payments.errors import GatewayDeclined

log = structlog.get_logger(__name__)

LINE_ITEM_PREFIX = "L_PAYMENTREQUEST_0_"


@dataclass
class LineItem:
    name: str
    amount: Amount
    quantity: int = 1

    @property
    def total(self) -> Amount:
        return self.amount * self.quantity


@dataclass
class NvpRequest:
    """An outgoing NVP call: method, ordered fields and typed line items."""

    method: str
    fields: dict[str, str] = field(default_factory=dict)
    line_items: list[LineItem] = field(default_factory=list)

    def to_pairs(self) -> list[tuple[str, str]]:
        pairs = [("METHOD", self.method)]
        pairs.extend((k, _nvp_value(v)) for k, v in self.fields.items() if k != "METHOD")
        pairs.extend(encode_line_items(self.line_items))
        return pairs


def _nvp_value(value: Any) -> str:
    if isinstance(value, Amount):
        return value.to_wire()
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def encode_line_items(items: list[LineItem]) -> list[tuple[str, str]]:
    """Serialise line items to contiguous ``L_PAYMENTREQUEST_0_*n`` fields."""
    pairs = []
    for n, item in enumerate(items):
        pairs.append((f"{LINE_ITEM_PREFIX}NAME{n}", item.name))
        pairs.append((f"{LINE_ITEM_PREFIX}AMT{n}", item.amount.to_wire()))
        pairs.append((f"{LINE_ITEM_PREFIX}QTY{n}", str(item.quantity)))
    return pairs


def encode_nvp(data: Union[NvpRequest, Mapping[str, Any]]) -> bytes:
    if isinstance(data, NvpRequest):
        pairs = data.to_pairs()
    else:
        pairs = [(k, _nvp_value(v)) for k, v in data.items()]
    return urlencode(pairs).encode("utf-8")


def decode_nvp(body: Union[bytes, str, None]) -> dict[str, str]:
    """Decode an NVP or IPN body. Undecodable input yields an empty dict."""
    if not body:
        return {}
    try:
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        # Entities are unescaped per component, never across "&" separators.
        return {
            html.unescape(k): html.unescape(v)
            for k, v in parse_qsl(body, keep_blank_values=True)
        }
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        log.warning("paypal.codec.undecodable", error=str(e))
        return {}


class _WireEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, Amount):
            return o.to_wire()
        if isinstance(o, Decimal):
            return format(o, "f")
        return super().default(o)


def encode_json(data: Any) -> bytes:
    return json.dumps(data, cls=_WireEncoder).encode("utf-8")


def decode_json(body: Union[bytes, str, None]) -> dict[str, Any]:
    if not body:
        return {}
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise GatewayDeclined(f"Malformed PayPal response: {e}") from e
    if not isinstance(data, dict):
        raise GatewayDeclined("Unexpected PayPal response shape")
    return data
