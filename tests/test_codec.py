"""Tests for the NVP / JSON wire codec."""

from decimal import Decimal

import pytest

from core.money import Amount
from payments.codec import (
    LineItem,
    NvpRequest,
    decode_json,
    decode_nvp,
    encode_json,
    encode_line_items,
    encode_nvp,
)
from payments.errors import GatewayDeclined


def test_line_items_are_indexed_from_zero():
    pairs = encode_line_items(
        [
            LineItem("Shirt", Amount("30", "USD"), 2),
            LineItem("Spring sale", Amount("-5", "USD")),
        ]
    )
    assert pairs == [
        ("L_PAYMENTREQUEST_0_NAME0", "Shirt"),
        ("L_PAYMENTREQUEST_0_AMT0", "30.00"),
        ("L_PAYMENTREQUEST_0_QTY0", "2"),
        ("L_PAYMENTREQUEST_0_NAME1", "Spring sale"),
        ("L_PAYMENTREQUEST_0_AMT1", "-5.00"),
        ("L_PAYMENTREQUEST_0_QTY1", "1"),
    ]


def test_encode_nvp_puts_method_first():
    request = NvpRequest(
        method="DoVoid",
        fields={"AUTHORIZATIONID": "AUTH 1", "METHOD": "ignored"},
    )
    body = encode_nvp(request).decode()
    assert body == "METHOD=DoVoid&AUTHORIZATIONID=AUTH+1"


def test_encode_nvp_mapping_formats_values():
    body = encode_nvp({"AMT": Amount("1.5", "USD"), "FLAG": True, "N": Decimal("2.0")})
    assert body == b"AMT=1.50&FLAG=1&N=2.0"


def test_decode_nvp_unescapes_entities_and_keeps_blanks():
    decoded = decode_nvp(b"ACK=Success&L_LONGMESSAGE0=Tom+%26amp%3B+Jerry&EMPTY=")
    assert decoded == {"ACK": "Success", "L_LONGMESSAGE0": "Tom & Jerry", "EMPTY": ""}


@pytest.mark.parametrize("body", [None, b"", "", b"\xff\xfe\xfa"])
def test_decode_nvp_never_raises(body):
    assert decode_nvp(body) == {}


def test_json_round_trip_with_amounts():
    body = encode_json({"amount": {"total": Amount("10", "USD"), "fee": Decimal("0.30")}})
    assert decode_json(body) == {"amount": {"total": "10.00", "fee": "0.30"}}


def test_decode_json_empty_body():
    assert decode_json(b"") == {}


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2]"])
def test_decode_json_malformed_is_a_decline(body):
    with pytest.raises(GatewayDeclined):
        decode_json(body)


def test_decode_nvp_keeps_field_names_that_look_like_entities():
    decoded = decode_nvp(
        "txn_id=61E67681CH3238416&receiver_email=seller%40example.com&notify_version=3.9"
    )
    assert decoded["receiver_email"] == "seller@example.com"
    assert decoded["notify_version"] == "3.9"
