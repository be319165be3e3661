"""Tests for utility helpers."""

import re
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from storefront.utils.helpers import (
    format_invoice_number,
    generate_object_id,
    generate_order_number,
    hmac_sha256_hex,
    signatures_match,
    to_minor_units,
)


@pytest.mark.parametrize(
    "amount, expected",
    [(5000, 500000), (5000.0, 500000), (999.99, 99999), (0.005, 1), (Decimal("12.345"), 1235), (0, 0)],
)
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


def test_order_number_format():
    number = generate_order_number(datetime(2024, 9, 6, tzinfo=UTC))
    assert re.fullmatch(r"ORD-20240906-[0-9A-Z]{5}", number)


def test_invoice_number_format():
    assert format_invoice_number(42, datetime(2024, 9, 6, tzinfo=UTC)) == "INV-202409-00042"


def test_object_ids_are_unique_strings():
    first, second = generate_object_id(), generate_object_id()
    assert first != second
    assert len(first) == 24


def test_hmac_known_vector():
    # RFC 4231 test case 2
    assert (
        hmac_sha256_hex("what do ya want for nothing?", "Jefe")
        == "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
    )


def test_signatures_match():
    signature = hmac_sha256_hex(b"body", "secret")
    assert signatures_match(signature, signature)
    assert not signatures_match(signature, signature[:-1])
    assert not signatures_match(signature, "")
    assert not signatures_match(signature, None)
