"""Utility helper functions."""

import hashlib
import hmac
import secrets
import string
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from bson import ObjectId

_BASE36 = string.digits + string.ascii_uppercase


def generate_object_id() -> str:
    """Generate a new Mongo ObjectId as a string."""
    return str(ObjectId())


def utcnow() -> datetime:
    return datetime.now(UTC)


def generate_order_number(now: datetime | None = None) -> str:
    """Generate a human readable order number: ORD-YYYYMMDD-XXXXX."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"ORD-{now:%Y%m%d}-{suffix}"


def format_invoice_number(sequence: int, now: datetime | None = None) -> str:
    """Format an invoice number: INV-YYYYMM-NNNNN."""
    now = now or utcnow()
    return f"INV-{now:%Y%m}-{sequence:05d}"


def to_minor_units(amount: Union[float, int, Decimal]) -> int:
    """Convert a major-unit amount to minor units (paise), rounding half up."""
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def hmac_sha256_hex(message: Union[str, bytes], secret: str) -> str:
    """Hex digest of HMAC-SHA256(message, secret)."""
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str | None) -> bool:
    """Exact, constant-time comparison of two hex signatures."""
    if not received:
        return False
    return hmac.compare_digest(expected.encode(), received.encode())

