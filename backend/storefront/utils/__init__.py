"""Utilities package."""

from storefront.utils.helpers import (
    generate_object_id,
    generate_order_number,
    hmac_sha256_hex,
    format_invoice_number,
    signatures_match,
    to_minor_units,
    utcnow,
)
from storefront.utils.logger import setup_logging

__all__ = [
    "setup_logging",
    "generate_object_id",
    "generate_order_number",
    "hmac_sha256_hex",
    "format_invoice_number",
    "signatures_match",
    "to_minor_units",
    "utcnow",
]
