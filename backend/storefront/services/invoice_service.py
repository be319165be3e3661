"""Automatic invoice generation for paid orders."""

import asyncio
import html
import logging
from pathlib import Path
from typing import Optional, Protocol

from storefront.config import Settings, get_settings
from storefront.models.order import AutoGeneratedInvoice, InvoiceStatus, Order
from storefront.models.user import CustomerSnapshot
from storefront.utils.helpers import format_invoice_number, utcnow

logger = logging.getLogger(__name__)


class SequenceSource(Protocol):
    async def next_sequence(self, name: str) -> int: ...


class InvoiceService:
    """Renders an HTML invoice to disk and numbers it from a monthly counter."""

    def __init__(self, sequences: SequenceSource, settings: Optional[Settings] = None) -> None:
        self.sequences = sequences
        self.settings = settings or get_settings()

    async def generate_auto_invoice(self, order: Order, customer: CustomerSnapshot) -> AutoGeneratedInvoice:
        """Generate the invoice for ``order`` and return its record."""
        now = utcnow()
        sequence = await self.sequences.next_sequence(f"invoice-{now:%Y%m}")
        invoice_number = format_invoice_number(sequence, now)

        filename = f"{invoice_number}.html"
        path = Path(self.settings.invoice_dir) / filename
        content = self._render(order, customer, invoice_number)
        await asyncio.to_thread(_write_file, path, content)

        logger.info(
            "Invoice generated",
            extra={"order_id": order.id, "invoice_number": invoice_number},
        )
        return AutoGeneratedInvoice(
            invoiceNumber=invoice_number,
            pdfPath=str(path),
            pdfUrl=f"{self.settings.invoice_base_url.rstrip('/')}/{filename}",
            generatedAt=now,
            version=1,
            status=InvoiceStatus.GENERATED,
        )

    def _render(self, order: Order, customer: CustomerSnapshot, invoice_number: str) -> str:
        """Create HTML invoice content."""
        esc = html.escape
        currency = esc(order.pricing.currency)
        rows = "".join(
            f"""
                <tr>
                    <td>{esc(item.name)}</td>
                    <td>{esc(item.sku)}</td>
                    <td class="num">{item.quantity}</td>
                    <td class="num">{item.discountedPrice:.2f}</td>
                    <td class="num">{item.taxAmount:.2f}</td>
                    <td class="num">{item.total:.2f}</td>
                </tr>"""
            for item in order.items
        )
        gstin = (
            f"<p>GSTIN: {esc(self.settings.company_gstin)}</p>" if self.settings.company_gstin else ""
        )
        pricing = order.pricing

        return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Invoice {esc(invoice_number)}</title>
    <style>
        body {{
            font-family: Arial, sans-serif;
            color: #333;
        }}
        .container {{
            max-width: 800px;
            margin: 0 auto;
            padding: 20px;
        }}
        table {{
            width: 100%;
            border-collapse: collapse;
        }}
        th, td {{
            border-bottom: 1px solid #ddd;
            padding: 8px;
            text-align: left;
        }}
        .num {{
            text-align: right;
        }}
        .totals td {{
            font-weight: bold;
        }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{esc(self.settings.company_name)}</h1>
        {gstin}
        <h2>Tax Invoice {esc(invoice_number)}</h2>
        <p>Order: {esc(order.orderNumber)}<br>Date: {order.createdAt:%d %b %Y}</p>
        <p>Billed to: {esc(customer.name)}<br>{esc(customer.email)}<br>{esc(customer.phone)}</p>
        <table>
            <thead>
                <tr><th>Item</th><th>SKU</th><th class="num">Qty</th><th class="num">Price</th><th class="num">Tax</th><th class="num">Total</th></tr>
            </thead>
            <tbody>{rows}
            </tbody>
        </table>
        <table class="totals">
            <tr><td>Subtotal</td><td class="num">{currency} {pricing.subtotal:.2f}</td></tr>
            <tr><td>Shipping</td><td class="num">{currency} {pricing.shipping:.2f}</td></tr>
            <tr><td>Tax</td><td class="num">{currency} {pricing.tax:.2f}</td></tr>
            <tr><td>Discount</td><td class="num">-{currency} {pricing.discount:.2f}</td></tr>
            <tr><td>Total paid</td><td class="num">{currency} {pricing.amountPaid:.2f}</td></tr>
        </table>
    </div>
</body>
</html>
"""


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
