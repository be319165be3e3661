"""Services package."""

from storefront.services.cart_service import CartService
from storefront.services.gateway import (
    GatewayOrder,
    GatewayPayment,
    PaymentGateway,
    RazorpayGateway,
    WebhookEvent,
)
from storefront.services.invoice_service import InvoiceService
from storefront.services.notification_service import NotificationService
from storefront.services.payment_service import PaymentService
from storefront.services.stock_service import StockService
from storefront.services.user_service import UserService

__all__ = [
    "PaymentService",
    "PaymentGateway",
    "RazorpayGateway",
    "GatewayOrder",
    "GatewayPayment",
    "WebhookEvent",
    "StockService",
    "CartService",
    "InvoiceService",
    "NotificationService",
    "UserService",
]
