"""Dependency wiring for the API layer."""

from fastapi import Header, Request

from storefront.config import Settings
from storefront.database.inventory import InventoryRepository
from storefront.database.mongodb import MongoDB
from storefront.database.orders import OrderRepository
from storefront.services.cart_service import CartService
from storefront.services.gateway import PaymentGateway
from storefront.services.invoice_service import InvoiceService
from storefront.services.notification_service import NotificationService
from storefront.services.payment_service import PaymentService
from storefront.services.stock_service import StockService
from storefront.services.user_service import UserService


def create_payment_service(
    db: MongoDB,
    gateway: PaymentGateway,
    notifier: NotificationService,
    settings: Settings,
) -> PaymentService:
    """Build the payment service and its collaborators over one connection."""
    orders = OrderRepository(db)
    return PaymentService(
        orders=orders,
        gateway=gateway,
        stock=StockService(InventoryRepository(db), orders),
        carts=CartService(db),
        invoices=InvoiceService(db, settings),
        notifier=notifier,
        users=UserService(db),
        settings=settings,
    )


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_current_user_id(user_id: str = Header(..., alias="X-User-ID", min_length=1)) -> str:
    """Authenticated caller id, set by the upstream auth proxy."""
    return user_id
