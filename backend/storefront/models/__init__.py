"""Data models package."""

from storefront.models.order import (
    AttemptTransition,
    AttemptUpdate,
    Order,
    OrderItem,
    OrderStatus,
    PaymentAttempt,
    PaymentStatus,
    Pricing,
    ProductType,
    TimelineEvent,
    TimelineEventType,
)
from storefront.models.product import (
    PreBuiltPC,
    Product,
    ProductStatus,
    StockLine,
    StockReductionResults,
    Variant,
)
from storefront.models.request import (
    ApiResponse,
    CreatePaymentOrderRequest,
    ErrorResponse,
    HealthResponse,
    VerifyPaymentRequest,
)
from storefront.models.user import CustomerSnapshot, UserCreate, UserInDB

__all__ = [
    # Order models
    "Order",
    "OrderItem",
    "OrderStatus",
    "Pricing",
    "ProductType",
    "PaymentAttempt",
    "PaymentStatus",
    "AttemptUpdate",
    "AttemptTransition",
    "TimelineEvent",
    "TimelineEventType",
    # Inventory models
    "Product",
    "ProductStatus",
    "Variant",
    "PreBuiltPC",
    "StockLine",
    "StockReductionResults",
    # User models
    "UserCreate",
    "UserInDB",
    "CustomerSnapshot",
    # Request/Response models
    "ApiResponse",
    "CreatePaymentOrderRequest",
    "VerifyPaymentRequest",
    "HealthResponse",
    "ErrorResponse",
]
