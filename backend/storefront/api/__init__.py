"""API package."""

from storefront.api.dependencies import create_payment_service, get_current_user_id, get_payment_service
from storefront.api.middleware import LoggingMiddleware, RateLimitMiddleware
from storefront.api.routes import router

__all__ = [
    "router",
    "LoggingMiddleware",
    "RateLimitMiddleware",
    "create_payment_service",
    "get_current_user_id",
    "get_payment_service",
]
