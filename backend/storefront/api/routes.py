"""API routes for order payments."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from storefront.api.dependencies import get_current_user_id, get_payment_service
from storefront.config import get_settings
from storefront.database.mongodb import mongodb
from storefront.errors import ServiceResult
from storefront.models.request import (
    ApiResponse,
    CreatePaymentOrderRequest,
    HealthResponse,
    VerifyPaymentRequest,
)
from storefront.services.payment_service import PaymentService

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix=settings.api_prefix)


def _respond(result: ServiceResult) -> ApiResponse:
    """Map a service result to a response, raising for failures."""
    if not result.success:
        raise HTTPException(status_code=result.error.status_code, detail=result.message)
    return ApiResponse(success=True, message=result.message, data=result.data)


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    mongodb_status = "connected" if mongodb.is_connected else "disconnected"
    gateway = getattr(request.app.state, "gateway", None)
    notifier = getattr(request.app.state, "notifier", None)

    return HealthResponse(
        status="healthy" if mongodb_status == "connected" else "degraded",
        version=settings.app_version,
        services={
            "mongodb": mongodb_status,
            "razorpay": "configured" if gateway and gateway.is_configured else "not_configured",
            "n8n": "configured" if notifier and notifier.is_available() else "not_configured",
        },
    )


@router.post("/payment/razorpay/create-order", response_model=ApiResponse)
async def create_razorpay_order(
    body: CreatePaymentOrderRequest,
    user_id: str = Depends(get_current_user_id),
    payments: PaymentService = Depends(get_payment_service),
) -> ApiResponse:
    """Create a Razorpay order for an unpaid store order.

    Headers:
        X-User-ID: User identifier
    """
    return _respond(await payments.create_payment_order(body.orderId, user_id))


@router.post("/payment/razorpay/verify", response_model=ApiResponse)
async def verify_razorpay_payment(
    body: VerifyPaymentRequest,
    user_id: str = Depends(get_current_user_id),
    payments: PaymentService = Depends(get_payment_service),
) -> ApiResponse:
    """Verify a completed Razorpay checkout and confirm the order.

    Headers:
        X-User-ID: User identifier
    """
    return _respond(await payments.verify_payment(body, user_id))


@router.get("/payment/order/{order_id}/status", response_model=ApiResponse)
async def get_payment_status(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    payments: PaymentService = Depends(get_payment_service),
) -> ApiResponse:
    """Get payment status for an order."""
    return _respond(await payments.get_payment_status(order_id, user_id))


@router.post("/webhook/razorpay")
async def razorpay_webhook(
    request: Request,
    signature: str | None = Header(None, alias="X-Razorpay-Signature"),
    payments: PaymentService = Depends(get_payment_service),
) -> JSONResponse:
    """Receive Razorpay webhook events. Authenticated by signature only."""
    body = await request.body()
    result = await payments.handle_webhook(body, signature)
    code = status.HTTP_200_OK if result.success else result.error.status_code
    return JSONResponse(
        status_code=code,
        content={"success": result.success, "message": result.message},
    )
