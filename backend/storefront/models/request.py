"""API request and response models."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class CreatePaymentOrderRequest(BaseModel):
    """Request a gateway order for an existing store order."""

    orderId: str = Field(..., min_length=1, description="Store order id")

    model_config = {"json_schema_extra": {"example": {"orderId": "665f1c2ab1d4c1e6a8a0b123"}}}


class VerifyPaymentRequest(BaseModel):
    """Gateway checkout callback payload forwarded by the client.

    The gateway fields are optional here so that a missing field produces a
    400 with a readable reason instead of a validation error.
    """

    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    orderId: str = Field(..., min_length=1)
    attemptId: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "razorpay_order_id": "order_ABC",
                "razorpay_payment_id": "pay_XYZ",
                "razorpay_signature": "3f1c...",
                "orderId": "665f1c2ab1d4c1e6a8a0b123",
                "attemptId": "665f1c2ab1d4c1e6a8a0b456",
            }
        }
    }


class ApiResponse(BaseModel):
    """Envelope used by every payment endpoint."""

    success: bool = Field(..., description="Whether the request succeeded")
    message: str = Field(default="", description="Human readable outcome")
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": True,
                "message": "Payment verified successfully",
                "data": {
                    "orderId": "665f1c2ab1d4c1e6a8a0b123",
                    "orderNumber": "ORD-20240906-K3P9Z",
                    "paymentId": "pay_XYZ",
                    "amount": 5000.0,
                    "status": "confirmed",
                    "stockReduced": True,
                },
            }
        }
    }


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]
