"""Payment gateway port and the Razorpay adapter."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from storefront.config import Settings, get_settings
from storefront.errors import GatewayRequestError, GatewayUnavailableError
from storefront.utils.helpers import hmac_sha256_hex, signatures_match

logger = logging.getLogger(__name__)


class GatewayOrder(BaseModel):
    """Gateway-side order created before checkout."""

    model_config = ConfigDict(extra="allow")

    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None
    expire_at: Optional[int] = None


class GatewayPayment(BaseModel):
    """Authoritative payment record as reported by the gateway."""

    model_config = ConfigDict(extra="allow")

    id: str
    entity: str = "payment"
    amount: int
    currency: str = "INR"
    status: str
    method: Optional[str] = None
    order_id: Optional[str] = None
    created_at: Optional[int] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def is_captured(self) -> bool:
        return self.status == "captured"

    def snapshot(self) -> dict[str, Any]:
        """Opaque copy stored on the attempt."""
        return self.model_dump(exclude_none=True)


class WebhookPaymentEntity(BaseModel):
    entity: GatewayPayment


class WebhookPayload(BaseModel):
    payment: Optional[WebhookPaymentEntity] = None


class WebhookEvent(BaseModel):
    """Body of a gateway webhook delivery."""

    model_config = ConfigDict(extra="allow")

    event: str
    payload: WebhookPayload = Field(default_factory=WebhookPayload)

    @property
    def payment(self) -> Optional[GatewayPayment]:
        return self.payload.payment.entity if self.payload.payment else None


class PaymentGateway(ABC):
    """Operations the payment flow needs from a gateway."""

    @abstractmethod
    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, str]] = None,
    ) -> GatewayOrder:
        """Create a gateway order for ``amount`` minor units with auto-capture."""

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Fetch a payment by id."""

    @abstractmethod
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        """Check the checkout signature over ``order_id|payment_id``."""

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Check the webhook signature over the raw request body."""

    @property
    def is_configured(self) -> bool:
        return True


class RazorpayGateway(PaymentGateway):
    """Razorpay REST adapter over ``httpx.AsyncClient``."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return self.settings.gateway_configured

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.razorpay_base_url,
                auth=(self.settings.razorpay_key_id, self.settings.razorpay_key_secret),
                timeout=self.settings.gateway_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._get_client().request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("Razorpay request timed out: %s %s", method, path)
            raise GatewayUnavailableError("Payment gateway timed out") from e
        except httpx.TransportError as e:
            logger.error("Razorpay request failed: %s %s: %s", method, path, e)
            raise GatewayUnavailableError("Payment gateway unavailable") from e

        if response.status_code >= 500:
            logger.error(
                "Razorpay server error",
                extra={"path": path, "status_code": response.status_code},
            )
            raise GatewayUnavailableError("Payment gateway unavailable")

        if response.status_code >= 400:
            description = _error_description(response)
            logger.warning(
                "Razorpay rejected request",
                extra={"path": path, "status_code": response.status_code, "error": description},
            )
            raise GatewayRequestError(f"Payment gateway error: {description}")

        return response.json()

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[dict[str, str]] = None,
    ) -> GatewayOrder:
        data = await self._request(
            "POST",
            "/orders",
            json={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
                "payment_capture": 1,
            },
        )
        order = GatewayOrder.model_validate(data)
        logger.info("Razorpay order created", extra={"razorpay_order_id": order.id, "receipt": receipt})
        return order

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = await self._request("GET", f"/payments/{payment_id}")
        return GatewayPayment.model_validate(data)

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        expected = hmac_sha256_hex(f"{order_id}|{payment_id}", self.settings.razorpay_key_secret)
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not self.settings.razorpay_webhook_secret:
            logger.error("Webhook received but no webhook secret is configured")
            return False
        expected = hmac_sha256_hex(body, self.settings.razorpay_webhook_secret)
        return signatures_match(expected, signature)


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return error["description"]
    return f"HTTP {response.status_code}"
