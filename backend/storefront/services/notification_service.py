"""Outbound automation (n8n) webhook dispatch."""

import logging
from datetime import timedelta
from typing import Any, Optional

import httpx

from storefront.config import Settings, get_settings
from storefront.models.order import Order
from storefront.models.user import CustomerSnapshot
from storefront.utils.helpers import utcnow

logger = logging.getLogger(__name__)

PAYMENT_CONFIRMED = "paymentConfirmed"
_UNSAFE_KEYS = ("password", "hashedPassword")


class NotificationService:
    """Posts workflow events to n8n.

    Dispatch never raises: every outcome is reported as a result dict so a
    failing automation cannot affect the caller.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def is_available(self) -> bool:
        """Check if automation dispatch is configured."""
        return bool(self.settings.n8n_base_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.n8n_timeout_seconds,
                transport=self._transport,
                headers={
                    "X-N8N-SECRET": self.settings.n8n_webhook_secret,
                    "User-Agent": f"{self.settings.app_name}/{self.settings.app_version}",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def run(self, workflow_key: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Trigger the workflow registered under ``workflow_key``."""
        payload = payload or {}
        if not self.is_available():
            logger.warning("N8N base URL not set, skipping workflow %s", workflow_key)
            return {"skipped": True, "reason": "N8N disabled"}

        path = self.settings.n8n_workflows.get(workflow_key)
        if not path:
            logger.error("Unknown n8n workflow key: %s", workflow_key)
            return {"success": False, "error": "Unknown workflowKey"}

        if any(key in payload for key in _UNSAFE_KEYS):
            logger.error("Unsafe payload for workflow %s: contains password", workflow_key)
            return {"success": False, "error": "Unsafe payload blocked"}

        url = f"{self.settings.n8n_base_url.rstrip('/')}{path}"
        body = {
            "event": workflow_key,
            "workflowKey": workflow_key,
            **payload,
            "timestamp": utcnow().isoformat(),
            "source": "backend",
        }
        try:
            response = await self._get_client().post(url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "n8n workflow failed",
                extra={"workflow": workflow_key, "url": url, "error": str(e)},
            )
            return {"success": False, "error": str(e)}

        logger.info("n8n workflow executed: %s (%d)", workflow_key, response.status_code)
        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        return {"success": True, "status": response.status_code, "data": data}

    async def payment_confirmed(
        self, order: Order, customer: CustomerSnapshot, payment_id: Optional[str]
    ) -> dict[str, Any]:
        """Announce a confirmed payment."""
        return await self.run(PAYMENT_CONFIRMED, build_payment_confirmed_payload(order, customer, payment_id))


def build_payment_confirmed_payload(
    order: Order, customer: CustomerSnapshot, payment_id: Optional[str]
) -> dict[str, Any]:
    """Flatten an order into the payment-confirmed workflow payload."""
    address = order.shippingAddress
    successful = order.get_successful_attempt()
    now = utcnow()
    estimated = order.estimatedDelivery or now + timedelta(days=7)
    tracking = order.shippingMethod.trackingNumber if order.shippingMethod else None

    return {
        "orderId": order.id,
        "orderNumber": order.orderNumber,
        "customerName": customer.name,
        "customerEmail": customer.email,
        "customerPhone": customer.phone,
        "amountPaid": order.pricing.total,
        "currency": order.pricing.currency,
        "paymentMethod": (successful.gatewayPaymentMethod if successful else None) or "razorpay",
        "paymentId": payment_id,
        "items": [
            {
                "name": item.name,
                "quantity": item.quantity,
                "price": item.discountedPrice,
                "total": item.total,
            }
            for item in order.items
        ],
        "shippingAddress": {
            "street": address.get("addressLine1", ""),
            "city": address.get("city", ""),
            "state": address.get("state", ""),
            "postalCode": address.get("pincode") or address.get("postalCode", ""),
            "country": address.get("country", "India"),
        },
        "orderDate": order.createdAt.isoformat(),
        "paymentDate": now.isoformat(),
        "estimatedDelivery": estimated.isoformat(),
        "trackingNumber": tracking or "Will be assigned soon",
    }
