"""Payment flow: gateway order creation, verification, status and webhooks.

Every entry point funnels attempt changes through
:meth:`Order.update_payment_attempt` and persists them with a conditional
write keyed on the attempt's prior status. Whichever of the client verify
call and the gateway webhook lands first captures the payment; the other
becomes a no-op.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol, Sequence

from pydantic import ValidationError

from storefront.config import Settings, get_settings
from storefront.errors import (
    AttemptNotFoundError,
    ConcurrentUpdateError,
    ErrorKind,
    OrderNotFoundError,
    PaymentValidationError,
    ServiceResult,
    StorefrontError,
)
from storefront.models.order import (
    AttemptTransition,
    AttemptUpdate,
    AutoGeneratedInvoice,
    InvoiceStatus,
    Order,
    PaymentAttempt,
    PaymentStatus,
    TimelineEvent,
    TimelineEventType,
)
from storefront.models.request import VerifyPaymentRequest
from storefront.models.user import CustomerSnapshot
from storefront.services.cart_service import CartService
from storefront.services.gateway import GatewayPayment, PaymentGateway, WebhookEvent
from storefront.services.invoice_service import InvoiceService
from storefront.services.notification_service import NotificationService
from storefront.services.stock_service import StockService
from storefront.services.user_service import UserService
from storefront.utils.helpers import to_minor_units, utcnow

logger = logging.getLogger(__name__)

WEBHOOK_CAPTURE_RETRIES = 3


class OrderStore(Protocol):
    async def get(self, order_id: str) -> Optional[Order]: ...

    async def get_for_user(self, order_id: str, user_id: str) -> Optional[Order]: ...

    async def find_by_razorpay_order_id(self, razorpay_order_id: str) -> Optional[Order]: ...

    async def add_payment_attempt(
        self, order: Order, attempt: PaymentAttempt, event: TimelineEvent, prior_total_attempts: int
    ) -> bool: ...

    async def apply_transition(self, transition: AttemptTransition) -> bool: ...

    async def push_timeline(self, order_id: str, events: Sequence[TimelineEvent], admin_notes: Sequence = ()) -> None: ...

    async def save_auto_invoice(self, order_id: str, invoice: AutoGeneratedInvoice, event: TimelineEvent) -> None: ...


class PaymentService:
    """Service for the order payment lifecycle."""

    def __init__(
        self,
        orders: OrderStore,
        gateway: PaymentGateway,
        stock: StockService,
        carts: CartService,
        invoices: InvoiceService,
        notifier: NotificationService,
        users: UserService,
        settings: Optional[Settings] = None,
    ) -> None:
        self.orders = orders
        self.gateway = gateway
        self.stock = stock
        self.carts = carts
        self.invoices = invoices
        self.notifier = notifier
        self.users = users
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------
    # Create gateway order
    # -------------------------------------------------------------------
    async def create_payment_order(self, order_id: str, user_id: str) -> ServiceResult:
        """Create a gateway order and a new payment attempt for ``order_id``."""
        try:
            return await self._create_payment_order(order_id, user_id)
        except StorefrontError as e:
            logger.warning(
                "Create payment order failed: %s",
                e.message,
                extra={"order_id": order_id, "user_id": user_id, "error_kind": e.kind.value},
            )
            return ServiceResult.from_error(e)

    async def _create_payment_order(self, order_id: str, user_id: str) -> ServiceResult:
        order = await self.orders.get_for_user(order_id, user_id)
        if order is None:
            raise OrderNotFoundError("Order not found")

        if order.is_paid:
            return ServiceResult.ok(
                "Order already paid",
                alreadyPaid=True,
                orderId=order.id,
                orderNumber=order.orderNumber,
            )

        max_attempts = self.settings.max_payment_attempts
        order.ensure_payment_allowed(max_attempts)

        if order.pricing.total <= 0:
            raise PaymentValidationError("Invalid order amount")

        gateway_order = await self.gateway.create_order(
            amount=to_minor_units(order.pricing.total),
            currency=order.pricing.currency or self.settings.default_currency,
            receipt=order.orderNumber,
            notes={"orderId": order.id, "userId": user_id, "orderNumber": order.orderNumber},
        )

        prior_total = order.payment.totalAttempts
        attempt, event = order.create_payment_attempt(
            gateway_order.id,
            gateway_order.amount,
            gateway_order.currency,
            gateway_order.expire_at,
            max_attempts=max_attempts,
        )
        if not await self.orders.add_payment_attempt(order, attempt, event, prior_total):
            raise ConcurrentUpdateError("Order changed while creating the payment attempt")

        logger.info(
            "Payment attempt created",
            extra={
                "order_id": order.id,
                "attempt_id": attempt.id,
                "razorpay_order_id": gateway_order.id,
                "total_attempts": order.payment.totalAttempts,
            },
        )
        return ServiceResult.ok(
            "Payment order created",
            razorpayOrderId=gateway_order.id,
            amount=gateway_order.amount,
            currency=gateway_order.currency,
            orderId=order.id,
            attemptId=attempt.id,
        )

    # -------------------------------------------------------------------
    # Verify
    # -------------------------------------------------------------------
    async def verify_payment(self, request: VerifyPaymentRequest, user_id: str) -> ServiceResult:
        """Verify a checkout callback and commit the payment.

        Checks run in order and stop at the first failure: required
        fields, ownership, idempotency, attempt lookup, signature,
        authoritative gateway fetch, amount, captured status. Integrity
        failures are recorded on the attempt before being returned.
        """
        try:
            return await self._verify_payment(request, user_id)
        except StorefrontError as e:
            logger.warning(
                "Payment verification failed: %s",
                e.message,
                extra={
                    "order_id": request.orderId,
                    "razorpay_payment_id": request.razorpay_payment_id,
                    "error_kind": e.kind.value,
                },
            )
            return ServiceResult.from_error(e)

    async def _verify_payment(self, request: VerifyPaymentRequest, user_id: str) -> ServiceResult:
        gateway_order_id = request.razorpay_order_id
        payment_id = request.razorpay_payment_id
        signature = request.razorpay_signature
        if not (gateway_order_id and payment_id and signature):
            raise PaymentValidationError("Missing required payment verification fields")

        order = await self.orders.get_for_user(request.orderId, user_id)
        if order is None:
            raise OrderNotFoundError("Order not found")

        if order.is_paid and order.stock_reduced:
            successful = order.get_successful_attempt()
            return ServiceResult.ok(
                "Payment already verified",
                alreadyVerified=True,
                orderId=order.id,
                orderNumber=order.orderNumber,
                paymentId=successful.razorpayPaymentId if successful else payment_id,
                amount=order.pricing.total,
                status=order.status,
                stockReduced=True,
            )

        attempt = order.find_attempt(gateway_order_id, request.attemptId)
        if attempt is None:
            raise AttemptNotFoundError("Payment attempt not found")

        log_extra = {"order_id": order.id, "attempt_id": attempt.id, "razorpay_payment_id": payment_id}

        if not self.gateway.verify_payment_signature(gateway_order_id, payment_id, signature):
            logger.warning("Payment signature mismatch", extra=log_extra)
            await self._record(
                order.update_payment_attempt(
                    attempt.id,
                    AttemptUpdate(
                        status=PaymentStatus.ATTEMPTED,
                        signatureVerified=False,
                        errorReason="Signature verification failed",
                    ),
                    actor=user_id,
                    event=TimelineEventType.PAYMENT_FAILED,
                    message="Payment signature verification failed",
                    metadata={"errorReason": "Signature verification failed"},
                )
            )
            raise PaymentValidationError("Invalid payment signature")

        payment = await self.gateway.fetch_payment(payment_id)
        if payment.order_id != attempt.razorpayOrderId:
            logger.warning(
                "Payment belongs to another gateway order",
                extra={**log_extra, "payment_order_id": payment.order_id},
            )
            raise PaymentValidationError("Payment does not belong to this order")

        expected_amount = to_minor_units(order.pricing.total)
        if payment.amount != expected_amount:
            logger.warning(
                "Payment amount mismatch",
                extra={**log_extra, "expected": expected_amount, "received": payment.amount},
            )
            await self._fail_attempt(
                order,
                attempt,
                payment,
                reason="Amount mismatch",
                message=f"Amount mismatch. Expected: {expected_amount}, Got: {payment.amount}",
                actor=user_id,
            )
            raise PaymentValidationError("Payment amount mismatch")

        if not payment.is_captured:
            logger.warning("Payment not captured: %s", payment.status, extra=log_extra)
            await self._fail_attempt(
                order,
                attempt,
                payment,
                reason=f"Payment status: {payment.status}",
                message=f"Payment not captured. Status: {payment.status}",
                actor=user_id,
            )
            raise PaymentValidationError("Payment not completed successfully")

        order = await self._capture(
            order,
            attempt,
            AttemptUpdate(
                status=PaymentStatus.CAPTURED,
                razorpayPaymentId=payment.id,
                razorpaySignature=signature,
                gatewayPaymentMethod=payment.method,
                gatewayResponse=payment.snapshot(),
                signatureVerified=True,
                capturedAt=utcnow(),
            ),
            actor=user_id,
        )
        logger.info("Payment captured", extra=log_extra)

        await self._after_capture(order, payment.id, actor=user_id)

        return ServiceResult.ok(
            "Payment verified successfully",
            orderId=order.id,
            orderNumber=order.orderNumber,
            paymentId=payment.id,
            amount=order.pricing.total,
            status=order.status,
            stockReduced=True,
        )

    async def _capture(
        self,
        order: Order,
        attempt: PaymentAttempt,
        update: AttemptUpdate,
        actor: Optional[str],
    ) -> Order:
        """Mark ``attempt`` captured and persist it. Returns the paid order.

        A capture already committed by a concurrent caller counts as success.
        """
        transition = order.update_payment_attempt(attempt.id, update, actor=actor)
        if not transition.applied:
            if order.is_paid:
                return order
            raise PaymentValidationError("Payment attempt is no longer payable")

        if await self.orders.apply_transition(transition):
            return order

        current = await self.orders.get(order.id)
        if current is not None and current.is_paid:
            logger.info(
                "Payment was captured concurrently",
                extra={"order_id": order.id, "attempt_id": attempt.id},
            )
            return current
        raise ConcurrentUpdateError("Failed to update order payment status")

    async def _fail_attempt(
        self,
        order: Order,
        attempt: PaymentAttempt,
        payment: GatewayPayment,
        reason: str,
        message: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> None:
        await self._record(
            order.update_payment_attempt(
                attempt.id,
                AttemptUpdate(
                    status=PaymentStatus.FAILED,
                    razorpayPaymentId=payment.id,
                    gatewayPaymentMethod=payment.method,
                    gatewayResponse=payment.snapshot(),
                    errorReason=reason,
                ),
                actor=actor,
                message=message,
            )
        )

    async def _record(self, transition: AttemptTransition) -> bool:
        if not transition.applied:
            return False
        return await self.orders.apply_transition(transition)

    # -------------------------------------------------------------------
    # Post-capture side effects
    # -------------------------------------------------------------------
    async def _after_capture(self, order: Order, payment_id: Optional[str], actor: Optional[str]) -> None:
        """Run side effects of a committed payment. Never raises."""
        try:
            await self.stock.reduce_stock_for_order(order, actor=actor)
        except Exception as e:
            logger.error("Stock reduction raised: %s", e, extra={"order_id": order.id}, exc_info=True)

        try:
            customer = await self.users.customer_snapshot(order.user, order.shippingAddress)
        except Exception as e:
            logger.error("Customer lookup failed: %s", e, extra={"order_id": order.id})
            customer = CustomerSnapshot.build(order.shippingAddress, None)

        outcomes = await asyncio.gather(
            self._clear_cart(order),
            self._generate_invoice(order, customer, actor),
            self._notify(order, customer, payment_id),
            return_exceptions=True,
        )
        for name, outcome in zip(("cart", "invoice", "notification"), outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Post-payment %s step failed: %s",
                    name,
                    outcome,
                    extra={"order_id": order.id},
                    exc_info=outcome,
                )

    async def _clear_cart(self, order: Order) -> None:
        await self.carts.clear_cart(order.user)

    async def _generate_invoice(self, order: Order, customer: CustomerSnapshot, actor: Optional[str]) -> None:
        if order.has_auto_generated_invoice:
            return
        try:
            invoice = await self.invoices.generate_auto_invoice(order, customer)
        except Exception as e:
            logger.error("Automatic invoice generation failed: %s", e, extra={"order_id": order.id}, exc_info=True)
            failed = AutoGeneratedInvoice(status=InvoiceStatus.FAILED, error=str(e), attemptedAt=utcnow())
            event = order.add_timeline_event(
                TimelineEventType.INVOICE_GENERATION_FAILED,
                "Automatic invoice generation failed after payment",
                {"error": str(e)},
                actor=actor,
            )
            order.invoices.autoGenerated = failed
            await self.orders.save_auto_invoice(order.id, failed, event)
            return

        event = order.add_timeline_event(
            TimelineEventType.INVOICE_GENERATED,
            "Invoice automatically generated after payment verification",
            {"invoiceNumber": invoice.invoiceNumber, "type": "auto_generated"},
            actor=actor,
        )
        order.invoices.autoGenerated = invoice
        await self.orders.save_auto_invoice(order.id, invoice, event)

    async def _notify(self, order: Order, customer: CustomerSnapshot, payment_id: Optional[str]) -> None:
        result = await self.notifier.payment_confirmed(order, customer, payment_id)
        if not result.get("success") and not result.get("skipped"):
            logger.warning(
                "Payment confirmation notification not delivered: %s",
                result.get("error"),
                extra={"order_id": order.id},
            )

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------
    async def get_payment_status(self, order_id: str, user_id: str) -> ServiceResult:
        """Payment summary for an order owned by ``user_id``."""
        order = await self.orders.get_for_user(order_id, user_id)
        if order is None:
            return ServiceResult.fail(ErrorKind.NOT_FOUND, "Order not found")

        current = order.current_payment_attempt
        return ServiceResult.ok(
            "Payment status retrieved",
            orderId=order.id,
            orderNumber=order.orderNumber,
            status=order.status,
            paymentStatus=order.payment.status,
            amountPaid=order.pricing.amountPaid,
            amountDue=order.pricing.amountDue,
            isPaid=order.is_paid,
            currentAttempt=_attempt_summary(current) if current else None,
            retryAllowed=order.payment.retryAllowed,
            totalAttempts=order.payment.totalAttempts,
        )

    # -------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------
    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> ServiceResult:
        """Reconcile a gateway webhook delivery.

        Only a bad signature is reported as a failure. Once the signature
        checks out the delivery is acknowledged even if processing fails,
        so the gateway does not keep retrying it.
        """
        if not self.gateway.verify_webhook_signature(body, signature):
            logger.warning("Webhook signature verification failed")
            return ServiceResult.fail(ErrorKind.BAD_REQUEST, "Invalid signature")

        try:
            event = WebhookEvent.model_validate_json(body)
            await self._dispatch_webhook(event)
        except ValidationError as e:
            logger.error("Malformed webhook payload: %s", e)
        except Exception as e:
            logger.error("Webhook processing failed: %s", e, exc_info=True)

        return ServiceResult.ok("Webhook processed")

    async def _dispatch_webhook(self, event: WebhookEvent) -> None:
        payment = event.payment
        if event.event == "payment.captured" and payment is not None:
            await self._on_payment_captured(payment)
        elif event.event == "payment.failed" and payment is not None:
            await self._on_payment_failed(payment)
        else:
            logger.info("Ignoring webhook event %s", event.event)

    async def _locate(self, payment: GatewayPayment) -> tuple[Optional[Order], Optional[PaymentAttempt]]:
        """Find the order and attempt a gateway payment belongs to.

        Only the gateway order id on the signed payment is trusted; payment
        ids stored on attempts may come from unverified client input.
        """
        if not payment.order_id:
            logger.warning("Webhook payment has no order id", extra={"razorpay_payment_id": payment.id})
            return None, None

        order = await self.orders.find_by_razorpay_order_id(payment.order_id)
        if order is None:
            logger.warning("No order for webhook payment", extra={"razorpay_payment_id": payment.id})
            return None, None

        attempt = order.find_attempt(payment.order_id)
        if attempt is None:
            logger.warning(
                "No attempt for webhook payment",
                extra={"order_id": order.id, "razorpay_payment_id": payment.id},
            )
            return None, None
        return order, attempt

    async def _on_payment_captured(self, payment: GatewayPayment) -> None:
        for _ in range(WEBHOOK_CAPTURE_RETRIES):
            order, attempt = await self._locate(payment)
            if order is None or attempt is None:
                return
            if order.is_paid:
                logger.info("Webhook capture for paid order ignored", extra={"order_id": order.id})
                return

            expected_amount = to_minor_units(order.pricing.total)
            if payment.amount != expected_amount:
                logger.warning(
                    "Webhook payment amount mismatch",
                    extra={"order_id": order.id, "expected": expected_amount, "received": payment.amount},
                )
                await self._fail_attempt(
                    order,
                    attempt,
                    payment,
                    reason="Amount mismatch",
                    message=f"Amount mismatch. Expected: {expected_amount}, Got: {payment.amount}",
                )
                return

            transition = order.update_payment_attempt(
                attempt.id,
                AttemptUpdate(
                    status=PaymentStatus.CAPTURED,
                    razorpayPaymentId=payment.id,
                    gatewayPaymentMethod=payment.method,
                    gatewayResponse=payment.snapshot(),
                    capturedAt=utcnow(),
                ),
                message="Payment captured via webhook",
                metadata={"source": "webhook"},
            )
            if not transition.applied:
                logger.info("Webhook capture not applicable", extra={"order_id": order.id, "attempt_id": attempt.id})
                return

            if await self.orders.apply_transition(transition):
                logger.info(
                    "Payment captured via webhook",
                    extra={"order_id": order.id, "attempt_id": attempt.id, "razorpay_payment_id": payment.id},
                )
                await self._after_capture(order, payment.id, actor=order.user)
                return

        logger.error("Webhook capture lost every update race", extra={"razorpay_payment_id": payment.id})

    async def _on_payment_failed(self, payment: GatewayPayment) -> None:
        order, attempt = await self._locate(payment)
        if order is None or attempt is None:
            return
        if attempt.status == PaymentStatus.FAILED:
            return

        await self._record(
            order.update_payment_attempt(
                attempt.id,
                AttemptUpdate(
                    status=PaymentStatus.FAILED,
                    razorpayPaymentId=payment.id,
                    gatewayPaymentMethod=payment.method,
                    gatewayResponse=payment.snapshot(),
                    errorReason=payment.error_description or "Payment failed",
                ),
                metadata={"source": "webhook"},
            )
        )
        logger.info("Payment failure recorded via webhook", extra={"order_id": order.id, "attempt_id": attempt.id})


def _attempt_summary(attempt: PaymentAttempt) -> dict[str, Any]:
    return {
        "attemptId": attempt.id,
        "razorpayOrderId": attempt.razorpayOrderId,
        "razorpayPaymentId": attempt.razorpayPaymentId,
        "amount": attempt.amount,
        "currency": attempt.currency,
        "status": attempt.status,
        "errorReason": attempt.errorReason,
        "createdAt": attempt.createdAt,
        "capturedAt": attempt.capturedAt,
    }
