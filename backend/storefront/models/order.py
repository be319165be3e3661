"""Order aggregate data models.

An order embeds its line-item snapshots, pricing, the payment sub-document
(with its list of gateway payment attempts) and an append-only timeline.

Payment attempt state machine::

    created -> attempted -> captured | failed

``captured`` and ``failed`` are terminal for an attempt. All attempt
mutations go through :meth:`Order.update_payment_attempt`, which applies the
change in memory and returns an :class:`AttemptTransition` describing it so
the store can persist the same change with a single conditional write.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from storefront.errors import AttemptNotFoundError, PaymentRetryNotAllowedError
from storefront.utils.helpers import generate_object_id, generate_order_number, utcnow

MAX_PAYMENT_ATTEMPTS = 5
UNPAID_ORDER_TTL_HOURS = 24


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    CREATED = "created"
    ATTEMPTED = "attempted"
    CAPTURED = "captured"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"


class ProductType(str, Enum):
    PRODUCT = "product"
    PREBUILT_PC = "prebuilt-pc"


class InvoiceStatus(str, Enum):
    GENERATED = "generated"
    FAILED = "failed"
    PENDING = "pending"


class TimelineEventType(str, Enum):
    ORDER_CREATED = "order_created"
    PAYMENT_ATTEMPT_CREATED = "payment_attempt_created"
    PAYMENT_ATTEMPTED = "payment_attempted"
    PAYMENT_CAPTURED = "payment_captured"
    PAYMENT_FAILED = "payment_failed"
    STOCK_REDUCED = "stock_reduced"
    STOCK_REDUCTION_FAILED = "stock_reduction_failed"
    INVOICE_GENERATED = "invoice_generated"
    INVOICE_GENERATION_FAILED = "invoice_generation_failed"


class _Document(BaseModel):
    """Base for Mongo-backed models: ``_id`` alias and plain enum values."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)


# ---------------------------------------------------------------------------
# Line items and pricing
# ---------------------------------------------------------------------------
class IdentifyingAttribute(BaseModel):
    key: str
    label: Optional[str] = None
    value: str


class VariantSnapshot(BaseModel):
    """Variant identity captured at order time."""

    variantId: str
    name: Optional[str] = None
    sku: Optional[str] = None
    identifyingAttributes: list[IdentifyingAttribute] = Field(default_factory=list)


class OrderItem(_Document):
    """Price/quantity snapshot of a line item. Never recalculated."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, frozen=True)

    id: str = Field(default_factory=generate_object_id, alias="_id")
    productType: ProductType
    product: str = Field(..., description="Product or prebuilt PC id")
    variant: Optional[VariantSnapshot] = None
    name: str
    sku: str
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    originalPrice: float = Field(..., ge=0)
    discountedPrice: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    taxRate: float = 0.18
    taxAmount: float = 0.0
    returnable: bool = True
    returnWindow: int = 7

    @property
    def variant_id(self) -> Optional[str]:
        return self.variant.variantId if self.variant else None


class Pricing(BaseModel):
    subtotal: float = Field(..., ge=0)
    shipping: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    discount: float = Field(default=0.0, ge=0)
    total: float = Field(..., ge=0)
    currency: str = "INR"
    amountPaid: float = 0.0
    amountDue: float = 0.0
    totalSavings: float = 0.0


class ShippingMethod(BaseModel):
    name: str
    deliveryDays: int
    cost: float
    trackingNumber: Optional[str] = None
    carrier: Optional[str] = None


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------
class PaymentAttempt(_Document):
    """One gateway order created for this order."""

    id: str = Field(default_factory=generate_object_id, alias="_id")
    razorpayOrderId: str
    razorpayPaymentId: Optional[str] = None
    razorpaySignature: Optional[str] = None
    amount: int = Field(..., ge=0, description="Amount in minor units")
    currency: str = "INR"
    status: PaymentStatus = PaymentStatus.CREATED
    gatewayPaymentMethod: Optional[str] = None
    gatewayResponse: dict[str, Any] = Field(default_factory=dict)
    signatureVerified: bool = False
    errorReason: Optional[str] = None
    razorpayExpiresAt: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)
    capturedAt: Optional[datetime] = None


class PaymentInfo(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    method: PaymentMethod = PaymentMethod.RAZORPAY
    status: PaymentStatus = PaymentStatus.CREATED
    attempts: list[PaymentAttempt] = Field(default_factory=list)
    currentAttemptId: Optional[str] = None
    lastAttemptAt: Optional[datetime] = None
    totalAttempts: int = 0
    retryAllowed: bool = True


class AttemptUpdate(BaseModel):
    """Partial update for a payment attempt. Only set fields are applied."""

    model_config = ConfigDict(use_enum_values=True)

    status: Optional[PaymentStatus] = None
    razorpayPaymentId: Optional[str] = None
    razorpaySignature: Optional[str] = None
    gatewayPaymentMethod: Optional[str] = None
    gatewayResponse: Optional[dict[str, Any]] = None
    signatureVerified: Optional[bool] = None
    errorReason: Optional[str] = None
    capturedAt: Optional[datetime] = None

    def fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Timeline, notes and invoices
# ---------------------------------------------------------------------------
class TimelineEvent(_Document):
    """Immutable audit record."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, frozen=True)

    id: str = Field(default_factory=generate_object_id, alias="_id")
    event: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    changedBy: Optional[str] = None
    changedAt: datetime = Field(default_factory=utcnow)


class AdminNote(BaseModel):
    note: str
    addedBy: Optional[str] = None
    addedAt: datetime = Field(default_factory=utcnow)


class AutoGeneratedInvoice(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    invoiceNumber: Optional[str] = None
    pdfPath: Optional[str] = None
    pdfUrl: Optional[str] = None
    generatedAt: Optional[datetime] = None
    version: int = 1
    status: InvoiceStatus = InvoiceStatus.PENDING
    error: Optional[str] = None
    attemptedAt: Optional[datetime] = None


class AdminUploadedInvoice(BaseModel):
    invoiceNumber: Optional[str] = None
    originalFileName: Optional[str] = None
    pdfPath: Optional[str] = None
    pdfUrl: Optional[str] = None
    uploadedAt: Optional[datetime] = None
    uploadedBy: Optional[str] = None
    notes: Optional[str] = None
    fileSize: Optional[int] = None
    mimeType: Optional[str] = None


class Invoices(BaseModel):
    autoGenerated: Optional[AutoGeneratedInvoice] = None
    adminUploaded: Optional[AdminUploadedInvoice] = None


# ---------------------------------------------------------------------------
# State transition record
# ---------------------------------------------------------------------------
class AttemptTransition(BaseModel):
    """Change produced by one call to :meth:`Order.update_payment_attempt`.

    ``priorStatus`` is the attempt status the change was computed against;
    the store only applies the change while the attempt still has it.
    """

    model_config = ConfigDict(use_enum_values=True)

    orderId: str
    attemptId: str
    priorStatus: PaymentStatus
    applied: bool = True
    attemptFields: dict[str, Any] = Field(default_factory=dict)
    orderFields: dict[str, Any] = Field(default_factory=dict)
    unsetExpiry: bool = False
    events: list[TimelineEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------
class Order(_Document):
    """Order model as stored in database."""

    id: str = Field(default_factory=generate_object_id, alias="_id")
    orderNumber: str
    user: str = Field(..., description="Owner user id")
    items: list[OrderItem] = Field(default_factory=list)
    pricing: Pricing
    shippingAddress: dict[str, Any] = Field(default_factory=dict)
    billingAddress: dict[str, Any] = Field(default_factory=dict)
    shippingMethod: Optional[ShippingMethod] = None
    estimatedDelivery: Optional[datetime] = None
    payment: PaymentInfo = Field(default_factory=PaymentInfo)
    status: OrderStatus = OrderStatus.PENDING
    orderTimeline: list[TimelineEvent] = Field(default_factory=list)
    adminNotes: list[AdminNote] = Field(default_factory=list)
    invoices: Invoices = Field(default_factory=Invoices)
    expiresAt: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    _attempt_index: dict[str, int] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._attempt_index = {a.id: i for i, a in enumerate(self.payment.attempts)}

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        user: str,
        items: list[OrderItem],
        pricing: Pricing,
        *,
        shipping_address: Optional[dict[str, Any]] = None,
        billing_address: Optional[dict[str, Any]] = None,
        shipping_method: Optional[ShippingMethod] = None,
        ttl_hours: int = UNPAID_ORDER_TTL_HOURS,
        now: Optional[datetime] = None,
    ) -> "Order":
        """Create a new unpaid order that expires after ``ttl_hours``."""
        now = now or utcnow()
        savings = sum(
            (item.originalPrice - item.discountedPrice) * item.quantity for item in items
        )
        pricing = pricing.model_copy(
            update={
                "amountPaid": 0.0,
                "amountDue": pricing.total,
                "totalSavings": round(savings, 2),
            }
        )
        order = cls(
            orderNumber=generate_order_number(now),
            user=user,
            items=items,
            pricing=pricing,
            shippingAddress=shipping_address or {},
            billingAddress=billing_address or shipping_address or {},
            shippingMethod=shipping_method,
            expiresAt=now + timedelta(hours=ttl_hours),
            createdAt=now,
            updatedAt=now,
        )
        order.add_timeline_event(
            TimelineEventType.ORDER_CREATED, "Order was created", actor=user, now=now
        )
        return order

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Order":
        return cls.model_validate(document)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    @property
    def is_paid(self) -> bool:
        return (
            self.payment.status == PaymentStatus.CAPTURED
            or self.get_successful_attempt() is not None
        )

    @property
    def stock_reduced(self) -> bool:
        return self.has_event(TimelineEventType.STOCK_REDUCED)

    @property
    def current_payment_attempt(self) -> Optional[PaymentAttempt]:
        if not self.payment.currentAttemptId:
            return None
        return self.get_attempt(self.payment.currentAttemptId)

    @property
    def has_auto_generated_invoice(self) -> bool:
        auto = self.invoices.autoGenerated
        return bool(auto and auto.pdfPath)

    @property
    def has_admin_uploaded_invoice(self) -> bool:
        uploaded = self.invoices.adminUploaded
        return bool(uploaded and uploaded.pdfPath)

    @property
    def all_invoices(self) -> list[dict[str, Any]]:
        invoices = []
        if self.has_auto_generated_invoice:
            auto = self.invoices.autoGenerated
            invoices.append(
                {
                    "type": "auto_generated",
                    "invoiceNumber": auto.invoiceNumber,
                    "pdfUrl": auto.pdfUrl,
                    "generatedAt": auto.generatedAt,
                    "version": auto.version,
                    "source": "system",
                }
            )
        if self.has_admin_uploaded_invoice:
            uploaded = self.invoices.adminUploaded
            invoices.append(
                {
                    "type": "admin_uploaded",
                    "invoiceNumber": uploaded.invoiceNumber,
                    "originalFileName": uploaded.originalFileName,
                    "pdfUrl": uploaded.pdfUrl,
                    "uploadedAt": uploaded.uploadedAt,
                    "uploadedBy": uploaded.uploadedBy,
                    "source": "admin",
                }
            )
        return invoices

    def has_event(self, event: TimelineEventType) -> bool:
        return any(e.event == event for e in self.orderTimeline)

    def get_attempt(self, attempt_id: str) -> Optional[PaymentAttempt]:
        index = self._attempt_index.get(str(attempt_id))
        if index is None:
            return None
        return self.payment.attempts[index]

    def find_attempt(
        self,
        razorpay_order_id: Optional[str] = None,
        attempt_id: Optional[str] = None,
    ) -> Optional[PaymentAttempt]:
        """Find an attempt by gateway order id, falling back to attempt id."""
        if razorpay_order_id:
            for attempt in self.payment.attempts:
                if attempt.razorpayOrderId == razorpay_order_id:
                    return attempt
        if attempt_id:
            return self.get_attempt(attempt_id)
        return None

    def find_attempt_by_payment_id(self, razorpay_payment_id: str) -> Optional[PaymentAttempt]:
        for attempt in self.payment.attempts:
            if attempt.razorpayPaymentId == razorpay_payment_id:
                return attempt
        return None

    def get_successful_attempt(self) -> Optional[PaymentAttempt]:
        for attempt in self.payment.attempts:
            if attempt.status == PaymentStatus.CAPTURED:
                return attempt
        return None

    def can_retry_payment(self, max_attempts: int = MAX_PAYMENT_ATTEMPTS) -> bool:
        return (
            self.payment.retryAllowed
            and self.payment.status != PaymentStatus.CAPTURED
            and self.status == OrderStatus.PENDING
            and self.payment.totalAttempts < max_attempts
        )

    def ensure_payment_allowed(self, max_attempts: int = MAX_PAYMENT_ATTEMPTS) -> None:
        """Raise unless a new payment attempt may be created."""
        if self.status != OrderStatus.PENDING:
            raise PaymentRetryNotAllowedError(
                f"Cannot create a payment attempt for a {self.status} order"
            )
        if not self.can_retry_payment(max_attempts):
            raise PaymentRetryNotAllowedError(
                "Maximum payment attempts reached. Please contact support."
            )

    # -------------------------------------------------------------------
    # Timeline
    # -------------------------------------------------------------------
    def add_timeline_event(
        self,
        event: TimelineEventType,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
        *,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TimelineEvent:
        entry = TimelineEvent(
            event=event.value if isinstance(event, Enum) else event,
            message=message,
            metadata=metadata or {},
            changedBy=actor,
            changedAt=now or utcnow(),
        )
        self.orderTimeline.append(entry)
        return entry

    def add_admin_note(self, note: str, *, actor: Optional[str] = None) -> AdminNote:
        entry = AdminNote(note=note, addedBy=actor)
        self.adminNotes.append(entry)
        return entry

    # -------------------------------------------------------------------
    # Payment attempts
    # -------------------------------------------------------------------
    def create_payment_attempt(
        self,
        razorpay_order_id: str,
        amount: int,
        currency: Optional[str] = None,
        razorpay_expires_at: Optional[int] = None,
        *,
        max_attempts: int = MAX_PAYMENT_ATTEMPTS,
        now: Optional[datetime] = None,
    ) -> tuple[PaymentAttempt, TimelineEvent]:
        """Append a new attempt for a gateway order. Returns it with its event."""
        self.ensure_payment_allowed(max_attempts)

        now = now or utcnow()
        attempt = PaymentAttempt(
            razorpayOrderId=razorpay_order_id,
            amount=amount,
            currency=currency or self.pricing.currency,
            razorpayExpiresAt=(
                datetime.fromtimestamp(razorpay_expires_at, tz=now.tzinfo)
                if razorpay_expires_at
                else None
            ),
            createdAt=now,
        )
        self.payment.attempts.append(attempt)
        self._attempt_index[attempt.id] = len(self.payment.attempts) - 1

        self.payment.currentAttemptId = attempt.id
        # A new attempt resets the mirrored status
        self.payment.status = PaymentStatus.CREATED
        self.payment.lastAttemptAt = now
        self.payment.totalAttempts += 1
        if self.payment.totalAttempts >= max_attempts:
            self.payment.retryAllowed = False
        self.updatedAt = now

        event = self.add_timeline_event(
            TimelineEventType.PAYMENT_ATTEMPT_CREATED,
            "New payment attempt created",
            {
                "attemptId": attempt.id,
                "razorpayOrderId": razorpay_order_id,
                "amount": amount,
                "totalAttempts": self.payment.totalAttempts,
            },
            now=now,
        )
        return attempt, event

    def update_payment_attempt(
        self,
        attempt_id: str,
        update: AttemptUpdate,
        *,
        actor: Optional[str] = None,
        event: Optional[TimelineEventType] = None,
        message: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> AttemptTransition:
        """Apply ``update`` to an attempt and derive the order-level changes.

        ``event``, ``message`` and ``metadata`` override the timeline entry
        that the new status would otherwise produce.
        """
        attempt = self.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(f"Payment attempt {attempt_id} not found")

        transition = AttemptTransition(
            orderId=self.id,
            attemptId=attempt.id,
            priorStatus=attempt.status,
        )

        # Once captured, the order no longer accepts payment changes. A failed
        # attempt only moves again if the gateway later captures on it.
        if self.get_successful_attempt() is not None or (
            attempt.status == PaymentStatus.FAILED and update.status != PaymentStatus.CAPTURED
        ):
            transition.applied = False
            return transition

        now = now or utcnow()
        fields = update.fields()
        for name, value in fields.items():
            setattr(attempt, name, value)
        transition.attemptFields = fields

        status = update.status
        if status:
            self.payment.status = status
            transition.orderFields["payment.status"] = status

        default_event = None
        default_message = None
        default_metadata: dict[str, Any] = {"attemptId": attempt.id}

        if status == PaymentStatus.ATTEMPTED:
            default_event = TimelineEventType.PAYMENT_ATTEMPTED
            default_message = "User attempted payment"
            default_metadata["razorpayPaymentId"] = update.razorpayPaymentId
        elif status == PaymentStatus.CAPTURED:
            if self.status != OrderStatus.CONFIRMED:
                self.status = OrderStatus.CONFIRMED
                self.pricing.amountPaid = self.pricing.total
                self.pricing.amountDue = 0.0
                self.expiresAt = None
                transition.orderFields.update(
                    {
                        "status": OrderStatus.CONFIRMED.value,
                        "pricing.amountPaid": self.pricing.total,
                        "pricing.amountDue": 0.0,
                    }
                )
                transition.unsetExpiry = True
            default_event = TimelineEventType.PAYMENT_CAPTURED
            default_message = "Payment was successfully captured"
            default_metadata["razorpayPaymentId"] = update.razorpayPaymentId
            default_metadata["gatewayPaymentMethod"] = update.gatewayPaymentMethod
        elif status == PaymentStatus.FAILED:
            default_event = TimelineEventType.PAYMENT_FAILED
            default_message = "Payment attempt failed"
            default_metadata["errorReason"] = update.errorReason

        event = event or default_event
        if event is not None:
            entry = self.add_timeline_event(
                event,
                message or default_message or event.value,
                {**default_metadata, **(metadata or {})},
                actor=actor,
                now=now,
            )
            transition.events.append(entry)

        self.updatedAt = now
        transition.orderFields["updatedAt"] = now
        return transition
