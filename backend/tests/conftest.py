"""Shared fixtures: in-memory stores, a signing fake gateway and recorders."""

import copy
from typing import Any, Callable, Optional

import pytest

from storefront.config import Settings
from storefront.database.inventory import stock_miss_error
from storefront.errors import GatewayRequestError, StockReservationError
from storefront.models.order import (
    AttemptTransition,
    AutoGeneratedInvoice,
    InvoiceStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentAttempt,
    Pricing,
    ProductType,
    TimelineEvent,
    TimelineEventType,
    VariantSnapshot,
)
from storefront.models.product import ProductStatus, StockLine, StockReductionResults
from storefront.models.user import CustomerSnapshot
from storefront.services.gateway import GatewayOrder, GatewayPayment, PaymentGateway
from storefront.services.payment_service import PaymentService
from storefront.services.stock_service import StockService
from storefront.utils.helpers import hmac_sha256_hex, signatures_match

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "whsec_test"
USER_ID = "user_001"

KEYBOARD_ID = "prod_keyboard"
MOUSE_ID = "prod_mouse"
BLACK_VARIANT_ID = "var_black"
WHITE_VARIANT_ID = "var_white"
PC_ID = "pc_starter"


def _set_path(document: dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    for key in parents:
        document = document.setdefault(key, {})
    document[leaf] = value


class InMemoryOrderStore:
    """Order store holding plain documents, with the same conditional-write rules."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.transitions: list[AttemptTransition] = []
        self.before_apply: Optional[Callable[[dict[str, Any]], None]] = None

    def add(self, order: Order) -> Order:
        self.documents[order.id] = copy.deepcopy(order.to_document())
        return order

    def load(self, order_id: str) -> Order:
        return Order.from_document(copy.deepcopy(self.documents[order_id]))

    def events(self, order_id: str) -> list[str]:
        return [entry["event"] for entry in self.documents[order_id]["orderTimeline"]]

    async def get(self, order_id: str) -> Optional[Order]:
        if order_id not in self.documents:
            return None
        return self.load(order_id)

    async def get_for_user(self, order_id: str, user_id: str) -> Optional[Order]:
        document = self.documents.get(order_id)
        if document is None or document["user"] != user_id:
            return None
        return self.load(order_id)

    async def _find_attempt_field(self, field: str, value: str) -> Optional[Order]:
        for order_id, document in self.documents.items():
            if any(a.get(field) == value for a in document["payment"].get("attempts", [])):
                return self.load(order_id)
        return None

    async def find_by_razorpay_order_id(self, razorpay_order_id: str) -> Optional[Order]:
        return await self._find_attempt_field("razorpayOrderId", razorpay_order_id)

    async def add_payment_attempt(
        self, order: Order, attempt: PaymentAttempt, event: TimelineEvent, prior_total_attempts: int
    ) -> bool:
        document = self.documents[order.id]
        if (
            document["status"] != OrderStatus.PENDING.value
            or document["payment"].get("totalAttempts", 0) != prior_total_attempts
        ):
            return False
        self.documents[order.id] = copy.deepcopy(order.to_document())
        return True

    async def apply_transition(self, transition: AttemptTransition) -> bool:
        document = self.documents.get(transition.orderId)
        if document is None:
            return False
        if self.before_apply is not None:
            hook, self.before_apply = self.before_apply, None
            hook(document)

        attempt = next(
            (
                a
                for a in document["payment"]["attempts"]
                if a["_id"] == transition.attemptId and a["status"] == transition.priorStatus
            ),
            None,
        )
        if attempt is None:
            return False

        attempt.update(copy.deepcopy(transition.attemptFields))
        for path, value in transition.orderFields.items():
            _set_path(document, path, value)
        document["orderTimeline"].extend(e.model_dump(by_alias=True) for e in transition.events)
        if transition.unsetExpiry:
            document.pop("expiresAt", None)
        self.transitions.append(transition)
        return True

    async def push_timeline(self, order_id, events, admin_notes=()) -> None:
        document = self.documents[order_id]
        document["orderTimeline"].extend(e.model_dump(by_alias=True) for e in events)
        document.setdefault("adminNotes", []).extend(n.model_dump() for n in admin_notes)

    async def save_auto_invoice(self, order_id: str, invoice: AutoGeneratedInvoice, event: TimelineEvent) -> None:
        document = self.documents[order_id]
        document.setdefault("invoices", {})["autoGenerated"] = invoice.model_dump(exclude_none=True)
        document["orderTimeline"].append(event.model_dump(by_alias=True))


class InMemoryInventory:
    """All-or-nothing stock reservation over in-memory product documents."""

    def __init__(self, orders: InMemoryOrderStore) -> None:
        self.orders = orders
        self.products: dict[str, dict[str, Any]] = {}
        self.prebuilt_pcs: dict[str, dict[str, Any]] = {}
        self.reservations = 0

    def _collection_for(self, item: OrderItem) -> dict[str, dict[str, Any]]:
        return self.prebuilt_pcs if item.productType == ProductType.PREBUILT_PC else self.products

    async def reserve_for_order(self, order: Order, claim_event: TimelineEvent) -> StockReductionResults:
        results = StockReductionResults()
        timeline = self.orders.documents[order.id]["orderTimeline"]
        if any(e["event"] == TimelineEventType.STOCK_REDUCED.value for e in timeline):
            results.alreadyReduced = True
            return results

        snapshot = copy.deepcopy((self.products, self.prebuilt_pcs))
        for item in order.items:
            document = self._collection_for(item).get(item.product)
            target = document
            if document is not None and item.variant_id:
                target = next((v for v in document["variants"] if v["_id"] == item.variant_id), None)
            if target is None or target["stockQuantity"] < item.quantity:
                self.products, self.prebuilt_pcs = snapshot
                error = stock_miss_error(item, document)
                results.failed.append(StockLine.for_item(item, error.message))
                results.rolledBack, results.successful = results.successful, []
                raise StockReservationError(error, results)

            target["stockQuantity"] -= item.quantity
            if target["stockQuantity"] == 0:
                if item.variant_id or item.productType == ProductType.PREBUILT_PC:
                    target["isActive"] = False
                elif document.get("status") == ProductStatus.PUBLISHED.value:
                    document["status"] = ProductStatus.OUT_OF_STOCK.value
            results.successful.append(StockLine.for_item(item))

        timeline.append(claim_event.model_dump(by_alias=True))
        self.reservations += 1
        return results


class FakeGateway(PaymentGateway):
    """Gateway double that signs with real HMAC-SHA256."""

    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.payments: dict[str, GatewayPayment] = {}
        self.next_order_ids: list[str] = []
        self.fetch_error: Optional[Exception] = None
        self.fetched: list[str] = []

    async def create_order(self, amount, currency, receipt, notes=None) -> GatewayOrder:
        order_id = self.next_order_ids.pop(0) if self.next_order_ids else f"order_{len(self.created) + 1:04d}"
        self.created.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        return GatewayOrder(id=order_id, amount=amount, currency=currency, receipt=receipt, status="created")

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self.fetched.append(payment_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        if payment_id not in self.payments:
            raise GatewayRequestError("Payment gateway error: The id provided does not exist")
        return self.payments[payment_id]

    def add_payment(
        self,
        payment_id: str,
        order_id: str,
        amount: int,
        status: str = "captured",
        method: str = "upi",
        **extra: Any,
    ) -> GatewayPayment:
        payment = GatewayPayment(
            id=payment_id, amount=amount, status=status, method=method, order_id=order_id, **extra
        )
        self.payments[payment_id] = payment
        return payment

    @staticmethod
    def sign(order_id: str, payment_id: str) -> str:
        return hmac_sha256_hex(f"{order_id}|{payment_id}", KEY_SECRET)

    @staticmethod
    def sign_webhook(body: bytes) -> str:
        return hmac_sha256_hex(body, WEBHOOK_SECRET)

    def verify_payment_signature(self, order_id, payment_id, signature) -> bool:
        return signatures_match(self.sign(order_id, payment_id), signature)

    def verify_webhook_signature(self, body, signature) -> bool:
        return signatures_match(self.sign_webhook(body), signature)


class RecordingCarts:
    def __init__(self) -> None:
        self.cleared: list[str] = []

    async def clear_cart(self, user_id: str) -> bool:
        self.cleared.append(user_id)
        return True


class RecordingInvoices:
    def __init__(self) -> None:
        self.generated: list[str] = []
        self.error: Optional[Exception] = None

    async def generate_auto_invoice(self, order: Order, customer: CustomerSnapshot) -> AutoGeneratedInvoice:
        if self.error is not None:
            raise self.error
        self.generated.append(order.id)
        number = f"INV-202409-{len(self.generated):05d}"
        return AutoGeneratedInvoice(
            invoiceNumber=number,
            pdfPath=f"/tmp/{number}.html",
            pdfUrl=f"/invoices/{number}.html",
            status=InvoiceStatus.GENERATED,
        )


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def is_available(self) -> bool:
        return True

    async def payment_confirmed(self, order: Order, customer: CustomerSnapshot, payment_id):
        if self.error is not None:
            raise self.error
        self.sent.append({"orderId": order.id, "customer": customer.name, "paymentId": payment_id})
        return {"success": True, "status": 200}


class FakeUsers:
    async def customer_snapshot(self, user_id: str, shipping_address: dict[str, Any]) -> CustomerSnapshot:
        return CustomerSnapshot.build(shipping_address, None)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        invoice_dir=tmp_path / "invoices",
        log_format="text",
    )


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def inventory(order_store) -> InMemoryInventory:
    inventory = InMemoryInventory(order_store)
    inventory.products[KEYBOARD_ID] = {
        "_id": KEYBOARD_ID,
        "name": "Mechanical Keyboard TKL",
        "status": ProductStatus.PUBLISHED.value,
        "stockQuantity": 25,
    }
    inventory.products[MOUSE_ID] = {
        "_id": MOUSE_ID,
        "name": "Wireless Gaming Mouse",
        "status": ProductStatus.PUBLISHED.value,
        "stockQuantity": 0,
        "variants": [
            {"_id": BLACK_VARIANT_ID, "name": "Black", "stockQuantity": 10, "isActive": True},
            {"_id": WHITE_VARIANT_ID, "name": "White", "stockQuantity": 1, "isActive": True},
        ],
    }
    inventory.prebuilt_pcs[PC_ID] = {
        "_id": PC_ID,
        "name": "Starter Gaming PC",
        "stockQuantity": 3,
        "isActive": True,
    }
    return inventory


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def carts() -> RecordingCarts:
    return RecordingCarts()


@pytest.fixture
def invoices() -> RecordingInvoices:
    return RecordingInvoices()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def stock_service(inventory, order_store) -> StockService:
    return StockService(inventory, order_store)


@pytest.fixture
def payment_service(order_store, gateway, stock_service, carts, invoices, notifier, settings) -> PaymentService:
    return PaymentService(
        orders=order_store,
        gateway=gateway,
        stock=stock_service,
        carts=carts,
        invoices=invoices,
        notifier=notifier,
        users=FakeUsers(),
        settings=settings,
    )


def keyboard_item(quantity: int = 1, price: float = 2100.0) -> OrderItem:
    return OrderItem(
        productType=ProductType.PRODUCT,
        product=KEYBOARD_ID,
        name="Mechanical Keyboard TKL",
        sku="KB-TKL-01",
        quantity=quantity,
        originalPrice=2300.0,
        discountedPrice=price,
        total=price * quantity,
    )


def mouse_item(variant_id: str = BLACK_VARIANT_ID, quantity: int = 1) -> OrderItem:
    return OrderItem(
        productType=ProductType.PRODUCT,
        product=MOUSE_ID,
        variant=VariantSnapshot(variantId=variant_id, name="Black"),
        name="Wireless Gaming Mouse",
        sku="MS-WL-01",
        quantity=quantity,
        originalPrice=2499.0,
        discountedPrice=2499.0,
        total=2499.0 * quantity,
    )


def pc_item(quantity: int = 1) -> OrderItem:
    return OrderItem(
        productType=ProductType.PREBUILT_PC,
        product=PC_ID,
        name="Starter Gaming PC",
        sku="PC-START",
        quantity=quantity,
        originalPrice=45000.0,
        discountedPrice=45000.0,
        total=45000.0 * quantity,
    )


def build_order(items: Optional[list[OrderItem]] = None, total: float = 5000.0, user: str = USER_ID) -> Order:
    items = items if items is not None else [keyboard_item(), mouse_item()]
    subtotal = sum(item.total for item in items)
    return Order.create(
        user,
        items,
        Pricing(subtotal=subtotal, shipping=max(total - subtotal, 0), tax=0, total=total),
        shipping_address={
            "firstName": "Asha",
            "lastName": "Rao",
            "email": "asha.rao@example.com",
            "addressLine1": "12 MG Road",
            "city": "Bengaluru",
            "pincode": "560001",
        },
    )


@pytest.fixture
def make_order(order_store) -> Callable[..., Order]:
    """Create an order and store it."""

    def _make(**kwargs: Any) -> Order:
        return order_store.add(build_order(**kwargs))

    return _make
