"""Order persistence."""

import logging
from typing import Any, Optional, Sequence

from storefront.database.mongodb import MongoDB
from storefront.database.updates import (
    WriteOp,
    add_attempt_op,
    attempt_transition_op,
    auto_invoice_op,
    order_filter,
    timeline_op,
)
from storefront.models.order import (
    AdminNote,
    AttemptTransition,
    AutoGeneratedInvoice,
    Order,
    PaymentAttempt,
    TimelineEvent,
)
from storefront.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class OrderRepository:
    """Reads and conditional writes against the orders collection."""

    def __init__(self, db: MongoDB) -> None:
        self.db = db

    async def _find_one(self, query: dict[str, Any]) -> Optional[Order]:
        document = await self.db.orders.find_one(query)
        if document is None:
            return None
        return Order.from_document(document)

    async def _update(self, op: WriteOp) -> bool:
        result = await self.db.orders.update_one(op.filter, op.update)
        return result.matched_count > 0

    async def get(self, order_id: str) -> Optional[Order]:
        return await self._find_one(order_filter(order_id))

    async def get_for_user(self, order_id: str, user_id: str) -> Optional[Order]:
        """Load an order only if it belongs to ``user_id``."""
        return await self._find_one(order_filter(order_id, user_id))

    async def find_by_razorpay_order_id(self, razorpay_order_id: str) -> Optional[Order]:
        return await self._find_one({"payment.attempts.razorpayOrderId": razorpay_order_id})

    async def insert(self, order: Order) -> Order:
        await self.db.orders.insert_one(order.to_document())
        logger.info("Order created", extra={"order_id": order.id, "order_number": order.orderNumber})
        return order

    async def add_payment_attempt(
        self,
        order: Order,
        attempt: PaymentAttempt,
        event: TimelineEvent,
        prior_total_attempts: int,
    ) -> bool:
        """Persist a new attempt. False if another attempt was added first."""
        return await self._update(add_attempt_op(order, attempt, event, prior_total_attempts))

    async def apply_transition(self, transition: AttemptTransition) -> bool:
        """Persist an attempt transition. False if the attempt moved on meanwhile."""
        matched = await self._update(attempt_transition_op(transition))
        if not matched:
            logger.warning(
                "Attempt transition matched no document",
                extra={
                    "order_id": transition.orderId,
                    "attempt_id": transition.attemptId,
                    "prior_status": transition.priorStatus,
                },
            )
        return matched

    async def push_timeline(
        self,
        order_id: str,
        events: Sequence[TimelineEvent],
        admin_notes: Sequence[AdminNote] = (),
    ) -> None:
        await self._update(timeline_op(order_id, events, admin_notes, now=utcnow()))

    async def save_auto_invoice(
        self, order_id: str, invoice: AutoGeneratedInvoice, event: TimelineEvent
    ) -> None:
        await self._update(auto_invoice_op(order_id, invoice, event))
