"""Builders for MongoDB filters and update documents.

Kept free of I/O so the exact write sent to the server can be asserted in
tests.
"""

from datetime import datetime
from typing import Any, NamedTuple, Optional, Sequence

from storefront.models.order import (
    AdminNote,
    AttemptTransition,
    AutoGeneratedInvoice,
    Order,
    OrderItem,
    OrderStatus,
    PaymentAttempt,
    PaymentStatus,
    ProductType,
    TimelineEvent,
    TimelineEventType,
)
from storefront.models.product import ProductStatus


class WriteOp(NamedTuple):
    """A filter/update pair for ``update_one``."""

    filter: dict[str, Any]
    update: dict[str, Any]


def _event_docs(events: Sequence[TimelineEvent]) -> list[dict[str, Any]]:
    return [event.model_dump(by_alias=True) for event in events]


def order_filter(order_id: str, user_id: Optional[str] = None) -> dict[str, Any]:
    query: dict[str, Any] = {"_id": order_id}
    if user_id is not None:
        query["user"] = user_id
    return query


def add_attempt_op(
    order: Order,
    attempt: PaymentAttempt,
    event: TimelineEvent,
    prior_total_attempts: int,
) -> WriteOp:
    """Append an attempt only if no other attempt was added concurrently."""
    payment = order.payment
    return WriteOp(
        filter={
            "_id": order.id,
            "status": OrderStatus.PENDING.value,
            "payment.totalAttempts": prior_total_attempts,
        },
        update={
            "$push": {
                "payment.attempts": attempt.model_dump(by_alias=True, exclude_none=True),
                "orderTimeline": event.model_dump(by_alias=True),
            },
            "$set": {
                "payment.currentAttemptId": attempt.id,
                "payment.status": PaymentStatus.CREATED.value,
                "payment.lastAttemptAt": payment.lastAttemptAt,
                "payment.totalAttempts": payment.totalAttempts,
                "payment.retryAllowed": payment.retryAllowed,
                "updatedAt": order.updatedAt,
            },
        },
    )


def attempt_transition_op(transition: AttemptTransition) -> WriteOp:
    """Persist a state-machine transition as one compare-and-swap write.

    The filter pins the attempt to the status the transition was computed
    from, so two writers racing on the same attempt cannot both apply.
    """
    set_fields: dict[str, Any] = {
        f"payment.attempts.$.{name}": value for name, value in transition.attemptFields.items()
    }
    set_fields.update(transition.orderFields)

    update: dict[str, Any] = {"$set": set_fields}
    if transition.events:
        update["$push"] = {"orderTimeline": {"$each": _event_docs(transition.events)}}
    if transition.unsetExpiry:
        update["$unset"] = {"expiresAt": ""}

    return WriteOp(
        filter={
            "_id": transition.orderId,
            "payment.attempts": {
                "$elemMatch": {"_id": transition.attemptId, "status": transition.priorStatus}
            },
        },
        update=update,
    )


def timeline_op(
    order_id: str,
    events: Sequence[TimelineEvent],
    admin_notes: Sequence[AdminNote] = (),
    now: Optional[datetime] = None,
) -> WriteOp:
    push: dict[str, Any] = {"orderTimeline": {"$each": _event_docs(events)}}
    if admin_notes:
        push["adminNotes"] = {"$each": [note.model_dump() for note in admin_notes]}
    update: dict[str, Any] = {"$push": push}
    if now is not None:
        update["$set"] = {"updatedAt": now}
    return WriteOp(filter={"_id": order_id}, update=update)


def auto_invoice_op(order_id: str, invoice: AutoGeneratedInvoice, event: TimelineEvent) -> WriteOp:
    return WriteOp(
        filter={"_id": order_id},
        update={
            "$set": {"invoices.autoGenerated": invoice.model_dump(exclude_none=True)},
            "$push": {"orderTimeline": event.model_dump(by_alias=True)},
        },
    )


def stock_claim_op(order_id: str, event: TimelineEvent) -> WriteOp:
    """Record the stock reduction on the order unless it was already recorded."""
    return WriteOp(
        filter={
            "_id": order_id,
            "orderTimeline.event": {"$ne": TimelineEventType.STOCK_REDUCED.value},
        },
        update={"$push": {"orderTimeline": event.model_dump(by_alias=True)}},
    )


def stock_decrement_op(item: OrderItem) -> WriteOp:
    """Conditional decrement that never takes stock below zero."""
    quantity = item.quantity
    variant_id = item.variant_id
    if item.productType == ProductType.PRODUCT and variant_id:
        return WriteOp(
            filter={
                "_id": item.product,
                "variants": {
                    "$elemMatch": {"_id": variant_id, "stockQuantity": {"$gte": quantity}}
                },
            },
            update={"$inc": {"variants.$.stockQuantity": -quantity}},
        )
    return WriteOp(
        filter={"_id": item.product, "stockQuantity": {"$gte": quantity}},
        update={"$inc": {"stockQuantity": -quantity}},
    )


def stock_depleted_op(item: OrderItem) -> WriteOp:
    """Status flip applied once a decrement leaves exactly zero stock."""
    variant_id = item.variant_id
    if item.productType == ProductType.PREBUILT_PC:
        return WriteOp(
            filter={"_id": item.product, "stockQuantity": 0},
            update={"$set": {"isActive": False}},
        )
    if variant_id:
        return WriteOp(
            filter={
                "_id": item.product,
                "variants": {"$elemMatch": {"_id": variant_id, "stockQuantity": 0}},
            },
            update={"$set": {"variants.$.isActive": False}},
        )
    return WriteOp(
        filter={
            "_id": item.product,
            "stockQuantity": 0,
            "status": ProductStatus.PUBLISHED.value,
        },
        update={"$set": {"status": ProductStatus.OUT_OF_STOCK.value}},
    )
