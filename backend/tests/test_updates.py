"""Tests for the MongoDB filter/update builders."""

from conftest import build_order, keyboard_item, mouse_item, pc_item
from storefront.database.updates import (
    add_attempt_op,
    attempt_transition_op,
    stock_claim_op,
    stock_decrement_op,
    stock_depleted_op,
    timeline_op,
)
from storefront.models.order import AdminNote, AttemptUpdate, PaymentStatus, TimelineEvent, TimelineEventType
from storefront.utils.helpers import utcnow


class TestAttemptWrites:
    def test_add_attempt_is_conditional_on_attempt_count(self):
        order = build_order()
        prior = order.payment.totalAttempts
        attempt, event = order.create_payment_attempt("order_ABC", 500000)

        op = add_attempt_op(order, attempt, event, prior)

        assert op.filter == {"_id": order.id, "status": "pending", "payment.totalAttempts": 0}
        assert op.update["$push"]["payment.attempts"]["razorpayOrderId"] == "order_ABC"
        assert op.update["$push"]["orderTimeline"]["event"] == "payment_attempt_created"
        assert op.update["$set"]["payment.totalAttempts"] == 1
        assert op.update["$set"]["payment.currentAttemptId"] == attempt.id

    def test_capture_is_single_compare_and_swap(self):
        order = build_order()
        attempt, _ = order.create_payment_attempt("order_ABC", 500000)
        transition = order.update_payment_attempt(
            attempt.id,
            AttemptUpdate(status=PaymentStatus.CAPTURED, razorpayPaymentId="pay_XYZ", signatureVerified=True),
        )

        op = attempt_transition_op(transition)

        assert op.filter == {
            "_id": order.id,
            "payment.attempts": {"$elemMatch": {"_id": attempt.id, "status": "created"}},
        }
        update_set = op.update["$set"]
        assert update_set["payment.attempts.$.status"] == "captured"
        assert update_set["payment.attempts.$.razorpayPaymentId"] == "pay_XYZ"
        assert update_set["payment.attempts.$.signatureVerified"] is True
        assert update_set["payment.status"] == "captured"
        assert update_set["status"] == "confirmed"
        assert update_set["pricing.amountPaid"] == order.pricing.total
        assert update_set["pricing.amountDue"] == 0
        assert op.update["$unset"] == {"expiresAt": ""}
        assert [e["event"] for e in op.update["$push"]["orderTimeline"]["$each"]] == ["payment_captured"]

    def test_failure_leaves_expiry(self):
        order = build_order()
        attempt, _ = order.create_payment_attempt("order_ABC", 500000)
        transition = order.update_payment_attempt(
            attempt.id, AttemptUpdate(status=PaymentStatus.FAILED, errorReason="Amount mismatch")
        )

        op = attempt_transition_op(transition)

        assert "$unset" not in op.update
        assert "status" not in op.update["$set"]
        assert op.update["$set"]["payment.attempts.$.errorReason"] == "Amount mismatch"


class TestTimelineWrites:
    def test_pushes_events_and_notes(self):
        event = TimelineEvent(event="stock_reduction_failed", message="Stock reduction failed: boom")
        note = AdminNote(note="Stock reduction failed: boom")

        op = timeline_op("o1", [event], [note], now=utcnow())

        assert op.filter == {"_id": "o1"}
        assert op.update["$push"]["orderTimeline"]["$each"][0]["event"] == "stock_reduction_failed"
        assert op.update["$push"]["adminNotes"]["$each"][0]["note"] == note.note
        assert "updatedAt" in op.update["$set"]

    def test_stock_claim_only_once(self):
        event = TimelineEvent(event=TimelineEventType.STOCK_REDUCED.value, message="Stock reduced")
        op = stock_claim_op("o1", event)
        assert op.filter == {"_id": "o1", "orderTimeline.event": {"$ne": "stock_reduced"}}


class TestStockWrites:
    def test_plain_product_never_negative(self):
        op = stock_decrement_op(keyboard_item(quantity=3))
        assert op.filter == {"_id": "prod_keyboard", "stockQuantity": {"$gte": 3}}
        assert op.update == {"$inc": {"stockQuantity": -3}}

    def test_variant_targets_matched_element(self):
        op = stock_decrement_op(mouse_item(quantity=2))
        assert op.filter == {
            "_id": "prod_mouse",
            "variants": {"$elemMatch": {"_id": "var_black", "stockQuantity": {"$gte": 2}}},
        }
        assert op.update == {"$inc": {"variants.$.stockQuantity": -2}}

    def test_prebuilt_decrement(self):
        op = stock_decrement_op(pc_item())
        assert op.filter == {"_id": "pc_starter", "stockQuantity": {"$gte": 1}}

    def test_depleted_product_goes_out_of_stock_only_if_published(self):
        op = stock_depleted_op(keyboard_item())
        assert op.filter == {"_id": "prod_keyboard", "stockQuantity": 0, "status": "Published"}
        assert op.update == {"$set": {"status": "OutOfStock"}}

    def test_depleted_variant_deactivated(self):
        op = stock_depleted_op(mouse_item())
        assert op.update == {"$set": {"variants.$.isActive": False}}

    def test_depleted_prebuilt_deactivated(self):
        op = stock_depleted_op(pc_item())
        assert op.filter == {"_id": "pc_starter", "stockQuantity": 0}
        assert op.update == {"$set": {"isActive": False}}
