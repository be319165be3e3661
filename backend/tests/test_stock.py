"""Tests for stock reservation and its outcome recording."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import ConnectionFailure

from conftest import (
    BLACK_VARIANT_ID,
    KEYBOARD_ID,
    MOUSE_ID,
    PC_ID,
    WHITE_VARIANT_ID,
    build_order,
    keyboard_item,
    mouse_item,
    pc_item,
)
from storefront.database.inventory import InventoryRepository, stock_miss_error
from storefront.errors import InsufficientStockError, InventoryItemNotFoundError, StockReservationError
from storefront.models.order import TimelineEvent


class TestStockMissError:
    def test_missing_product(self):
        error = stock_miss_error(keyboard_item(), None)
        assert isinstance(error, InventoryItemNotFoundError)
        assert error.message == f"Product not found: {KEYBOARD_ID}"

    def test_missing_prebuilt(self):
        error = stock_miss_error(pc_item(), None)
        assert error.message == f"PreBuilt PC not found: {PC_ID}"

    def test_missing_variant(self):
        error = stock_miss_error(mouse_item("var_gone"), {"_id": MOUSE_ID, "name": "Mouse", "variants": []})
        assert error.message == "Variant not found: var_gone"

    def test_insufficient_variant_stock(self):
        document = {
            "_id": MOUSE_ID,
            "name": "Wireless Gaming Mouse",
            "variants": [{"_id": WHITE_VARIANT_ID, "stockQuantity": 1}],
        }
        error = stock_miss_error(mouse_item(WHITE_VARIANT_ID, quantity=3), document)
        assert isinstance(error, InsufficientStockError)
        assert error.available == 1
        assert error.requested == 3

    def test_insufficient_product_stock(self):
        error = stock_miss_error(keyboard_item(quantity=4), {"_id": KEYBOARD_ID, "name": "Keyboard", "stockQuantity": 2})
        assert error.message == "Insufficient stock for Keyboard. Available: 2, Requested: 4"


class TestStockService:
    async def test_reduces_every_line(self, stock_service, inventory, order_store):
        order = order_store.add(build_order(items=[keyboard_item(quantity=2), mouse_item(), pc_item()], total=51699.0))

        results = await stock_service.reduce_stock_for_order(order, actor="user_001")

        assert results.ok
        assert [line.productId for line in results.successful] == [KEYBOARD_ID, MOUSE_ID, PC_ID]
        assert inventory.products[KEYBOARD_ID]["stockQuantity"] == 23
        assert inventory.prebuilt_pcs[PC_ID]["stockQuantity"] == 2
        assert order.stock_reduced
        assert order_store.events(order.id)[-1] == "stock_reduced"

    async def test_runs_once(self, stock_service, inventory, order_store):
        order = order_store.add(build_order())
        await stock_service.reduce_stock_for_order(order)

        results = await stock_service.reduce_stock_for_order(order_store.load(order.id))

        assert results.alreadyReduced
        assert inventory.reservations == 1
        assert inventory.products[KEYBOARD_ID]["stockQuantity"] == 24

    async def test_depleting_variant_deactivates_it(self, stock_service, inventory, order_store):
        order = order_store.add(build_order(items=[mouse_item(WHITE_VARIANT_ID)], total=2499.0))

        await stock_service.reduce_stock_for_order(order)

        white = inventory.products[MOUSE_ID]["variants"][1]
        assert white["stockQuantity"] == 0
        assert white["isActive"] is False

    async def test_depleting_product_marks_out_of_stock(self, stock_service, inventory, order_store):
        order = order_store.add(build_order(items=[keyboard_item(quantity=25)], total=52500.0))

        await stock_service.reduce_stock_for_order(order)

        assert inventory.products[KEYBOARD_ID]["status"] == "OutOfStock"

    async def test_failure_recorded_not_raised(self, stock_service, inventory, order_store):
        order = order_store.add(build_order(items=[keyboard_item(), pc_item(quantity=4)], total=182100.0))

        results = await stock_service.reduce_stock_for_order(order, actor="user_001")

        assert not results.ok
        assert results.failed[0].productId == PC_ID
        assert [line.productId for line in results.rolledBack] == [KEYBOARD_ID]
        assert inventory.products[KEYBOARD_ID]["stockQuantity"] == 25
        assert inventory.prebuilt_pcs[PC_ID]["stockQuantity"] == 3

        document = order_store.documents[order.id]
        failure = document["orderTimeline"][-1]
        assert failure["event"] == "stock_reduction_failed"
        assert failure["metadata"]["error"] == "Insufficient stock for Starter Gaming PC. Available: 3, Requested: 4"
        assert document["adminNotes"][0]["note"].startswith("Stock reduction failed:")
        assert not order.stock_reduced

    async def test_database_error_recorded(self, stock_service, inventory, order_store, monkeypatch):
        order = order_store.add(build_order())
        monkeypatch.setattr(inventory, "reserve_for_order", AsyncMock(side_effect=ConnectionFailure("no primary")))

        results = await stock_service.reduce_stock_for_order(order)

        assert len(results.failed) == len(order.items)
        assert order_store.events(order.id)[-1] == "stock_reduction_failed"


def _update_result(matched: int = 1, modified: int = 1) -> SimpleNamespace:
    return SimpleNamespace(matched_count=matched, modified_count=modified)


def _repository(orders_claimed: bool = True) -> tuple[InventoryRepository, SimpleNamespace]:
    db = SimpleNamespace(
        orders=SimpleNamespace(update_one=AsyncMock(return_value=_update_result(matched=int(orders_claimed)))),
        products=SimpleNamespace(update_one=AsyncMock(), find_one=AsyncMock()),
        prebuilt_pcs=SimpleNamespace(update_one=AsyncMock(), find_one=AsyncMock()),
    )
    return InventoryRepository(db), db


def _claim_event() -> TimelineEvent:
    return TimelineEvent(event="stock_reduced", message="Stock reduced for all items")


class TestInventoryRepository:
    async def test_claim_miss_means_already_reduced(self):
        repository, db = _repository(orders_claimed=False)

        results = await repository._reserve(object(), build_order(), _claim_event())

        assert results.alreadyReduced
        db.products.update_one.assert_not_awaited()

    async def test_decrements_within_session(self):
        repository, db = _repository()
        db.products.update_one.return_value = _update_result()
        session = object()

        results = await repository._reserve(session, build_order(), _claim_event())

        assert [line.productId for line in results.successful] == [KEYBOARD_ID, MOUSE_ID]
        # decrement plus depleted check per line
        assert db.products.update_one.await_count == 4
        for call in db.products.update_one.await_args_list:
            assert call.kwargs["session"] is session
        claim_filter = db.orders.update_one.await_args.args[0]
        assert claim_filter["orderTimeline.event"] == {"$ne": "stock_reduced"}

    async def test_routes_prebuilt_to_its_collection(self):
        repository, db = _repository()
        db.prebuilt_pcs.update_one.return_value = _update_result()

        await repository._reserve(object(), build_order(items=[pc_item()], total=45000.0), _claim_event())

        assert db.prebuilt_pcs.update_one.await_count == 2
        db.products.update_one.assert_not_awaited()

    async def test_abort_reports_rolled_back_lines(self):
        repository, db = _repository()
        db.products.update_one.side_effect = [
            _update_result(),
            _update_result(),
            _update_result(matched=0, modified=0),
        ]
        db.products.find_one.return_value = {
            "_id": MOUSE_ID,
            "name": "Wireless Gaming Mouse",
            "variants": [{"_id": BLACK_VARIANT_ID, "stockQuantity": 0}],
        }

        with pytest.raises(StockReservationError) as exc_info:
            await repository._reserve(object(), build_order(), _claim_event())

        results = exc_info.value.results
        assert exc_info.value.message == "Insufficient stock for Wireless Gaming Mouse. Available: 0, Requested: 1"
        assert results.successful == []
        assert [line.productId for line in results.rolledBack] == [KEYBOARD_ID]
        assert results.failed[0].variantId == BLACK_VARIANT_ID
