"""Transactional stock reservation against products and prebuilt PCs."""

import logging
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorCollection

from storefront.database.mongodb import MongoDB
from storefront.database.updates import stock_claim_op, stock_decrement_op, stock_depleted_op
from storefront.errors import (
    InsufficientStockError,
    InventoryItemNotFoundError,
    StockReservationError,
    StorefrontError,
)
from storefront.models.order import Order, OrderItem, ProductType, TimelineEvent
from storefront.models.product import StockLine, StockReductionResults

logger = logging.getLogger(__name__)


def stock_miss_error(item: OrderItem, document: Optional[dict[str, Any]]) -> StorefrontError:
    """Explain why a conditional decrement for ``item`` matched nothing."""
    is_prebuilt = item.productType == ProductType.PREBUILT_PC
    if document is None:
        label = "PreBuilt PC" if is_prebuilt else "Product"
        return InventoryItemNotFoundError(f"{label} not found: {item.product}")

    name = document.get("name") or item.name
    variant_id = item.variant_id
    if variant_id and not is_prebuilt:
        variant = next(
            (v for v in document.get("variants", []) if str(v.get("_id")) == variant_id),
            None,
        )
        if variant is None:
            return InventoryItemNotFoundError(f"Variant not found: {variant_id}")
        return InsufficientStockError(name, variant.get("stockQuantity", 0), item.quantity)

    return InsufficientStockError(name, document.get("stockQuantity", 0), item.quantity)


class InventoryRepository:
    """Stock decrements for paid orders.

    Every line is decremented with a conditional update inside one
    multi-document transaction, together with a claim on the order that
    records ``stock_reduced``. The first line that cannot be decremented
    aborts the transaction, so either all lines are reduced or none are.
    """

    def __init__(self, db: MongoDB) -> None:
        self.db = db

    def _collection_for(self, item: OrderItem) -> AsyncIOMotorCollection:
        if item.productType == ProductType.PREBUILT_PC:
            return self.db.prebuilt_pcs
        return self.db.products

    async def reserve_for_order(self, order: Order, claim_event: TimelineEvent) -> StockReductionResults:
        """Reduce stock for every line of ``order``.

        Returns results with ``alreadyReduced`` set when the order was
        claimed earlier. Raises :class:`StockReservationError` on abort.
        """

        async def run(session: AsyncIOMotorClientSession) -> StockReductionResults:
            return await self._reserve(session, order, claim_event)

        async with await self.db.start_session() as session:
            return await session.with_transaction(run)

    async def _reserve(
        self,
        session: AsyncIOMotorClientSession,
        order: Order,
        claim_event: TimelineEvent,
    ) -> StockReductionResults:
        results = StockReductionResults()

        claim = stock_claim_op(order.id, claim_event)
        claimed = await self.db.orders.update_one(claim.filter, claim.update, session=session)
        if claimed.matched_count == 0:
            results.alreadyReduced = True
            return results

        for item in order.items:
            collection = self._collection_for(item)
            line = StockLine.for_item(item)

            decrement = stock_decrement_op(item)
            updated = await collection.update_one(decrement.filter, decrement.update, session=session)
            if updated.modified_count == 0:
                document = await collection.find_one({"_id": item.product}, session=session)
                error = stock_miss_error(item, document)
                results.failed.append(line.model_copy(update={"error": error.message}))
                results.rolledBack, results.successful = results.successful, []
                logger.warning(
                    "Stock reservation aborted",
                    extra={"order_id": order.id, "product_id": item.product, "error": error.message},
                )
                raise StockReservationError(error, results)

            depleted = stock_depleted_op(item)
            await collection.update_one(depleted.filter, depleted.update, session=session)
            results.successful.append(line)

        return results
