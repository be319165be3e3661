"""Stock reduction for paid orders."""

import logging
from typing import Optional, Protocol, Sequence

from pymongo.errors import PyMongoError

from storefront.errors import StockReservationError
from storefront.models.order import AdminNote, Order, TimelineEvent, TimelineEventType
from storefront.models.product import StockLine, StockReductionResults

logger = logging.getLogger(__name__)


class StockStore(Protocol):
    async def reserve_for_order(self, order: Order, claim_event: TimelineEvent) -> StockReductionResults: ...


class TimelineStore(Protocol):
    async def push_timeline(
        self,
        order_id: str,
        events: Sequence[TimelineEvent],
        admin_notes: Sequence[AdminNote] = (),
    ) -> None: ...


class StockService:
    """Reduces inventory once per paid order and records the outcome on it."""

    def __init__(self, inventory: StockStore, orders: TimelineStore) -> None:
        self.inventory = inventory
        self.orders = orders

    async def reduce_stock_for_order(
        self, order: Order, actor: Optional[str] = None
    ) -> StockReductionResults:
        """Reduce stock for every line of a paid order.

        Safe to call more than once: only the first successful call
        decrements anything. Failures are recorded on the order as a
        ``stock_reduction_failed`` event plus an admin note and are not
        raised, because the payment they follow is already committed.
        """
        claim_event = TimelineEvent(
            event=TimelineEventType.STOCK_REDUCED.value,
            message="Stock reduced for all items",
            metadata={
                "items": [
                    {
                        "productId": item.product,
                        "productType": item.productType,
                        "variantId": item.variant_id,
                        "quantity": item.quantity,
                    }
                    for item in order.items
                ]
            },
            changedBy=actor,
        )

        try:
            results = await self.inventory.reserve_for_order(order, claim_event)
        except StockReservationError as e:
            await self._record_failure(order, e.message, e.results, actor)
            return e.results
        except PyMongoError as e:
            results = StockReductionResults(
                failed=[StockLine.for_item(item, str(e)) for item in order.items]
            )
            await self._record_failure(order, str(e), results, actor)
            return results

        if results.alreadyReduced:
            logger.info("Stock already reduced for order", extra={"order_id": order.id})
            return results

        order.orderTimeline.append(claim_event)
        logger.info(
            "Stock reduced",
            extra={"order_id": order.id, "items": len(results.successful)},
        )
        return results

    async def _record_failure(
        self,
        order: Order,
        error: str,
        results: StockReductionResults,
        actor: Optional[str],
    ) -> None:
        logger.error("Stock reduction failed", extra={"order_id": order.id, "error": error})
        event = order.add_timeline_event(
            TimelineEventType.STOCK_REDUCTION_FAILED,
            f"Stock reduction failed: {error}",
            {
                "error": error,
                "failed": [line.model_dump(exclude_none=True) for line in results.failed],
                "rolledBack": [line.model_dump(exclude_none=True) for line in results.rolledBack],
            },
            actor=actor,
        )
        note = order.add_admin_note(f"Stock reduction failed: {error}", actor=actor)
        await self.orders.push_timeline(order.id, [event], [note])
