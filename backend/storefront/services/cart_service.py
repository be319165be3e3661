"""Cart maintenance after a successful payment."""

import logging

from storefront.database.mongodb import MongoDB
from storefront.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class CartService:
    """Service for clearing a customer's cart once their order is paid."""

    def __init__(self, db: MongoDB) -> None:
        self.db = db

    async def clear_cart(self, user_id: str) -> bool:
        """Empty the user's cart. Returns False if the user had no cart."""
        result = await self.db.carts.update_one(
            {"userId": user_id},
            {"$set": {"items": [], "totalItems": 0, "totalPrice": 0, "updatedAt": utcnow()}},
        )
        if result.matched_count:
            logger.info("Cart cleared after payment", extra={"user_id": user_id})
        return bool(result.matched_count)
