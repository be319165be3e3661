"""User lookups for customer snapshots."""

import logging
from typing import Any, Optional

from pymongo.errors import PyMongoError

from storefront.database.mongodb import MongoDB
from storefront.models.user import CustomerSnapshot, UserCreate, UserInDB

logger = logging.getLogger(__name__)


class UserService:
    """User service for handling user-related operations."""

    def __init__(self, db: MongoDB) -> None:
        self.db = db

    async def create_user(self, user: UserCreate) -> UserInDB:
        """Create a new user."""
        try:
            return await self.db.create_user(user)
        except ValueError as e:
            logger.error("Error creating user: %s", e)
            raise

    async def get_user(self, user_id: str) -> Optional[UserInDB]:
        """Get user by ID. Lookup failures are logged and treated as missing."""
        try:
            return await self.db.get_user(user_id)
        except PyMongoError as e:
            logger.error("Error getting user %s: %s", user_id, e)
            return None

    async def customer_snapshot(self, user_id: str, shipping_address: dict[str, Any]) -> CustomerSnapshot:
        """Contact details for collaborators, preferring the shipping address."""
        user = await self.get_user(user_id)
        return CustomerSnapshot.build(shipping_address, user)
