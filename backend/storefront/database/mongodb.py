"""MongoDB database connection and operations."""

import logging
from typing import Optional

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from storefront.config import Settings, get_settings
from storefront.models.order import OrderStatus
from storefront.models.user import UserCreate, UserInDB
from storefront.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class MongoDB:
    """MongoDB connection manager."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize MongoDB connection."""
        self.settings = settings or get_settings()
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    @property
    def is_connected(self) -> bool:
        return self.db is not None

    async def connect(self) -> None:
        """Connect to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(
                self.settings.mongodb_url,
                maxPoolSize=self.settings.mongodb_max_pool_size,
                minPoolSize=self.settings.mongodb_min_pool_size,
                tz_aware=True,
            )
            self.db = self.client[self.settings.mongodb_database]

            # Test connection
            await self.client.admin.command("ping")
            logger.info("Connected to MongoDB: %s", self.settings.mongodb_database)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB: %s", e)
            raise

    async def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("Disconnected from MongoDB")

    def _collection(self, name: str) -> AsyncIOMotorCollection:
        if self.db is None:
            raise ConnectionError("Database not connected")
        return self.db[name]

    @property
    def orders(self) -> AsyncIOMotorCollection:
        return self._collection(self.settings.mongodb_order_collection)

    @property
    def products(self) -> AsyncIOMotorCollection:
        return self._collection(self.settings.mongodb_product_collection)

    @property
    def prebuilt_pcs(self) -> AsyncIOMotorCollection:
        return self._collection(self.settings.mongodb_prebuilt_pc_collection)

    @property
    def carts(self) -> AsyncIOMotorCollection:
        return self._collection(self.settings.mongodb_cart_collection)

    @property
    def users(self) -> AsyncIOMotorCollection:
        return self._collection(self.settings.mongodb_user_collection)

    @property
    def counters(self) -> AsyncIOMotorCollection:
        return self._collection(self.settings.mongodb_counter_collection)

    async def start_session(self) -> AsyncIOMotorClientSession:
        """Start a client session for multi-document transactions."""
        if self.client is None:
            raise ConnectionError("Database not connected")
        return await self.client.start_session()

    async def _create_indexes(self) -> None:
        """Create database indexes."""
        await self.users.create_index("userId", unique=True, name="userId_unique")
        await self.users.create_index("email", name="email_index")

        orders = self.orders
        await orders.create_index("orderNumber", unique=True, name="orderNumber_unique")
        await orders.create_index([("user", ASCENDING), ("createdAt", DESCENDING)], name="user_createdAt")
        await orders.create_index([("status", ASCENDING), ("payment.status", ASCENDING)], name="status_paymentStatus")
        # A gateway order belongs to exactly one order. Every attempt carries the
        # field, so only orders without attempts need the partial filter.
        await orders.create_index(
            "payment.attempts.razorpayOrderId",
            unique=True,
            partialFilterExpression={"payment.attempts.razorpayOrderId": {"$exists": True}},
            name="attempt_razorpayOrderId_unique",
        )
        # Unpaid orders are removed once expiresAt passes
        await orders.create_index(
            "expiresAt",
            expireAfterSeconds=0,
            partialFilterExpression={"status": OrderStatus.PENDING.value},
            name="unpaid_order_ttl",
        )

        await self.carts.create_index("userId", unique=True, name="cart_userId_unique")
        logger.info("MongoDB indexes created")

    async def next_sequence(self, name: str) -> int:
        """Atomically increment and return a named counter."""
        counter = await self.counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["value"])

    async def create_user(self, user: UserCreate) -> UserInDB:
        """Create a new user."""
        try:
            user_data = UserInDB(**user.model_dump()).model_dump()
            user_data["createdAt"] = utcnow()
            user_data["updatedAt"] = user_data["createdAt"]
            await self.users.insert_one(user_data)
            return UserInDB(**user_data)

        except DuplicateKeyError:
            raise ValueError(f"User with userId '{user.userId}' already exists")

    async def get_user(self, user_id: str) -> Optional[UserInDB]:
        """Get user by ID."""
        user_data = await self.users.find_one({"userId": user_id}, {"_id": 0})
        if user_data:
            return UserInDB(**user_data)
        return None


# Global MongoDB instance
mongodb = MongoDB()
