"""Database package."""

from storefront.database.inventory import InventoryRepository
from storefront.database.mongodb import MongoDB, mongodb
from storefront.database.orders import OrderRepository

__all__ = [
    "MongoDB",
    "mongodb",
    "OrderRepository",
    "InventoryRepository",
]
